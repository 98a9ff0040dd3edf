"""Client utilities for the CLIP vision ranking/encoding service."""

import base64
import logging
import mimetypes
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from venue_pipeline.core.remote import RemoteCallError, get_json, post_with_failover

logger = logging.getLogger(__name__)

LOGO_LABEL = "a business logo, watermark, or text graphic"
PHOTO_LABEL = "a photograph of a place or building"
EMBEDDING_DIMENSION = 512


class ClipError(RuntimeError):
    """Raised when the vision service answers with an unexpected shape."""


def to_image_uri(image_path: str) -> str:
    """Local files are sent inline as base64 data URIs; URLs pass through untouched."""
    if image_path.startswith(("http://", "https://", "data:")):
        return image_path
    path = Path(image_path)
    mime = mimetypes.guess_type(path.name)[0] or "image/jpeg"
    encoded = base64.b64encode(path.read_bytes()).decode("ascii")
    return f"data:{mime};base64,{encoded}"


def _first_document(payload: Any) -> Dict[str, Any]:
    if not isinstance(payload, dict):
        raise ClipError("vision response is not an object")
    documents = payload.get("result") or payload.get("data")
    if not isinstance(documents, list) or not documents or not isinstance(documents[0], dict):
        raise ClipError("vision response has no documents")
    return documents[0]


def _score(match: Dict[str, Any]) -> float:
    score = (match.get("scores") or {}).get("clip_score")
    if isinstance(score, dict):
        score = score.get("value")
    if not isinstance(score, (int, float)):
        raise ClipError(f"match for {match.get('text')!r} has no clip_score")
    return float(score)


def rank_logo_vs_photo(service_url: str, image_path: str, *, timeout: float = 30) -> Tuple[float, float]:
    """Return ``(logo_score, photo_score)`` for one image."""
    payload = {
        "data": [{"uri": to_image_uri(image_path), "matches": [{"text": LOGO_LABEL}, {"text": PHOTO_LABEL}]}],
        "execEndpoint": "/rank",
    }
    _endpoint, response = post_with_failover([f"{service_url}/post"], json=payload, timeout=timeout)
    matches: List[Dict[str, Any]] = _first_document(response.json()).get("matches") or []

    # Ranking reorders matches, so look them up by label text.
    logo_score: Optional[float] = None
    photo_score: Optional[float] = None
    for match in matches:
        text = match.get("text") or ""
        if "logo" in text:
            logo_score = _score(match)
        elif "photograph" in text:
            photo_score = _score(match)
    if logo_score is None or photo_score is None:
        raise ClipError("vision response is missing the logo or photograph label")
    return logo_score, photo_score


def encode_image(service_url: str, image_path: str, *, timeout: float = 30) -> List[float]:
    payload = {"data": [{"uri": to_image_uri(image_path)}], "execEndpoint": "/encode"}
    _endpoint, response = post_with_failover([f"{service_url}/post"], json=payload, timeout=timeout)
    embedding = _first_document(response.json()).get("embedding")
    if not isinstance(embedding, list):
        raise ClipError("vision response has no embedding")
    if len(embedding) != EMBEDDING_DIMENSION:
        raise ClipError(f"expected a {EMBEDDING_DIMENSION}-dim embedding, got {len(embedding)}")
    return [float(value) for value in embedding]


def check_health(service_url: str, *, timeout: float = 5) -> bool:
    try:
        get_json(f"{service_url}/", timeout=timeout)
    except RemoteCallError as exc:
        logger.error("CLIP service health check failed: %s", exc)
        return False
    return True
