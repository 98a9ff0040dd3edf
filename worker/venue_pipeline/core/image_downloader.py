"""Image reference extraction and idempotent downloads for crawled documents."""

from __future__ import annotations

import hashlib
import logging
import os
import re
from pathlib import Path
from typing import List, Optional
from urllib.parse import urlparse

import requests

logger = logging.getLogger(__name__)

_SESSION = requests.Session()

USER_AGENT = "WeddingVenueBot/1.0"
DOWNLOAD_TIMEOUT = 5
MIN_IMAGE_BYTES = 51200
CHUNK_SIZE = 64 * 1024

MARKDOWN_IMAGE_REGEX = re.compile(r"!\[[^\]]*\]\((https?://[^)\s]+)(?:\s+\"[^\"]*\")?\)")


def extract_image_urls(markdown: str) -> List[str]:
    """Return unique ``![alt](url)`` targets in document order."""
    seen = set()
    urls: List[str] = []
    for match in MARKDOWN_IMAGE_REGEX.finditer(markdown or ""):
        url = match.group(1)
        if url not in seen:
            seen.add(url)
            urls.append(url)
    return urls


def image_filename(url: str) -> str:
    """Deterministic short name: first 10 hex chars of the URL's md5 plus its extension."""
    extension = os.path.splitext(urlparse(url).path)[1].lower() or ".jpg"
    if len(extension) > 5 or not extension[1:].isalnum():
        extension = ".jpg"
    digest = hashlib.md5(url.encode("utf-8")).hexdigest()[:10]
    return f"{digest}{extension}"


def _content_length(response: requests.Response) -> Optional[int]:
    raw = response.headers.get("Content-Length")
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError:
        return None


def download_image(url: str, target_dir: str, *, timeout: float = DOWNLOAD_TIMEOUT) -> Optional[str]:
    """Download ``url`` into ``target_dir`` and return the local path.

    Returns None when the image is reported smaller than MIN_IMAGE_BYTES or the
    fetch fails. An existing file with the same name is reused without a request.
    """
    folder = Path(target_dir)
    destination = folder / image_filename(url)
    if destination.exists():
        return str(destination)

    partial = destination.with_name(destination.name + ".part")
    try:
        folder.mkdir(parents=True, exist_ok=True)
        with _SESSION.get(url, stream=True, timeout=timeout, headers={"User-Agent": USER_AGENT}) as response:
            response.raise_for_status()
            size = _content_length(response)
            if size is not None and size < MIN_IMAGE_BYTES:
                logger.debug("Skipping small image %s (%d bytes)", url, size)
                return None
            with partial.open("wb") as fh:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        fh.write(chunk)
        partial.replace(destination)
    except (requests.RequestException, OSError) as exc:
        logger.warning("Failed to download %s: %s", url, str(exc)[:200])
        partial.unlink(missing_ok=True)
        return None

    return str(destination)
