"""Utilities for transforming geospatial source elements into database rows."""

import logging
from typing import Any, Dict, Optional, Tuple

from venue_pipeline.models import SourceTags

logger = logging.getLogger(__name__)

UNKNOWN_VENUE_NAME = "Unknown Venue"


def _safe_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def extract_point(element: Dict[str, Any]) -> Tuple[Optional[float], Optional[float]]:
    """Return ``(lat, lon)`` from direct coordinates or the element's ``center``."""
    lat = _safe_float(element.get("lat"))
    lon = _safe_float(element.get("lon"))
    if lat is None or lon is None:
        center = element.get("center") or {}
        lat = _safe_float(center.get("lat"))
        lon = _safe_float(center.get("lon"))
    return lat, lon


def external_id(element: Dict[str, Any]) -> Optional[str]:
    element_type = element.get("type")
    element_id = element.get("id")
    if not element_type or element_id is None:
        return None
    return f"{element_type}/{element_id}"


def to_venue_row(element: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """Build an upsert row for an element, or None when it has no usable id or point."""
    osm_id = external_id(element)
    if not osm_id:
        logger.debug("Skipping element without type/id: %s", str(element)[:200])
        return None

    lat, lon = extract_point(element)
    if lat is None or lon is None:
        logger.debug("Skipping %s without coordinates", osm_id)
        return None

    tags = SourceTags(element.get("tags"))
    return {
        "osm_id": osm_id,
        "name": tags.name or UNKNOWN_VENUE_NAME,
        "website_url": tags.website,
        "lat": lat,
        "lon": lon,
        "osm_metadata": tags.to_dict(),
    }
