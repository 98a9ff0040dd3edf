"""Client utilities for the Overpass geospatial query API."""

import logging
from typing import Any, Dict, List, Sequence

from venue_pipeline.core.remote import post_with_failover
from venue_pipeline.models import BBox

logger = logging.getLogger(__name__)

_QUERY_TEMPLATE = """
[out:json][timeout:90];
(
  node["amenity"~"events_venue|conference_centre|wedding_venue"]{bbox};
  way["amenity"~"events_venue|conference_centre|wedding_venue"]{bbox};
  node["leisure"="resort"]{bbox};
  way["leisure"="resort"]{bbox};
  node["tourism"="hotel"]{bbox};
  way["tourism"="hotel"]{bbox};
  node["leisure"="golf_course"]{bbox};
  way["leisure"="golf_course"]{bbox};
  node["amenity"="community_centre"]{bbox};
  way["amenity"="community_centre"]{bbox};
  node["historic"~"manor|castle|stately_house"]{bbox};
  way["historic"~"manor|castle|stately_house"]{bbox};
  node["name"~"Estate|Garden|Ranch|Vineyard|Winery|Lodge|Inn|Chateau|Mansion|Barn|Retreat|Manor",i]{bbox};
  way["name"~"Estate|Garden|Ranch|Vineyard|Winery|Lodge|Inn|Chateau|Mansion|Barn|Retreat|Manor",i]{bbox};
);
out body center;
"""


class OverpassError(RuntimeError):
    """Raised when Overpass answers with something other than an element list."""


def bbox_filter(tile: BBox) -> str:
    # Overpass orders bounds as (south, west, north, east).
    return f"({tile.min_lat},{tile.min_lon},{tile.max_lat},{tile.max_lon})"


def build_query(tile: BBox) -> str:
    return _QUERY_TEMPLATE.format(bbox=bbox_filter(tile)).strip()


def fetch_elements(endpoints: Sequence[str], query: str, *, timeout: float = 30) -> List[Dict[str, Any]]:
    endpoint, response = post_with_failover(
        endpoints,
        data={"data": query},
        headers={"Content-Type": "application/x-www-form-urlencoded;charset=UTF-8"},
        timeout=timeout,
    )
    try:
        payload = response.json()
    except ValueError as exc:
        raise OverpassError(f"{endpoint} returned a non-JSON body") from exc

    elements = payload.get("elements") if isinstance(payload, dict) else None
    if not isinstance(elements, list):
        logger.warning("Overpass response from %s has no elements array", endpoint)
        return []
    logger.debug("Overpass %s returned %d elements", endpoint, len(elements))
    return elements
