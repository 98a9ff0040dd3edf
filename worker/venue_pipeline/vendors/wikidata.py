"""Client utilities for the Wikidata SPARQL query service."""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from venue_pipeline.core.remote import post_with_failover

logger = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "https://query.wikidata.org/sparql"

# P625 = coordinate location, P856 = official website.
_QUERY_TEMPLATE = """
SELECT ?item ?itemLabel ?website WHERE {{
  SERVICE wikibase:around {{
    ?item wdt:P625 ?location .
    bd:serviceParam wikibase:center "Point({lon} {lat})"^^geo:wktLiteral .
    bd:serviceParam wikibase:radius "{radius_km}" .
    bd:serviceParam wikibase:distance ?distance .
  }}
  SERVICE wikibase:label {{ bd:serviceParam wikibase:language "en". }}
  FILTER(BOUND(?itemLabel) && REGEX(?itemLabel, "{label_pattern}", "i"))
  ?item wdt:P856 ?website .
}}
ORDER BY ?distance
LIMIT {limit}
"""

_REGEX_SPECIAL = re.compile(r"([.*+?^${}()|\[\]\\])")
_ENTITY_ID = re.compile(r"/entity/(Q\d+)$")


class WikidataError(RuntimeError):
    """Raised when the query service answers with something other than SPARQL JSON results."""


@dataclass(frozen=True)
class WikidataHit:
    entity_id: str
    website: str


def label_pattern(name: str) -> str:
    """Escape a venue name for use as a case-insensitive REGEX inside a SPARQL string literal."""
    pattern = _REGEX_SPECIAL.sub(r"\\\1", name.strip())
    return pattern.replace("\\", "\\\\").replace('"', '\\"')


def build_query(name: str, lat: float, lon: float, *, radius_km: int = 5, limit: int = 5) -> str:
    return _QUERY_TEMPLATE.format(
        lat=lat,
        lon=lon,
        radius_km=radius_km,
        label_pattern=label_pattern(name),
        limit=limit,
    ).strip()


def entity_id_from_uri(uri: str) -> Optional[str]:
    match = _ENTITY_ID.search(uri or "")
    return match.group(1) if match else None


def _bindings(payload: Any) -> List[Dict[str, Any]]:
    results = payload.get("results") if isinstance(payload, dict) else None
    bindings = results.get("bindings") if isinstance(results, dict) else None
    if not isinstance(bindings, list):
        raise WikidataError("SPARQL response has no results.bindings array")
    return bindings


def lookup_website(
    name: str,
    lat: float,
    lon: float,
    *,
    endpoint: str = DEFAULT_ENDPOINT,
    radius_km: int = 5,
    limit: int = 5,
    timeout: float = 30,
) -> Optional[WikidataHit]:
    """Nearest labelled entity whose label contains ``name`` and that lists an official website."""
    query = build_query(name, lat, lon, radius_km=radius_km, limit=limit)
    answered, response = post_with_failover(
        [endpoint],
        data={"query": query, "format": "json"},
        headers={"Accept": "application/sparql-results+json"},
        timeout=timeout,
    )
    try:
        payload = response.json()
    except ValueError as exc:
        raise WikidataError(f"{answered} returned a non-JSON body") from exc

    for row in _bindings(payload):
        entity_id = entity_id_from_uri((row.get("item") or {}).get("value", ""))
        website = (row.get("website") or {}).get("value")
        if entity_id and isinstance(website, str) and website.strip():
            return WikidataHit(entity_id=entity_id, website=website.strip())
    logger.debug("Wikidata has no website for %r near (%s, %s)", name, lat, lon)
    return None
