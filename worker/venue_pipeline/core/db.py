"""Database helpers for the worker."""

import logging
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import psycopg2
from psycopg2 import extras, pool

from venue_pipeline.core.config import get_settings
from venue_pipeline.models import EnrichmentFields, ImageManifest, PreVettingStatus, Venue

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection."""
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    except psycopg2.Error:
        conn.rollback()
        raise
    finally:
        pg_pool.putconn(conn)


SCHEMA_SQL = """
CREATE EXTENSION IF NOT EXISTS postgis;
CREATE EXTENSION IF NOT EXISTS vector;

CREATE TABLE IF NOT EXISTS venues (
    venue_id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    osm_id TEXT NOT NULL UNIQUE,
    name TEXT NOT NULL,
    website_url TEXT,
    website_source TEXT,
    wikidata_id TEXT,
    website_lookup_at TIMESTAMPTZ,
    location GEOGRAPHY(POINT, 4326),
    osm_metadata JSONB NOT NULL DEFAULT '{}'::jsonb,
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    pre_vetting_status TEXT NOT NULL DEFAULT 'pending'
        CHECK (pre_vetting_status IN ('pending', 'yes', 'no', 'needs_confirmation')),
    pre_vetting_keywords TEXT[],
    pre_vetted_at TIMESTAMPTZ,
    raw_markdown TEXT,
    last_crawled_at TIMESTAMPTZ,
    is_wedding_venue BOOLEAN NOT NULL DEFAULT FALSE,
    is_estate BOOLEAN NOT NULL DEFAULT FALSE,
    is_historic BOOLEAN NOT NULL DEFAULT FALSE,
    has_lodging BOOLEAN NOT NULL DEFAULT FALSE,
    lodging_capacity INTEGER NOT NULL DEFAULT 0 CHECK (lodging_capacity >= 0),
    pricing_tier TEXT NOT NULL DEFAULT 'unknown'
        CHECK (pricing_tier IN ('low', 'medium', 'high', 'luxury', 'unknown')),
    enriched_at TIMESTAMPTZ,
    image_data JSONB,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

ALTER TABLE venues ADD COLUMN IF NOT EXISTS website_source TEXT;
ALTER TABLE venues ADD COLUMN IF NOT EXISTS wikidata_id TEXT;
ALTER TABLE venues ADD COLUMN IF NOT EXISTS website_lookup_at TIMESTAMPTZ;

CREATE INDEX IF NOT EXISTS venues_location_idx ON venues USING GIST (location);
CREATE INDEX IF NOT EXISTS venues_pre_vetting_status_idx ON venues (pre_vetting_status);

CREATE TABLE IF NOT EXISTS collected_tiles (
    tile_key TEXT PRIMARY KEY,
    element_count INTEGER NOT NULL DEFAULT 0,
    collected_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS venue_embeddings (
    embedding_id UUID PRIMARY KEY DEFAULT gen_random_uuid(),
    venue_id UUID NOT NULL REFERENCES venues (venue_id) ON DELETE CASCADE,
    image_path TEXT NOT NULL,
    embedding_vector VECTOR(512) NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (venue_id, image_path)
);
"""


def init_schema() -> None:
    """Create the pipeline tables if they do not exist yet."""
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
        conn.commit()
    logger.info("Database schema ensured")


_UPSERT_VENUE = """
INSERT INTO venues (
    osm_id,
    name,
    website_url,
    website_source,
    location,
    osm_metadata,
    is_active,
    updated_at
) VALUES (
    %(osm_id)s,
    %(name)s,
    %(website_url)s,
    %(website_source)s,
    ST_SetSRID(ST_MakePoint(%(lon)s, %(lat)s), 4326)::geography,
    %(osm_metadata)s,
    TRUE,
    NOW()
)
ON CONFLICT (osm_id) DO UPDATE SET
    name = EXCLUDED.name,
    website_url = COALESCE(EXCLUDED.website_url, venues.website_url),
    website_source = CASE
        WHEN EXCLUDED.website_url IS NULL THEN venues.website_source
        ELSE EXCLUDED.website_source
    END,
    location = EXCLUDED.location,
    osm_metadata = EXCLUDED.osm_metadata,
    updated_at = NOW();
"""

_SELECT_COMPLETED_TILES = "SELECT tile_key FROM collected_tiles;"

_RECORD_TILE = """
INSERT INTO collected_tiles (tile_key, element_count)
VALUES (%(tile_key)s, %(element_count)s)
ON CONFLICT (tile_key) DO NOTHING;
"""

_VENUE_COLUMNS = """
    venue_id,
    osm_id,
    name,
    website_url,
    ST_Y(location::geometry) AS lat,
    ST_X(location::geometry) AS lon,
    osm_metadata,
    pre_vetting_status,
    pre_vetting_keywords,
    pre_vetted_at,
    raw_markdown,
    image_data
"""

_SELECT_PREVETTING_CANDIDATES = f"""
SELECT {_VENUE_COLUMNS} FROM venues
WHERE pre_vetting_status = 'pending'
  AND website_url IS NOT NULL
  AND website_url <> ''
ORDER BY created_at;
"""

_SELECT_CRAWL_CANDIDATES = f"""
SELECT {_VENUE_COLUMNS} FROM venues
WHERE pre_vetting_status = 'yes'
  AND website_url IS NOT NULL
  AND website_url <> ''
  AND raw_markdown IS NULL
ORDER BY created_at;
"""

_SELECT_WEBSITE_CANDIDATES = f"""
SELECT {_VENUE_COLUMNS} FROM venues
WHERE (website_url IS NULL OR website_url = '')
  AND website_lookup_at IS NULL
ORDER BY created_at;
"""

_SELECT_IMAGE_CANDIDATES = f"""
SELECT {_VENUE_COLUMNS} FROM venues
WHERE raw_markdown IS NOT NULL
  AND image_data IS NULL
ORDER BY created_at;
"""

_SELECT_ENRICHMENT_CANDIDATES = f"""
SELECT {_VENUE_COLUMNS} FROM venues
WHERE raw_markdown IS NOT NULL
  AND enriched_at IS NULL
ORDER BY created_at;
"""

_SELECT_FILTER_CANDIDATES = f"""
SELECT {_VENUE_COLUMNS} FROM venues
WHERE image_data IS NOT NULL
  AND jsonb_array_length(COALESCE(image_data->'local_paths', '[]'::jsonb)) > 0
  AND (image_data->>'clip_logo_verified')::boolean IS DISTINCT FROM TRUE
ORDER BY created_at;
"""

_SELECT_EMBEDDING_CANDIDATES = f"""
SELECT {_VENUE_COLUMNS} FROM venues
WHERE image_data IS NOT NULL
  AND (image_data->>'clip_logo_verified')::boolean IS TRUE
ORDER BY created_at;
"""

_UPDATE_PREVETTING = """
UPDATE venues SET
    pre_vetting_status = %(status)s,
    pre_vetting_keywords = %(keywords)s,
    pre_vetted_at = NOW(),
    updated_at = NOW()
WHERE venue_id = %(venue_id)s
  AND pre_vetting_status = 'pending';
"""

_UPDATE_WEBSITE = """
UPDATE venues SET
    website_url = %(website_url)s,
    website_source = %(website_source)s,
    wikidata_id = %(wikidata_id)s,
    website_lookup_at = NOW(),
    updated_at = NOW()
WHERE venue_id = %(venue_id)s
  AND (website_url IS NULL OR website_url = '');
"""

_MARK_WEBSITE_LOOKUP = """
UPDATE venues SET
    website_lookup_at = NOW(),
    updated_at = NOW()
WHERE venue_id = %(venue_id)s;
"""

_UPDATE_CRAWL_DOCUMENT = """
UPDATE venues SET
    raw_markdown = %(raw_markdown)s,
    last_crawled_at = NOW(),
    updated_at = NOW()
WHERE venue_id = %(venue_id)s;
"""

_UPDATE_IMAGE_MANIFEST = """
UPDATE venues SET
    image_data = %(image_data)s,
    updated_at = NOW()
WHERE venue_id = %(venue_id)s;
"""

_UPDATE_ENRICHMENT = """
UPDATE venues SET
    is_wedding_venue = %(is_wedding_venue)s,
    is_estate = %(is_estate)s,
    is_historic = %(is_historic)s,
    has_lodging = %(has_lodging)s,
    lodging_capacity = %(lodging_capacity)s,
    pricing_tier = %(pricing_tier)s,
    enriched_at = NOW(),
    updated_at = NOW()
WHERE venue_id = %(venue_id)s;
"""

_SELECT_EMBEDDING_PATHS = """
SELECT image_path FROM venue_embeddings WHERE venue_id = %(venue_id)s;
"""

_INSERT_EMBEDDING = """
INSERT INTO venue_embeddings (venue_id, image_path, embedding_vector)
VALUES (%(venue_id)s, %(image_path)s, %(embedding_vector)s::vector)
ON CONFLICT (venue_id, image_path) DO NOTHING;
"""


def _prepare_venue_params(row: Dict[str, Any]) -> Dict[str, Any]:
    website_url = row.get("website_url") or None
    return {
        "osm_id": row.get("osm_id"),
        "name": row.get("name") or "Unknown Venue",
        "website_url": website_url,
        "website_source": "osm" if website_url else None,
        "lat": row.get("lat"),
        "lon": row.get("lon"),
        "osm_metadata": extras.Json(row.get("osm_metadata") or {}),
    }


def _vector_literal(vector: Sequence[float]) -> str:
    return "[" + ",".join(repr(float(value)) for value in vector) + "]"


class VenueStore:
    """The pipeline's only handle on persisted state.

    Each method runs one statement on a pooled connection and commits it, so a
    stage aborted part-way leaves every completed write in place.
    """

    def __init__(self, connection_factory: Callable = get_connection) -> None:
        self._connection_factory = connection_factory

    def _execute(self, sql: str, params: Optional[Dict[str, Any]] = None) -> int:
        with self._connection_factory() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rowcount = cur.rowcount
            conn.commit()
        return rowcount

    def _fetch(self, sql: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        with self._connection_factory() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()
        return [dict(row) for row in rows]

    def _fetch_venues(self, sql: str) -> List[Venue]:
        return [Venue.from_row(row) for row in self._fetch(sql)]

    # -- collection ledger --------------------------------------------------

    def completed_tile_keys(self) -> Set[str]:
        return {row["tile_key"] for row in self._fetch(_SELECT_COMPLETED_TILES)}

    def record_tile(self, tile_key: str, element_count: int) -> None:
        self._execute(_RECORD_TILE, {"tile_key": tile_key, "element_count": element_count})

    def upsert_venue(self, row: Dict[str, Any]) -> None:
        """Persist a venue row keyed by its external id, merging on conflict."""
        params = _prepare_venue_params(row)
        if not params["osm_id"]:
            raise ValueError("osm_id is required for upsert")
        if params["lat"] is None or params["lon"] is None:
            raise ValueError("lat and lon are required for upsert")
        self._execute(_UPSERT_VENUE, params)
        logger.debug("Upserted venue %s (%s)", params["osm_id"], params["name"])

    # -- candidate selections -----------------------------------------------

    def fetch_prevetting_candidates(self) -> List[Venue]:
        return self._fetch_venues(_SELECT_PREVETTING_CANDIDATES)

    def fetch_website_candidates(self) -> List[Venue]:
        return self._fetch_venues(_SELECT_WEBSITE_CANDIDATES)

    def fetch_crawl_candidates(self) -> List[Venue]:
        return self._fetch_venues(_SELECT_CRAWL_CANDIDATES)

    def fetch_image_candidates(self) -> List[Venue]:
        return self._fetch_venues(_SELECT_IMAGE_CANDIDATES)

    def fetch_enrichment_candidates(self) -> List[Venue]:
        return self._fetch_venues(_SELECT_ENRICHMENT_CANDIDATES)

    def fetch_filter_candidates(self) -> List[Venue]:
        return self._fetch_venues(_SELECT_FILTER_CANDIDATES)

    def fetch_embedding_candidates(self) -> List[Venue]:
        return self._fetch_venues(_SELECT_EMBEDDING_CANDIDATES)

    # -- stage outcomes -----------------------------------------------------

    def save_prevetting(
        self,
        venue_id: str,
        status: PreVettingStatus,
        keywords: Optional[List[str]],
    ) -> bool:
        if status is PreVettingStatus.PENDING:
            raise ValueError("pre-vetting cannot write the pending status")
        updated = self._execute(
            _UPDATE_PREVETTING,
            {"venue_id": venue_id, "status": status.value, "keywords": keywords or None},
        )
        return updated > 0

    def save_website(self, venue_id: str, website_url: str, wikidata_id: Optional[str]) -> bool:
        """Store a looked-up homepage unless the venue gained one in the meantime."""
        updated = self._execute(
            _UPDATE_WEBSITE,
            {
                "venue_id": venue_id,
                "website_url": website_url,
                "website_source": "wikidata",
                "wikidata_id": wikidata_id,
            },
        )
        return updated > 0

    def mark_website_lookup(self, venue_id: str) -> None:
        self._execute(_MARK_WEBSITE_LOOKUP, {"venue_id": venue_id})

    def save_crawl_document(self, venue_id: str, raw_markdown: str) -> None:
        self._execute(_UPDATE_CRAWL_DOCUMENT, {"venue_id": venue_id, "raw_markdown": raw_markdown})

    def save_image_manifest(self, venue_id: str, manifest: ImageManifest) -> None:
        self._execute(
            _UPDATE_IMAGE_MANIFEST,
            {"venue_id": venue_id, "image_data": extras.Json(manifest.to_json())},
        )

    def save_enrichment(self, venue_id: str, fields: EnrichmentFields) -> None:
        params = fields.model_dump(mode="json")
        params["venue_id"] = venue_id
        self._execute(_UPDATE_ENRICHMENT, params)

    def existing_embedding_paths(self, venue_id: str) -> Set[str]:
        rows = self._fetch(_SELECT_EMBEDDING_PATHS, {"venue_id": venue_id})
        return {row["image_path"] for row in rows}

    def save_embeddings(self, venue_id: str, embeddings: Iterable[Tuple[str, Sequence[float]]]) -> int:
        inserted = 0
        for image_path, vector in embeddings:
            inserted += max(
                self._execute(
                    _INSERT_EMBEDDING,
                    {
                        "venue_id": venue_id,
                        "image_path": image_path,
                        "embedding_vector": _vector_literal(vector),
                    },
                ),
                0,
            )
        return inserted
