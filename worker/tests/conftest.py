import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure `venue_pipeline` is importable when running pytest from the worker directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from venue_pipeline.core.config import Settings  # noqa: E402
from venue_pipeline.models import PreVettingStatus, Venue  # noqa: E402


class FakeStore:
    """In-memory stand-in for VenueStore that applies the same candidate rules."""

    def __init__(self):
        self.rows = {}
        self.tiles = {}
        self.embeddings = {}
        self.enrichments = {}
        self.writes = []

    # -- helpers for tests ---------------------------------------------------

    def add_venue(self, osm_id="node/1", **fields):
        row = {
            "osm_id": osm_id,
            "name": "Test Venue",
            "website_url": "https://example.com",
            "website_source": None,
            "wikidata_id": None,
            "website_lookup_at": None,
            "lat": 51.5,
            "lon": -0.1,
            "osm_metadata": {},
            "pre_vetting_status": "pending",
            "pre_vetting_keywords": None,
            "pre_vetted_at": None,
            "raw_markdown": None,
            "image_data": None,
            "enriched_at": None,
        }
        row.update(fields)
        row["venue_id"] = fields.get("venue_id") or f"venue-{len(self.rows) + 1}"
        self.rows[osm_id] = row
        return row["venue_id"]

    def row(self, venue_id):
        for row in self.rows.values():
            if row["venue_id"] == venue_id:
                return row
        raise KeyError(venue_id)

    def _select(self, predicate):
        return [Venue.from_row(row) for row in self.rows.values() if predicate(row)]

    # -- VenueStore interface ------------------------------------------------

    def completed_tile_keys(self):
        return set(self.tiles)

    def record_tile(self, tile_key, element_count):
        self.tiles.setdefault(tile_key, element_count)

    def upsert_venue(self, row):
        existing = self.rows.get(row["osm_id"])
        if existing is None:
            self.add_venue(
                row["osm_id"],
                name=row["name"],
                website_url=row.get("website_url"),
                website_source="osm" if row.get("website_url") else None,
                lat=row["lat"],
                lon=row["lon"],
                osm_metadata=row.get("osm_metadata") or {},
            )
        else:
            if row.get("website_url"):
                existing.update(website_url=row["website_url"], website_source="osm")
            existing.update(
                name=row["name"],
                lat=row["lat"],
                lon=row["lon"],
                osm_metadata=row.get("osm_metadata") or {},
            )

    def fetch_prevetting_candidates(self):
        return self._select(lambda r: r["pre_vetting_status"] == "pending" and r["website_url"])

    def fetch_website_candidates(self):
        return self._select(lambda r: not r["website_url"] and r["website_lookup_at"] is None)

    def fetch_crawl_candidates(self):
        return self._select(
            lambda r: r["pre_vetting_status"] == "yes" and r["website_url"] and r["raw_markdown"] is None
        )

    def fetch_image_candidates(self):
        return self._select(lambda r: r["raw_markdown"] is not None and r["image_data"] is None)

    def fetch_enrichment_candidates(self):
        return self._select(lambda r: r["raw_markdown"] is not None and r["enriched_at"] is None)

    def fetch_filter_candidates(self):
        return self._select(
            lambda r: r["image_data"] is not None
            and len(r["image_data"].get("local_paths") or []) > 0
            and r["image_data"].get("clip_logo_verified") is not True
        )

    def fetch_embedding_candidates(self):
        return self._select(lambda r: r["image_data"] is not None and r["image_data"].get("clip_logo_verified") is True)

    def save_prevetting(self, venue_id, status, keywords):
        if status is PreVettingStatus.PENDING:
            raise ValueError("pre-vetting cannot write the pending status")
        row = self.row(venue_id)
        if row["pre_vetting_status"] != "pending":
            return False
        row.update(
            pre_vetting_status=status.value,
            pre_vetting_keywords=keywords or None,
            pre_vetted_at=datetime.now(timezone.utc),
        )
        self.writes.append(("prevetting", venue_id))
        return True

    def save_website(self, venue_id, website_url, wikidata_id):
        row = self.row(venue_id)
        if row["website_url"]:
            return False
        row.update(
            website_url=website_url,
            website_source="wikidata",
            wikidata_id=wikidata_id,
            website_lookup_at=datetime.now(timezone.utc),
        )
        self.writes.append(("website", venue_id))
        return True

    def mark_website_lookup(self, venue_id):
        self.row(venue_id)["website_lookup_at"] = datetime.now(timezone.utc)

    def save_crawl_document(self, venue_id, raw_markdown):
        self.row(venue_id)["raw_markdown"] = raw_markdown
        self.writes.append(("crawl", venue_id))

    def save_image_manifest(self, venue_id, manifest):
        self.row(venue_id)["image_data"] = manifest.to_json()
        self.writes.append(("images", venue_id))

    def save_enrichment(self, venue_id, fields):
        row = self.row(venue_id)
        row["enriched_at"] = datetime.now(timezone.utc)
        self.enrichments[venue_id] = fields
        self.writes.append(("enrichment", venue_id))

    def existing_embedding_paths(self, venue_id):
        return {path for vid, path in self.embeddings if vid == venue_id}

    def save_embeddings(self, venue_id, embeddings):
        inserted = 0
        for path, vector in embeddings:
            if (venue_id, path) not in self.embeddings:
                self.embeddings[(venue_id, path)] = list(vector)
                inserted += 1
        return inserted


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url="",
        overpass_endpoints=("https://overpass.test/api/interpreter",),
        overpass_delay_ms=0,
        data_dir=str(tmp_path / "data"),
        image_error_log=str(tmp_path / "image_errors.log"),
        prevet_concurrency=2,
        crawl_concurrency=2,
        image_download_concurrency=2,
        image_filter_concurrency=2,
        embedding_concurrency=2,
    )


@pytest.fixture(autouse=True)
def no_sleep(monkeypatch):
    monkeypatch.setattr("time.sleep", lambda seconds: None)
