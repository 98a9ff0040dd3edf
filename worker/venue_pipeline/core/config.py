"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Tuple

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

DEFAULT_OVERPASS_ENDPOINTS = (
    "https://overpass-api.de/api/interpreter",
    "https://overpass.private.coffee/api/interpreter",
    "https://overpass.osm.jp/api/interpreter",
)


@dataclass(frozen=True)
class Settings:
    database_url: str
    overpass_endpoints: Tuple[str, ...] = DEFAULT_OVERPASS_ENDPOINTS
    overpass_delay_ms: int = 1000
    overpass_timeout: int = 30
    crawl_service_url: str = "http://127.0.0.1:11235"
    crawl_timeout: int = 30
    ollama_url: str = "http://localhost:11434"
    ollama_model: str = "phi3"
    ollama_timeout: int = 30
    clip_service_url: str = "http://localhost:51000"
    clip_timeout: int = 30
    wikidata_endpoint: str = "https://query.wikidata.org/sparql"
    wikidata_delay_ms: int = 300
    wikidata_radius_km: int = 5
    wikidata_limit: int = 5
    wikidata_timeout: int = 30
    data_dir: str = "data"
    image_error_log: str = "image_errors.log"
    worker_port: int = 9000
    prevet_concurrency: int = 10
    crawl_concurrency: int = 5
    image_download_concurrency: int = 5
    image_filter_concurrency: int = 5
    embedding_concurrency: int = 10


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %d", name, raw, default)
        return default


def _endpoints_env(name: str) -> Tuple[str, ...]:
    raw = os.getenv(name, "")
    endpoints = tuple(part.strip() for part in raw.split(",") if part.strip())
    return endpoints or DEFAULT_OVERPASS_ENDPOINTS


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")

    return Settings(
        database_url=database_url,
        overpass_endpoints=_endpoints_env("OVERPASS_ENDPOINTS"),
        overpass_delay_ms=_int_env("OVERPASS_DELAY_MS", 1000),
        overpass_timeout=_int_env("OVERPASS_TIMEOUT", 30),
        crawl_service_url=os.getenv("CRAWL_SERVICE_URL", "http://127.0.0.1:11235").rstrip("/"),
        crawl_timeout=_int_env("CRAWL_TIMEOUT", 30),
        ollama_url=os.getenv("OLLAMA_URL", "http://localhost:11434").rstrip("/"),
        ollama_model=os.getenv("OLLAMA_MODEL", "phi3"),
        ollama_timeout=_int_env("OLLAMA_TIMEOUT", 30),
        clip_service_url=os.getenv("CLIP_SERVICE_URL", "http://localhost:51000").rstrip("/"),
        clip_timeout=_int_env("CLIP_TIMEOUT", 30),
        wikidata_endpoint=os.getenv("WIKIDATA_ENDPOINT", "https://query.wikidata.org/sparql"),
        wikidata_delay_ms=_int_env("WIKIDATA_DELAY_MS", 300),
        wikidata_radius_km=_int_env("WIKIDATA_RADIUS_KM", 5),
        wikidata_limit=_int_env("WIKIDATA_LIMIT", 5),
        wikidata_timeout=_int_env("WIKIDATA_TIMEOUT", 30),
        data_dir=os.getenv("DATA_DIR", "data"),
        image_error_log=os.getenv("IMAGE_ERROR_LOG", "image_errors.log"),
        worker_port=_int_env("WORKER_PORT", 9000),
        prevet_concurrency=_int_env("PREVET_CONCURRENCY", 10),
        crawl_concurrency=_int_env("CRAWL_CONCURRENCY", 5),
        image_download_concurrency=_int_env("IMAGE_DOWNLOAD_CONCURRENCY", 5),
        image_filter_concurrency=_int_env("IMAGE_FILTER_CONCURRENCY", 5),
        embedding_concurrency=_int_env("EMBEDDING_CONCURRENCY", 10),
    )
