"""Stage 4: structured field extraction from the crawled document with a local LLM."""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

from venue_pipeline.core.config import Settings
from venue_pipeline.core.pipeline import PipelineContext, Stage, StageResult
from venue_pipeline.core.remote import RemoteCallError
from venue_pipeline.etl.extraction import validate_extraction
from venue_pipeline.models import EnrichmentFields, Venue
from venue_pipeline.vendors import ollama

logger = logging.getLogger(__name__)

MAX_ATTEMPTS = 3
BASE_TEMPERATURE = 0.1
TEMPERATURE_STEP = 0.2
DOCUMENT_CHAR_LIMIT = 3000
MAX_TOKENS = 256
TOP_P = 0.9
STOP_SEQUENCES = ["\n\n\n", "```"]

SYSTEM_PROMPT = """You are a JSON-only API. Discard social media, contact details and SEO text.
Reply with exactly one JSON object with these keys and nothing else:
{
  "is_wedding_venue": boolean,
  "is_estate": boolean,
  "is_historic": boolean,
  "has_lodging": boolean,
  "lodging_capacity": integer >= 0,
  "pricing_tier": "low" | "medium" | "high" | "luxury" | "unknown"
}
If a value cannot be determined use false, 0 or "unknown"."""


def temperature_for(attempt: int) -> float:
    """Sampling temperature for a 1-based attempt number."""
    return round(BASE_TEMPERATURE + TEMPERATURE_STEP * (attempt - 1), 2)


def build_messages(venue: Venue) -> List[Dict[str, str]]:
    excerpt = (venue.raw_markdown or "")[:DOCUMENT_CHAR_LIMIT]
    user_content = (
        "### RAW DATA TO ANALYZE:\n"
        f"<BEGIN_SCRAPE>\n{excerpt}\n<END_SCRAPE>\n\n"
        f"### TASK:\nExtract the fields for {venue.name} according to the schema."
    )
    return [
        {"role": "system", "content": SYSTEM_PROMPT},
        {"role": "user", "content": user_content},
        # Anchors the reply to a JSON object.
        {"role": "assistant", "content": "{"},
    ]


def build_options(attempt: int) -> Dict[str, Any]:
    return {
        "temperature": temperature_for(attempt),
        "top_p": TOP_P,
        "stop": list(STOP_SEQUENCES),
        "num_predict": MAX_TOKENS,
    }


def enrich_venue(venue: Venue, settings: Settings) -> Optional[EnrichmentFields]:
    """Ask the model for the venue's fields, retrying with a hotter temperature on bad output.

    Returns None when every attempt fails validation; transport errors propagate
    to the caller.
    """
    messages = build_messages(venue)
    for attempt in range(1, MAX_ATTEMPTS + 1):
        raw = ollama.chat(
            settings.ollama_url,
            model=settings.ollama_model,
            messages=messages,
            options=build_options(attempt),
            timeout=settings.ollama_timeout,
        )
        result = validate_extraction(raw)
        if result.ok:
            return result.fields
        logger.warning(
            "%s: attempt %d/%d failed at %s step - %s",
            venue.name,
            attempt,
            MAX_ATTEMPTS,
            result.failed_step,
            (result.error or "")[:200],
        )
    return None


def run(ctx: PipelineContext) -> StageResult:
    settings = ctx.settings
    store = ctx.store
    venues = store.fetch_enrichment_candidates()
    if not venues:
        logger.info("No new venues found for enrichment.")
        return StageResult.ok(enriched=0)

    enriched = 0
    invalid = 0
    errors = 0
    for venue in venues:
        try:
            fields = enrich_venue(venue, settings)
        except (RemoteCallError, ollama.OllamaError, requests.RequestException) as exc:
            errors += 1
            logger.warning("%s (%s): enrichment call failed - %s", venue.name, venue.venue_id, str(exc)[:200])
            continue

        if fields is None:
            invalid += 1
            logger.warning("%s: no valid extraction after %d attempts; leaving defaults", venue.name, MAX_ATTEMPTS)
            continue

        store.save_enrichment(venue.venue_id, fields)
        enriched += 1
        logger.info("%s: enriched %s", venue.name, fields.model_dump(mode="json"))

    logger.info("enrichment: enriched=%d invalid=%d errors=%d", enriched, invalid, errors)
    return StageResult.ok(enriched=enriched, invalid=invalid, errors=errors)


STAGE = Stage(name="enrichment", run=run)
