"""Stage 1.2: backfill missing homepages from Wikidata's official-website property."""

import logging

import requests

from venue_pipeline.core.limiter import Throttle
from venue_pipeline.core.pipeline import PipelineContext, Stage, StageResult
from venue_pipeline.core.remote import RemoteCallError
from venue_pipeline.etl.transform import UNKNOWN_VENUE_NAME
from venue_pipeline.etl.urls import sanitize_website
from venue_pipeline.models import Venue
from venue_pipeline.vendors import wikidata

logger = logging.getLogger(__name__)


def is_searchable(venue: Venue) -> bool:
    name = (venue.name or "").strip()
    return bool(name) and name != UNKNOWN_VENUE_NAME and venue.lat is not None and venue.lon is not None


def run(ctx: PipelineContext) -> StageResult:
    settings = ctx.settings
    store = ctx.store
    venues = store.fetch_website_candidates()
    if not venues:
        logger.info("No venues missing a homepage")
        return StageResult.ok(looked_up=0)

    logger.info("Looking up homepages for %d venues...", len(venues))
    throttle = Throttle(settings.wikidata_delay_ms / 1000.0)
    found = 0
    not_found = 0
    skipped = 0
    errors = 0

    for venue in venues:
        if not is_searchable(venue):
            skipped += 1
            store.mark_website_lookup(venue.venue_id)
            continue

        throttle.wait()
        try:
            hit = wikidata.lookup_website(
                venue.name,
                venue.lat,
                venue.lon,
                endpoint=settings.wikidata_endpoint,
                radius_km=settings.wikidata_radius_km,
                limit=settings.wikidata_limit,
                timeout=settings.wikidata_timeout,
            )
        except (RemoteCallError, wikidata.WikidataError, requests.RequestException, ValueError) as exc:
            # Not marked, so the next run asks again.
            errors += 1
            logger.warning("%s (%s): Wikidata lookup failed - %s", venue.name, venue.venue_id, str(exc)[:200])
            continue

        url = sanitize_website(hit.website) if hit else None
        if not url:
            not_found += 1
            store.mark_website_lookup(venue.venue_id)
            logger.info("%s: no homepage on Wikidata", venue.name)
            continue

        if store.save_website(venue.venue_id, url, hit.entity_id):
            found += 1
            logger.info("%s: homepage %s from Wikidata %s", venue.name, url, hit.entity_id)
        else:
            skipped += 1
            logger.info("%s: gained a homepage during lookup; keeping it", venue.name)

    logger.info(
        "websites: found=%d not_found=%d skipped=%d errors=%d",
        found,
        not_found,
        skipped,
        errors,
    )
    return StageResult.ok(
        looked_up=len(venues),
        found=found,
        not_found=not_found,
        skipped=skipped,
        errors=errors,
    )


STAGE = Stage(name="websites", run=run)
