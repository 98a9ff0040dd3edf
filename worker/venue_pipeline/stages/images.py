"""Stage 3: download the images referenced by each crawled document."""

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from typing import List

from venue_pipeline.core.error_log import append_error
from venue_pipeline.core.image_downloader import download_image, extract_image_urls
from venue_pipeline.core.limiter import run_bounded
from venue_pipeline.core.pipeline import PipelineContext, Stage, StageResult
from venue_pipeline.models import ImageManifest, Venue

logger = logging.getLogger(__name__)


def venue_image_dir(data_dir: str, venue_id: str) -> str:
    return os.path.join(data_dir, "venues", venue_id, "raw_images")


def collect_images(venue: Venue, data_dir: str, *, concurrency: int) -> ImageManifest:
    urls = extract_image_urls(venue.raw_markdown or "")
    target_dir = venue_image_dir(data_dir, venue.venue_id)
    outcomes = run_bounded(lambda url: download_image(url, target_dir), urls, max_workers=concurrency)

    local_paths: List[str] = [outcome.result for outcome in outcomes if outcome.ok and outcome.result]
    logger.info("%s: kept %d of %d referenced image(s)", venue.name, len(local_paths), len(urls))
    return ImageManifest(local_paths=local_paths, processed_at=datetime.now(timezone.utc).isoformat())


def run(ctx: PipelineContext) -> StageResult:
    settings = ctx.settings
    store = ctx.store
    venues = store.fetch_image_candidates()
    if not venues:
        logger.info("No crawled venues awaiting image extraction.")
        return StageResult.ok(processed=0)

    processed = 0
    images = 0
    errors = 0
    for venue in venues:
        try:
            manifest = collect_images(venue, settings.data_dir, concurrency=settings.image_download_concurrency)
        except (OSError, ValueError) as exc:
            errors += 1
            logger.warning("%s (%s): image extraction failed - %s", venue.name, venue.venue_id, str(exc)[:200])
            append_error(settings.image_error_log, f"{venue.name} ({venue.venue_id})", exc)
            continue

        store.save_image_manifest(venue.venue_id, manifest)
        processed += 1
        images += len(manifest.local_paths)

    logger.info("images: venues=%d images=%d errors=%d", processed, images, errors)
    return StageResult.ok(processed=processed, images=images, errors=errors)


STAGE = Stage(name="images", run=run)
