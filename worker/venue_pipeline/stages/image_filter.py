"""Stage 5: remove logos and text graphics from each venue's downloaded images."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Tuple

import requests

from venue_pipeline.core.config import Settings
from venue_pipeline.core.error_log import append_error
from venue_pipeline.core.limiter import run_bounded
from venue_pipeline.core.pipeline import PipelineContext, Stage, StageResult
from venue_pipeline.core.remote import RemoteCallError
from venue_pipeline.models import ImageManifest, Venue
from venue_pipeline.vendors import clip

logger = logging.getLogger(__name__)

LOGO_THRESHOLD = 0.85


def is_logo(logo_score: float, photo_score: float) -> bool:
    return logo_score > LOGO_THRESHOLD and logo_score > photo_score


@dataclass
class FilterSummary:
    kept: List[str]
    deleted: int = 0
    missing: int = 0
    unscored: int = 0
    failed: List[Tuple[str, OSError]] = field(default_factory=list)


def check_image(path: str, settings: Settings) -> Optional[str]:
    """Verdict for one local image: ``"keep"``, ``"delete"``, ``"unscored"`` or None when the file is gone."""
    if not os.path.exists(path):
        return None
    try:
        logo_score, photo_score = clip.rank_logo_vs_photo(settings.clip_service_url, path, timeout=settings.clip_timeout)
    except (RemoteCallError, clip.ClipError, requests.RequestException, ValueError) as exc:
        logger.warning("Vision check failed for %s; keeping it: %s", path, str(exc)[:200])
        return "unscored"
    except OSError:
        if not os.path.exists(path):
            return None
        raise
    if is_logo(logo_score, photo_score):
        logger.info("Logo detected in %s (logo=%.3f photo=%.3f)", path, logo_score, photo_score)
        return "delete"
    return "keep"


def filter_manifest(manifest: ImageManifest, settings: Settings) -> FilterSummary:
    outcomes = run_bounded(
        lambda path: check_image(path, settings),
        manifest.local_paths,
        max_workers=settings.image_filter_concurrency,
    )

    summary = FilterSummary(kept=[])
    for outcome in outcomes:
        path = outcome.item
        verdict = outcome.result if outcome.ok else "unscored"
        if verdict is None:
            summary.missing += 1
        elif verdict == "delete":
            try:
                os.remove(path)
            except OSError as exc:
                summary.failed.append((path, exc))
                if os.path.exists(path):
                    summary.kept.append(path)
                continue
            summary.deleted += 1
        else:
            if verdict == "unscored":
                summary.unscored += 1
            summary.kept.append(path)
    return summary


def run(ctx: PipelineContext) -> StageResult:
    settings = ctx.settings
    store = ctx.store
    venues = store.fetch_filter_candidates()
    if not venues:
        logger.info("No image manifests awaiting logo verification.")
        return StageResult.ok(verified=0)

    verified = 0
    deleted = 0
    errors = 0
    for venue in venues:
        manifest: ImageManifest = venue.image_manifest or ImageManifest()
        summary = filter_manifest(manifest, settings)
        for path, exc in summary.failed:
            errors += 1
            logger.warning("%s (%s): could not delete %s - %s", venue.name, venue.venue_id, path, str(exc)[:200])
            append_error(settings.image_error_log, f"{_label(venue)} {path}", exc)

        pruned = ImageManifest(
            local_paths=summary.kept,
            processed_at=manifest.processed_at,
            logo_verified=True,
            last_verified_at=datetime.now(timezone.utc).isoformat(),
        )
        store.save_image_manifest(venue.venue_id, pruned)
        verified += 1
        deleted += summary.deleted
        logger.info(
            "%s: kept=%d deleted=%d missing=%d unscored=%d failed=%d",
            venue.name,
            len(summary.kept),
            summary.deleted,
            summary.missing,
            summary.unscored,
            len(summary.failed),
        )

    logger.info("image_filter: venues=%d deleted=%d errors=%d", verified, deleted, errors)
    return StageResult.ok(verified=verified, deleted=deleted, errors=errors)


def _label(venue: Venue) -> str:
    return f"Venue {venue.venue_id} ({venue.name})"


STAGE = Stage(name="image_filter", run=run)
