"""Image embedding backfill for venues whose galleries passed logo verification."""

from __future__ import annotations

import logging
import os
from typing import List, Sequence, Tuple

from venue_pipeline.core.limiter import TaskOutcome, run_bounded
from venue_pipeline.core.pipeline import PipelineContext, Stage, StageResult
from venue_pipeline.vendors import clip

logger = logging.getLogger(__name__)


def pending_paths(local_paths: Sequence[str], existing: set) -> List[str]:
    return [path for path in local_paths if path not in existing and os.path.exists(path)]


def run(ctx: PipelineContext) -> StageResult:
    settings = ctx.settings
    store = ctx.store
    if not clip.check_health(settings.clip_service_url):
        return StageResult.failed(f"vision service at {settings.clip_service_url} is not reachable")

    venues = store.fetch_embedding_candidates()
    if not venues:
        logger.info("No verified venues to embed.")
        return StageResult.ok(venues=0, inserted=0)

    inserted = 0
    failed = 0
    for venue in venues:
        manifest = venue.image_manifest
        paths = pending_paths(manifest.local_paths if manifest else [], store.existing_embedding_paths(venue.venue_id))
        if not paths:
            continue

        vectors: List[Tuple[str, List[float]]] = []

        def collect(outcome: TaskOutcome) -> None:
            nonlocal failed
            if outcome.ok:
                vectors.append((outcome.item, outcome.result))
            else:
                failed += 1
                logger.warning("%s: could not embed %s - %s", venue.name, outcome.item, str(outcome.error)[:200])

        run_bounded(
            lambda path: clip.encode_image(settings.clip_service_url, path, timeout=settings.clip_timeout),
            paths,
            max_workers=settings.embedding_concurrency,
            on_complete=collect,
        )
        if vectors:
            inserted += store.save_embeddings(venue.venue_id, vectors)
        logger.info("%s: embedded %d of %d new image(s)", venue.name, len(vectors), len(paths))

    logger.info("embeddings: venues=%d inserted=%d failed=%d", len(venues), inserted, failed)
    return StageResult.ok(venues=len(venues), inserted=inserted, failed=failed)


STAGE = Stage(name="embeddings", run=run)
