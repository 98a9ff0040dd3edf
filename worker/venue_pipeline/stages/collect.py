"""Stage 1: tile the bounding box and upsert candidate venues from Overpass."""

import logging

import requests

from venue_pipeline.core.limiter import Throttle
from venue_pipeline.core.pipeline import PipelineContext, Stage, StageResult
from venue_pipeline.core.remote import RemoteCallError
from venue_pipeline.etl.tiles import tile_bbox, tile_key
from venue_pipeline.etl.transform import to_venue_row
from venue_pipeline.vendors import overpass

logger = logging.getLogger(__name__)


def run(ctx: PipelineContext) -> StageResult:
    if ctx.bbox is None:
        return StageResult.failed("collect requires a bounding box")

    settings = ctx.settings
    store = ctx.store
    tiles = tile_bbox(ctx.bbox, ctx.tile_size)
    done = store.completed_tile_keys()
    remaining = [tile for tile in tiles if tile_key(tile) not in done]

    logger.info(
        "collect: %d total tiles, %d already done, %d remaining",
        len(tiles),
        len(tiles) - len(remaining),
        len(remaining),
    )
    if not remaining:
        logger.info("collect: nothing to do")
        return StageResult.ok(tiles=len(tiles), skipped=len(tiles))

    throttle = Throttle(settings.overpass_delay_ms / 1000.0)
    total_elements = 0
    upserted = 0
    failed_tiles = 0

    for index, tile in enumerate(remaining, start=1):
        key = tile_key(tile)
        throttle.wait()
        try:
            elements = overpass.fetch_elements(
                settings.overpass_endpoints,
                overpass.build_query(tile),
                timeout=settings.overpass_timeout,
            )
        except (RemoteCallError, overpass.OverpassError, requests.RequestException, ValueError) as exc:
            # Left out of the ledger so the next run retries it.
            failed_tiles += 1
            logger.warning("Tile %s failed; treating as empty: %s", key, str(exc)[:200])
            continue

        total_elements += len(elements)
        for element in elements:
            row = to_venue_row(element)
            if row is None:
                continue
            store.upsert_venue(row)
            upserted += 1

        store.record_tile(key, len(elements))
        logger.info("collect: tile %d/%d %s -> %d elements", index, len(remaining), key, len(elements))

    logger.info(
        "collect: elements=%d upserted=%d failed_tiles=%d",
        total_elements,
        upserted,
        failed_tiles,
    )
    return StageResult.ok(
        tiles=len(tiles),
        skipped=len(tiles) - len(remaining),
        elements=total_elements,
        upserted=upserted,
        failed_tiles=failed_tiles,
    )


STAGE = Stage(name="collect", run=run)
