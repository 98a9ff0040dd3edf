"""CLI job that runs the venue ingestion pipeline over a bounding box."""

import argparse
import logging
from typing import Dict, List, Optional, Sequence

from venue_pipeline.core.config import get_settings
from venue_pipeline.core.db import VenueStore, init_pool, init_schema
from venue_pipeline.core.pipeline import PipelineAbort, PipelineContext, Stage, StageReport, run_pipeline
from venue_pipeline.etl.tiles import parse_bbox
from venue_pipeline.stages import collect, crawl, embeddings, enrichment, image_filter, images, pre_vetting, websites

logger = logging.getLogger(__name__)

STAGES: Dict[str, Stage] = {
    stage.name: stage
    for stage in (
        collect.STAGE,
        websites.STAGE,
        pre_vetting.STAGE,
        crawl.STAGE,
        images.STAGE,
        enrichment.STAGE,
        image_filter.STAGE,
        embeddings.STAGE,
    )
}

DEFAULT_STAGE_ORDER = ("collect", "pre_vetting", "crawl", "images", "enrichment", "image_filter")
DEFAULT_BBOX = "-122.55,37.69,-122.35,37.84"
DEFAULT_TILE_SIZE = 0.05


def build_stages(names: Optional[Sequence[str]] = None) -> List[Stage]:
    selected = list(names) if names else list(DEFAULT_STAGE_ORDER)
    unknown = [name for name in selected if name not in STAGES]
    if unknown:
        raise ValueError(f"unknown stage(s): {', '.join(unknown)}; choose from {', '.join(STAGES)}")
    return [STAGES[name] for name in selected]


def parse_stage_list(raw: Optional[str]) -> Optional[List[str]]:
    if not raw:
        return None
    return [part.strip() for part in raw.split(",") if part.strip()]


def run_pipeline_job(
    *,
    bbox: str,
    tile_size: float = DEFAULT_TILE_SIZE,
    stage_names: Optional[Sequence[str]] = None,
    init_db: bool = False,
    store=None,
) -> List[StageReport]:
    settings = get_settings()
    if tile_size <= 0:
        raise ValueError("tile size must be positive")
    stages = build_stages(stage_names)
    box = parse_bbox(bbox)

    if store is None:
        init_pool()
        if init_db:
            init_schema()
        store = VenueStore()

    ctx = PipelineContext(settings=settings, store=store, bbox=box, tile_size=tile_size)
    logger.info("Running stages %s over bbox=%s tile_size=%s", [s.name for s in stages], bbox, tile_size)
    return run_pipeline(ctx, stages)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the venue ingestion pipeline")
    parser.add_argument(
        "--bbox",
        dest="bbox",
        default=DEFAULT_BBOX,
        help="Bounding box as minLon,minLat,maxLon,maxLat",
    )
    parser.add_argument(
        "--tile-size",
        dest="tile_size",
        type=float,
        default=DEFAULT_TILE_SIZE,
        help="Tile edge length in degrees",
    )
    parser.add_argument(
        "--stages",
        dest="stages",
        help=f"Comma separated stage names (default: {','.join(DEFAULT_STAGE_ORDER)})",
    )
    parser.add_argument("--init-db", dest="init_db", action="store_true", help="Create tables before running")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        reports = run_pipeline_job(
            bbox=args.bbox,
            tile_size=args.tile_size,
            stage_names=parse_stage_list(args.stages),
            init_db=args.init_db,
        )
    except ValueError as exc:
        parser.error(str(exc))
    except PipelineAbort as exc:
        logger.error("Pipeline aborted at stage '%s': %s", exc.stage_name, exc.reason)
        raise SystemExit(1) from exc

    for report in reports:
        logger.info("%s: %s (%.1fs)", report.name, report.result.stats, report.elapsed_seconds)


if __name__ == "__main__":
    main()
