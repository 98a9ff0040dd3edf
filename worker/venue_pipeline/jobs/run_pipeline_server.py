"""HTTP entrypoint that triggers pipeline runs in the background."""

from __future__ import annotations

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict

from flask import Flask, jsonify, request

from venue_pipeline.core.config import get_settings
from venue_pipeline.etl.tiles import parse_bbox
from venue_pipeline.jobs.run_pipeline import DEFAULT_TILE_SIZE, build_stages, parse_stage_list, run_pipeline_job

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App & executor ----------
app = Flask(__name__)
# One run at a time; stages assume a single pipeline instance.
_executor = ThreadPoolExecutor(max_workers=1)

# ---------- Routes ----------


@app.get("/")
def root() -> Any:
    """Simple root to avoid 404 on GET /"""
    return "ok", 200


@app.get("/healthz")
def healthcheck() -> Any:
    """Reads settings only; no database connection is attempted."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "overpass_endpoints": len(settings.overpass_endpoints),
            }
        ),
        200,
    )


@app.post("/pipeline")
def enqueue_pipeline() -> Any:
    """
    Enqueue a pipeline run.
    Required JSON fields: bbox ("minLon,minLat,maxLon,maxLat")
    Optional: tile_size (float), stages (list or comma separated string)
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    bbox = str(payload.get("bbox") or "").strip()
    if not bbox:
        return jsonify({"error": "missing fields: bbox"}), 400
    try:
        parse_bbox(bbox)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    tile_size_raw = payload.get("tile_size", DEFAULT_TILE_SIZE)
    try:
        tile_size = float(tile_size_raw)
    except (TypeError, ValueError):
        return jsonify({"error": "tile_size must be numeric"}), 400
    if tile_size <= 0:
        return jsonify({"error": "tile_size must be positive"}), 400

    stages_raw = payload.get("stages")
    if isinstance(stages_raw, list):
        stage_names = [str(name).strip() for name in stages_raw if str(name).strip()] or None
    else:
        stage_names = parse_stage_list(stages_raw if isinstance(stages_raw, str) else None)
    try:
        build_stages(stage_names)
    except ValueError as exc:
        return jsonify({"error": str(exc)}), 400

    job_args = dict(bbox=bbox, tile_size=tile_size, stage_names=stage_names)
    logger.info("Queueing pipeline run: %s", job_args)
    _executor.submit(_run_job_safe, job_args)

    return jsonify({"data": {"status": "queued", **job_args}}), 202


# ---------- Internals ----------


def _run_job_safe(job_args: Dict[str, Any]) -> None:
    try:
        run_pipeline_job(**job_args)
    except Exception as exc:  # noqa: BLE001
        logger.exception("Pipeline run failed: %s", exc)


def main() -> None:
    env_port = os.getenv("PORT")
    port = int(env_port or get_settings().worker_port)
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
