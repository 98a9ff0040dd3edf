"""Bounding-box parsing and tiling for the collection stage."""

import math
from typing import List

from venue_pipeline.models import BBox


def parse_bbox(raw: str) -> BBox:
    """Parse ``"minLon,minLat,maxLon,maxLat"`` into a validated BBox."""
    parts = [part.strip() for part in (raw or "").split(",")]
    if len(parts) != 4:
        raise ValueError('Invalid bbox. Expected "minLon,minLat,maxLon,maxLat" as numbers.')
    try:
        min_lon, min_lat, max_lon, max_lat = (float(part) for part in parts)
    except ValueError as exc:
        raise ValueError('Invalid bbox. Expected "minLon,minLat,maxLon,maxLat" as numbers.') from exc
    if not (min_lon < max_lon and min_lat < max_lat):
        raise ValueError("Invalid bbox. Must satisfy minLon < maxLon and minLat < maxLat.")
    return BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat)


def tile_bbox(bbox: BBox, tile_size: float) -> List[BBox]:
    """Split ``bbox`` into row-major tiles of ``tile_size`` degrees.

    The last row and column are clipped to the input bounds.
    """
    if tile_size <= 0:
        raise ValueError("tile_size must be > 0")

    # Rounding absorbs float noise such as 0.2 / 0.05 == 4.000000000000057.
    rows = max(1, math.ceil(round(bbox.height / tile_size, 9)))
    cols = max(1, math.ceil(round(bbox.width / tile_size, 9)))
    tiles: List[BBox] = []
    for row in range(rows):
        min_lat = min(bbox.min_lat + row * tile_size, bbox.max_lat)
        max_lat = bbox.max_lat if row == rows - 1 else min(bbox.min_lat + (row + 1) * tile_size, bbox.max_lat)
        for col in range(cols):
            min_lon = min(bbox.min_lon + col * tile_size, bbox.max_lon)
            max_lon = bbox.max_lon if col == cols - 1 else min(bbox.min_lon + (col + 1) * tile_size, bbox.max_lon)
            tiles.append(BBox(min_lon=min_lon, min_lat=min_lat, max_lon=max_lon, max_lat=max_lat))
    return tiles


def tile_key(tile: BBox) -> str:
    return f"{tile.min_lon:.4f},{tile.min_lat:.4f},{tile.max_lon:.4f},{tile.max_lat:.4f}"
