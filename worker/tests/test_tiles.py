import math

import pytest

from venue_pipeline.etl import tiles
from venue_pipeline.models import BBox


def test_parse_bbox():
    bbox = tiles.parse_bbox("-122.55, 37.69,-122.35,37.84")
    assert bbox == BBox(min_lon=-122.55, min_lat=37.69, max_lon=-122.35, max_lat=37.84)


@pytest.mark.parametrize("raw", ["", "1,2,3", "a,b,c,d", "2,0,1,1", "0,2,1,1"])
def test_parse_bbox_rejects_invalid(raw):
    with pytest.raises(ValueError):
        tiles.parse_bbox(raw)


@pytest.mark.parametrize(
    "bbox,size",
    [
        (BBox(-122.55, 37.69, -122.35, 37.84), 0.05),
        (BBox(0.0, 0.0, 1.0, 1.0), 0.3),
        (BBox(10.0, 20.0, 10.01, 20.5), 0.1),
    ],
)
def test_tiles_cover_bbox_exactly(bbox, size):
    result = tiles.tile_bbox(bbox, size)

    assert len(result) == math.ceil(round(bbox.width / size, 9)) * math.ceil(round(bbox.height / size, 9))
    for tile in result:
        assert bbox.min_lon <= tile.min_lon < tile.max_lon <= bbox.max_lon
        assert bbox.min_lat <= tile.min_lat < tile.max_lat <= bbox.max_lat

    assert min(t.min_lon for t in result) == bbox.min_lon
    assert min(t.min_lat for t in result) == bbox.min_lat
    assert max(t.max_lon for t in result) == bbox.max_lon
    assert max(t.max_lat for t in result) == bbox.max_lat

    area = sum(t.width * t.height for t in result)
    assert area == pytest.approx(bbox.width * bbox.height)


def test_tiles_are_row_major():
    result = tiles.tile_bbox(BBox(0.0, 0.0, 1.0, 1.0), 0.5)
    assert [(t.min_lon, t.min_lat) for t in result] == [(0.0, 0.0), (0.5, 0.0), (0.0, 0.5), (0.5, 0.5)]


def test_tile_bbox_rejects_non_positive_size():
    with pytest.raises(ValueError):
        tiles.tile_bbox(BBox(0.0, 0.0, 1.0, 1.0), 0)


def test_tile_key_is_deterministic():
    tile = BBox(-122.55, 37.69, -122.5, 37.74)
    assert tiles.tile_key(tile) == "-122.5500,37.6900,-122.5000,37.7400"
    assert tiles.tile_key(tile) == tiles.tile_key(BBox(-122.55, 37.69, -122.5, 37.74))
