from __future__ import annotations

import json
from pathlib import Path

import pytest

from core.exceptions import ParseError
from db.models import LatLngBounds, TileState
from offline_areas.geojson import GeoFeatureIndex, load_tile_features

pytestmark = pytest.mark.usefixtures("beanie_db")


def _keys(tiles) -> set[str]:
    return {tile.id for tile in tiles}


def _write_source(tmp_path: Path, document: object) -> Path:
    path = tmp_path / "source.geojson"
    path.write_text(json.dumps(document), encoding="utf-8")
    return path


def _feature(tile_id: object, url: str | None = "https://t.example/1/0/0.png"):
    properties: dict[str, object] = {"id": tile_id}
    if url is not None:
        properties["url"] = url
    return {"type": "Feature", "geometry": None, "properties": properties}


async def test_intersecting_tiles_selects_overlapping_footprints(basemap_path) -> None:
    index = GeoFeatureIndex()

    inner = index.intersecting_tiles(
        LatLngBounds.from_coordinates(0.2, 0.2, 0.8, 0.8),
        basemap_path,
    )
    spanning = index.intersecting_tiles(
        LatLngBounds.from_coordinates(0.5, 0.5, 1.5, 1.5),
        basemap_path,
    )

    assert _keys(inner) == {"10/512/511"}
    assert _keys(spanning) == {
        "10/512/511",
        "10/513/511",
        "10/512/510",
        "10/513/510",
    }


async def test_intersecting_tiles_is_deterministic(basemap_path) -> None:
    index = GeoFeatureIndex()
    bounds = LatLngBounds.from_coordinates(0.5, 0.2, 0.6, 1.8)

    first = index.intersecting_tiles(bounds, basemap_path)
    second = index.intersecting_tiles(bounds, basemap_path)

    assert first == second
    assert _keys(first) == {"10/512/511", "10/513/511"}


async def test_intersecting_tiles_empty_when_nothing_overlaps(basemap_path) -> None:
    tiles = GeoFeatureIndex().intersecting_tiles(
        LatLngBounds.from_coordinates(-40.0, 100.0, -30.0, 110.0),
        basemap_path,
    )

    assert tiles == frozenset()


async def test_null_geometry_uses_tile_footprint(basemap_path) -> None:
    tiles = GeoFeatureIndex().intersecting_tiles(
        LatLngBounds.from_coordinates(10.0, -50.0, 20.0, -40.0),
        basemap_path,
    )

    assert _keys(tiles) == {"1/0/0"}
    (tile,) = tiles
    assert tile.path == "1/0/0.jpg"


async def test_load_tile_features_builds_pending_tiles(basemap_path) -> None:
    features = load_tile_features(basemap_path)

    assert len(features) == 5
    tile, footprint = features[0]
    assert tile.id == "10/512/511"
    assert tile.url == "https://tiles.example.com/10/512/511.png"
    assert tile.path == "10/512/511.png"
    assert tile.state == TileState.PENDING
    assert footprint.bounds == (0.0, 0.0, 1.0, 1.0)


@pytest.mark.parametrize(
    "document",
    [
        {"type": "Feature", "features": []},
        {"type": "FeatureCollection"},
        {"type": "FeatureCollection", "features": [_feature([1, 2])]},
        {"type": "FeatureCollection", "features": [_feature([5, 0, 1])]},
        {"type": "FeatureCollection", "features": [_feature([0.5, 0, 1])]},
        {"type": "FeatureCollection", "features": [_feature([True, 0, 1])]},
        {"type": "FeatureCollection", "features": [_feature(["1", 0, 1])]},
        {"type": "FeatureCollection", "features": [_feature("a/b/c")]},
        {"type": "FeatureCollection", "features": [_feature("1/0/0", url=None)]},
        {"type": "FeatureCollection", "features": ["not-a-feature"]},
        {
            "type": "FeatureCollection",
            "features": [
                {
                    "type": "Feature",
                    "geometry": {
                        "type": "Polygon",
                        "coordinates": [[[0.0, 0.0], [1.0, 1.0]]],
                    },
                    "properties": {"id": "1/0/0", "url": "https://t.example/a.png"},
                },
            ],
        },
    ],
)
async def test_malformed_sources_raise_parse_error(tmp_path, document) -> None:
    source = _write_source(tmp_path, document)

    with pytest.raises(ParseError):
        GeoFeatureIndex().intersecting_tiles(
            LatLngBounds.from_coordinates(0.0, 0.0, 1.0, 1.0),
            source,
        )


async def test_invalid_json_raises_parse_error(tmp_path) -> None:
    source = tmp_path / "broken.geojson"
    source.write_text('{"type": "FeatureCollection", "features": [', encoding="utf-8")

    with pytest.raises(ParseError):
        load_tile_features(source)


async def test_missing_file_raises_parse_error(tmp_path) -> None:
    with pytest.raises(ParseError):
        load_tile_features(tmp_path / "missing.geojson")


async def test_whole_number_float_ids_are_accepted(tmp_path) -> None:
    source = _write_source(
        tmp_path,
        {"type": "FeatureCollection", "features": [_feature([1.0, 0.0, 1])]},
    )

    ((tile, _footprint),) = load_tile_features(source)

    assert tile.id == "1/1/0"
