import pytest
from pydantic import ValidationError

from core.spatial import bounds_to_polygon, validate_bounding_box
from core.tiles import TileCoordinate, parse_tile_key, tile_bounds_wgs84, tile_path
from db.models import LatLngBounds


def test_validate_bounding_box() -> None:
    assert validate_bounding_box(10.0, 20.0, 11.0, 21.0)
    assert validate_bounding_box(10.0, 20.0, 10.0, 20.0)
    assert not validate_bounding_box(11.0, 20.0, 10.0, 21.0)
    assert not validate_bounding_box(10.0, 21.0, 11.0, 20.0)
    assert not validate_bounding_box(-91.0, 0.0, 0.0, 0.0)
    assert not validate_bounding_box(0.0, 0.0, 0.0, 181.0)


def test_lat_lng_bounds_rejects_inverted_corners() -> None:
    with pytest.raises(ValidationError):
        LatLngBounds.from_coordinates(11.0, 20.0, 10.0, 21.0)


def test_bounds_to_polygon_uses_lon_lat_order() -> None:
    polygon = bounds_to_polygon(LatLngBounds.from_coordinates(10.0, 20.0, 11.0, 21.0))

    assert polygon.bounds == (20.0, 10.0, 21.0, 11.0)


def test_parse_tile_key() -> None:
    coordinate = parse_tile_key("12/2730/1818")

    assert coordinate == TileCoordinate(12, 2730, 1818)
    assert coordinate.key == "12/2730/1818"


@pytest.mark.parametrize("key", ["", "1/2", "1/2/3/4", "z/x/y", "1/2/0", "-1/0/0"])
def test_parse_tile_key_rejects_malformed_keys(key: str) -> None:
    with pytest.raises(ValueError):
        parse_tile_key(key)


def test_tile_bounds_wgs84_root_tile() -> None:
    west, south, east, north = tile_bounds_wgs84(0, 0, 0)

    assert west == pytest.approx(-180.0)
    assert east == pytest.approx(180.0)
    assert south == pytest.approx(-85.0511, abs=1e-3)
    assert north == pytest.approx(85.0511, abs=1e-3)


def test_tile_path_keeps_url_extension() -> None:
    coordinate = TileCoordinate(3, 4, 5)

    assert tile_path(coordinate) == "3/4/5.png"
    assert tile_path(coordinate, "https://t.example/3/4/5.JPG?key=abc") == "3/4/5.jpg"
    assert tile_path(coordinate, "https://t.example/tiles/3/4/5") == "3/4/5.png"
