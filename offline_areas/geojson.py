"""
GeoJSON tile index parsing.

A basemap source is a GeoJSON FeatureCollection with one feature per
downloadable tile::

    {
      "type": "Feature",
      "geometry": {"type": "Polygon", "coordinates": [...]},
      "properties": {"id": [x, y, z], "url": "https://.../z/x/y.png"}
    }

``properties.id`` may also be a "z/x/y" string, and the feature-level ``id``
is used when the property is absent. A null geometry means the footprint of
the tile coordinate itself.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from shapely.errors import GEOSException
from shapely.geometry import box, shape

from core.exceptions import ParseError
from core.spatial import bounds_to_polygon
from core.tiles import TileCoordinate, parse_tile_key, tile_bounds_wgs84, tile_path
from db.models import Tile, TileState

if TYPE_CHECKING:
    from pathlib import Path

    from shapely.geometry.base import BaseGeometry

    from db.models import LatLngBounds

logger = logging.getLogger(__name__)


def _coordinate_part(value: Any) -> int:
    if isinstance(value, bool):
        msg = f"Invalid tile coordinate: {value!r}"
        raise ValueError(msg)
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    msg = f"Invalid tile coordinate: {value!r}"
    raise ValueError(msg)


def _tile_coordinate(feature: dict[str, Any]) -> TileCoordinate:
    properties = feature.get("properties") or {}
    raw_id = properties.get("id", feature.get("id"))
    if isinstance(raw_id, str):
        return parse_tile_key(raw_id)
    if isinstance(raw_id, list) and len(raw_id) == 3:
        x, y, z = (_coordinate_part(value) for value in raw_id)
        coordinate = TileCoordinate(z, x, y)
        if coordinate.is_valid():
            return coordinate
    msg = f"Invalid tile id: {raw_id!r}"
    raise ValueError(msg)


def _footprint(feature: dict[str, Any], coordinate: TileCoordinate) -> BaseGeometry:
    geometry = feature.get("geometry")
    if geometry is None:
        return box(*tile_bounds_wgs84(coordinate.z, coordinate.x, coordinate.y))
    footprint = shape(geometry)
    if footprint.is_empty:
        msg = "Empty tile geometry"
        raise ValueError(msg)
    return footprint


def load_tile_features(source_file: Path) -> list[tuple[Tile, BaseGeometry]]:
    """
    Parse every tile feature of a source file.

    Raises:
        ParseError: If the file cannot be read or any feature is malformed.
    """
    try:
        with open(source_file, encoding="utf-8") as fh:
            document = json.load(fh)
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        msg = f"Unreadable basemap source {source_file}: {exc}"
        raise ParseError(msg, {"path": str(source_file)}) from exc

    if not isinstance(document, dict) or document.get("type") != "FeatureCollection":
        msg = f"Basemap source {source_file} is not a GeoJSON FeatureCollection"
        raise ParseError(msg, {"path": str(source_file)})

    features = document.get("features")
    if not isinstance(features, list):
        msg = f"Basemap source {source_file} has no feature list"
        raise ParseError(msg, {"path": str(source_file)})

    parsed: list[tuple[Tile, BaseGeometry]] = []
    for index, feature in enumerate(features):
        try:
            if not isinstance(feature, dict):
                msg = "Feature is not an object"
                raise ValueError(msg)
            coordinate = _tile_coordinate(feature)
            url = (feature.get("properties") or {}).get("url")
            if not isinstance(url, str) or not url:
                msg = "Missing tile url"
                raise ValueError(msg)
            footprint = _footprint(feature, coordinate)
        except (
            ValueError,
            TypeError,
            KeyError,
            IndexError,
            AttributeError,
            GEOSException,
        ) as exc:
            msg = f"Malformed feature #{index} in {source_file}: {exc}"
            raise ParseError(msg, {"path": str(source_file), "feature": index}) from exc

        tile = Tile(
            id=coordinate.key,
            url=url,
            path=tile_path(coordinate, url),
            state=TileState.PENDING,
        )
        parsed.append((tile, footprint))

    logger.debug("Parsed %d tile features from %s", len(parsed), source_file)
    return parsed


class GeoFeatureIndex:
    """Resolves which tiles of a basemap source intersect a rectangle."""

    def intersecting_tiles(
        self,
        bounds: LatLngBounds,
        source_file: Path,
    ) -> frozenset[Tile]:
        area = bounds_to_polygon(bounds)
        return frozenset(
            tile
            for tile, footprint in load_tile_features(source_file)
            if footprint.intersects(area)
        )
