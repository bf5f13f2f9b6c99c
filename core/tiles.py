"""
Slippy-map tile helpers used by the offline basemap pipeline.

Coordinates:
- WGS84: lon/lat degrees (EPSG:4326)
- Tiles: XYZ addressing, keyed as "z/x/y"
"""

from __future__ import annotations

from typing import Final, NamedTuple
from urllib.parse import urlparse

import mercantile

DEFAULT_TILE_EXTENSION: Final[str] = ".png"
MAX_ZOOM: Final[int] = 30


class TileCoordinate(NamedTuple):
    z: int
    x: int
    y: int

    @property
    def key(self) -> str:
        return f"{self.z}/{self.x}/{self.y}"

    def is_valid(self) -> bool:
        if not 0 <= self.z <= MAX_ZOOM:
            return False
        limit = 1 << self.z
        return 0 <= self.x < limit and 0 <= self.y < limit


def parse_tile_key(key: str) -> TileCoordinate:
    """Parse a "z/x/y" key. Raises ValueError when malformed."""
    parts = key.strip().split("/")
    if len(parts) != 3:
        msg = f"Invalid tile key: {key!r}"
        raise ValueError(msg)
    z, x, y = (int(part) for part in parts)
    coordinate = TileCoordinate(z, x, y)
    if not coordinate.is_valid():
        msg = f"Tile coordinate out of range: {key!r}"
        raise ValueError(msg)
    return coordinate


def tile_bounds_wgs84(z: int, x: int, y: int) -> tuple[float, float, float, float]:
    """Return tile bounds in lon/lat degrees as (min_lon, min_lat, max_lon, max_lat)."""
    b = mercantile.bounds(x, y, z)
    return float(b.west), float(b.south), float(b.east), float(b.north)


def tile_path(coordinate: TileCoordinate, url: str | None = None) -> str:
    """Relative file path for a tile, keeping the extension of its URL."""
    suffix = DEFAULT_TILE_EXTENSION
    if url:
        name = urlparse(url).path.rsplit("/", 1)[-1]
        if "." in name:
            suffix = "." + name.rsplit(".", 1)[-1].lower()
    return f"{coordinate.z}/{coordinate.x}/{coordinate.y}{suffix}"
