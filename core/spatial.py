"""
Spatial and geometry utilities.

Converts stored bounds into Shapely geometries. Everything here is a pure
function of its inputs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from shapely.geometry import box

if TYPE_CHECKING:
    from shapely.geometry import Polygon

    from db.models import LatLngBounds


def bounds_to_polygon(bounds: LatLngBounds) -> Polygon:
    """Return the bounds as a lon/lat rectangle."""
    return box(
        bounds.south_west.longitude,
        bounds.south_west.latitude,
        bounds.north_east.longitude,
        bounds.north_east.latitude,
    )


def validate_bounding_box(
    min_lat: float,
    min_lon: float,
    max_lat: float,
    max_lon: float,
) -> bool:
    """Validate bounding box coordinate ranges and ordering."""
    if not (-90 <= min_lat <= 90 and -90 <= max_lat <= 90):
        return False
    if not (-180 <= min_lon <= 180 and -180 <= max_lon <= 180):
        return False
    return min_lat <= max_lat and min_lon <= max_lon
