"""Database package for MongoDB operations using Beanie ODM.

Modules:
    manager: DatabaseManager singleton for connection handling
    models: Beanie Document models for all collections

Usage:
    from db.models import OfflineArea, Tile

    area = await OfflineArea.get(area_id)
    tiles = await Tile.find(Tile.area_ids == area_id).to_list()
"""

from db.manager import DatabaseManager, db_manager
from db.models import (
    ALL_DOCUMENT_MODELS,
    LatLng,
    LatLngBounds,
    OfflineArea,
    OfflineAreaState,
    OfflineBaseMapSource,
    Project,
    Tile,
    TileState,
)

__all__ = [
    "ALL_DOCUMENT_MODELS",
    "DatabaseManager",
    "LatLng",
    "LatLngBounds",
    "OfflineArea",
    "OfflineAreaState",
    "OfflineBaseMapSource",
    "Project",
    "Tile",
    "TileState",
    "db_manager",
]
