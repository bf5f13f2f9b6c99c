"""
Offline basemap areas.

Resolves which tiles intersect a user-selected area, persists area and tile
state, and queues the tile download job.

Key components:
- GeoFeatureIndex: tile index parsing and intersection
- BaseMapSourceFetcher: basemap source downloads
- LocalAreaStore: area/tile persistence and live queries
- OfflineAreaCoordinator: the orchestrator
"""

from offline_areas.coordinator import AreaRequest, OfflineAreaCoordinator
from offline_areas.geojson import GeoFeatureIndex
from offline_areas.sources import BaseMapSourceFetcher, SourceSelectionStrategy
from offline_areas.store import LocalAreaStore

__all__ = [
    "AreaRequest",
    "BaseMapSourceFetcher",
    "GeoFeatureIndex",
    "LocalAreaStore",
    "OfflineAreaCoordinator",
    "SourceSelectionStrategy",
]
