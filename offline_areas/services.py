"""Process-wide construction of the offline area coordinator."""

from __future__ import annotations

from config import (
    get_basemap_cache_path,
    get_basemap_fetch_retries,
    get_basemap_fetch_timeout,
    get_source_selection_strategy,
    get_stream_poll_seconds,
    get_tiles_path,
)
from offline_areas.coordinator import OfflineAreaCoordinator
from offline_areas.geojson import GeoFeatureIndex
from offline_areas.sources import BaseMapSourceFetcher
from offline_areas.store import LocalAreaStore
from projects.repository import ProjectRepository
from tasks.tiles import TileDownloadScheduler


class _CoordinatorState:
    coordinator: OfflineAreaCoordinator | None = None
    projects: ProjectRepository | None = None


def build_coordinator(
    projects: ProjectRepository | None = None,
) -> OfflineAreaCoordinator:
    """Build a coordinator wired from environment configuration."""
    return OfflineAreaCoordinator(
        store=LocalAreaStore(poll_interval=get_stream_poll_seconds()),
        projects=projects
        or ProjectRepository(poll_interval=get_stream_poll_seconds()),
        fetcher=BaseMapSourceFetcher(
            get_basemap_cache_path(),
            strategy=get_source_selection_strategy(),
            timeout=get_basemap_fetch_timeout(),
            max_retries=get_basemap_fetch_retries(),
        ),
        geo_index=GeoFeatureIndex(),
        scheduler=TileDownloadScheduler(),
        tiles_dir=get_tiles_path(),
    )


def get_project_repository() -> ProjectRepository:
    if _CoordinatorState.projects is None:
        _CoordinatorState.projects = ProjectRepository(
            poll_interval=get_stream_poll_seconds(),
        )
    return _CoordinatorState.projects


def get_offline_area_coordinator() -> OfflineAreaCoordinator:
    """Shared coordinator for the current process."""
    if _CoordinatorState.coordinator is None:
        _CoordinatorState.coordinator = build_coordinator(get_project_repository())
    return _CoordinatorState.coordinator
