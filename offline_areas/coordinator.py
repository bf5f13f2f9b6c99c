"""
Offline area orchestration.

Turns a user-selected rectangle into persisted tiles and a queued download
job, and serves live queries joining areas, tiles and download state.

Requesting an area and querying its downloaded tiles never fail from the
caller's point of view: errors are logged and the operation completes (or
emits an empty set). Every other operation raises.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

from core.streams import recover_complete, recover_with, switch_map
from db.models import OfflineArea, OfflineAreaState, TileState

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable

    from db.models import LatLngBounds, Project, Tile
    from offline_areas.geojson import GeoFeatureIndex
    from offline_areas.sources import BaseMapSourceFetcher
    from offline_areas.store import LocalAreaStore
    from projects.repository import ProjectRepository
    from tasks.tiles import TileDownloadScheduler

logger = logging.getLogger(__name__)


def _new_area_id() -> str:
    return uuid.uuid4().hex


@dataclass(frozen=True)
class AreaRequest:
    """Handle returned by :meth:`OfflineAreaCoordinator.request_area`."""

    area_id: str
    task: asyncio.Task[None]

    async def wait(self) -> None:
        """Wait for the enqueue pipeline to finish. Never raises."""
        await asyncio.shield(self.task)


class OfflineAreaCoordinator:
    """Stateless orchestrator over the store, fetcher, geo index and scheduler."""

    def __init__(
        self,
        *,
        store: LocalAreaStore,
        projects: ProjectRepository,
        fetcher: BaseMapSourceFetcher,
        geo_index: GeoFeatureIndex,
        scheduler: TileDownloadScheduler,
        tiles_dir: str | Path | None = None,
        id_factory: Callable[[], str] = _new_area_id,
    ) -> None:
        self._store = store
        self._projects = projects
        self._fetcher = fetcher
        self._geo_index = geo_index
        self._scheduler = scheduler
        self._tiles_dir = Path(tiles_dir) if tiles_dir is not None else None
        self._id_factory = id_factory
        self._background: set[asyncio.Task[None]] = set()

    def request_area(
        self,
        bounds: LatLngBounds,
        name: str | None = None,
    ) -> AreaRequest:
        """
        Register a new area and start enqueuing its tiles in the background.

        Must be called from a running event loop. Returns immediately.
        """
        area = OfflineArea(
            id=self._id_factory(),
            bounds=bounds,
            state=OfflineAreaState.PENDING,
            name=name,
        )
        task = asyncio.create_task(
            recover_complete(
                self._enqueue_pipeline(area),
                message=f"Failed to download area {area.id}",
            ),
            name=f"offline-area-{area.id}",
        )
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        logger.info("Requested offline area %s", area.id)
        return AreaRequest(area_id=area.id, task=task)

    async def _enqueue_pipeline(self, area: OfflineArea) -> None:
        await self._store.insert_or_update_offline_area(area)
        project = await self._projects.get_active_project()
        tiles = await self._intersecting_tiles(area.bounds, project)
        await self._enqueue_download(area, tiles)

    async def _intersecting_tiles(
        self,
        bounds: LatLngBounds,
        project: Project,
    ) -> frozenset[Tile]:
        source_files = await self._fetcher.fetch(project.offline_base_map_sources)
        tiles: set[Tile] = set()
        for source_file in source_files:
            tiles |= await asyncio.to_thread(
                self._geo_index.intersecting_tiles,
                bounds,
                source_file,
            )
        return frozenset(tiles)

    async def _enqueue_download(
        self,
        area: OfflineArea,
        tiles: frozenset[Tile],
    ) -> None:
        area.state = OfflineAreaState.IN_PROGRESS
        await self._store.insert_or_update_offline_area(area)
        await asyncio.gather(
            *(
                self._store.insert_or_update_tile(tile, area_id=area.id)
                for tile in tiles
            ),
        )
        logger.info("Stored %d tiles for offline area %s", len(tiles), area.id)
        await self._scheduler.enqueue_tile_download_worker()

    def list_areas(self) -> AsyncIterator[list[OfflineArea]]:
        return self._store.get_offline_areas_once_and_stream()

    async def get_area(self, area_id: str) -> OfflineArea:
        return await self._store.get_offline_area_by_id(area_id)

    async def downloaded_tiles(self) -> AsyncIterator[frozenset[Tile]]:
        async with contextlib.aclosing(
            self._store.get_tiles_once_and_stream(),
        ) as stream:
            async for tiles in stream:
                yield frozenset(
                    tile for tile in tiles if tile.state == TileState.DOWNLOADED
                )

    def intersecting_downloaded_tiles(
        self,
        area: OfflineArea,
    ) -> AsyncIterator[frozenset[Tile]]:
        """
        Live set of the area's tiles that are downloaded.

        The area's tile set is recomputed for every emission of the active
        project. On any failure an empty set is emitted and the stream ends.
        """

        async def downloaded_within(
            project: Project,
        ) -> AsyncIterator[frozenset[Tile]]:
            wanted = await self._intersecting_tiles(area.bounds, project)
            async for downloaded in self.downloaded_tiles():
                yield frozenset(tile for tile in downloaded if tile in wanted)

        return recover_with(
            switch_map(
                self._projects.get_active_project_once_and_stream(),
                downloaded_within,
            ),
            frozenset(),
            message=f"Failed to resolve downloaded tiles for area {area.id}",
        )

    async def remove_area(self, area_id: str) -> list[Tile]:
        """Delete an area, its unshared tiles and their downloaded files."""
        removed = await self._store.delete_offline_area(area_id)
        if self._tiles_dir is not None:
            for tile in removed:
                with contextlib.suppress(FileNotFoundError):
                    (self._tiles_dir / tile.path).unlink()
        return removed
