"""
Local persistence for offline areas and tiles.

Writes are atomic per document: tile upserts never touch the state of an
existing tile, and state changes are compare-and-set against the allowed
transitions, so concurrent writers cannot downgrade a tile.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterable
from datetime import UTC, datetime
from typing import Any

from pymongo.errors import PyMongoError

from core.exceptions import PersistenceError, ResourceNotFoundError
from core.streams import ChangeFeed, once_and_stream
from db.models import (
    TILE_TRANSITIONS,
    OfflineArea,
    OfflineAreaState,
    Tile,
    TileState,
)

logger = logging.getLogger(__name__)


def _fingerprint(documents: Iterable[OfflineArea | Tile]) -> list[tuple[str, str]]:
    return sorted((str(doc.id), doc.model_dump_json()) for doc in documents)


class LocalAreaStore:
    """Beanie-backed store with live queries over areas and tiles."""

    def __init__(
        self,
        *,
        feed: ChangeFeed | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._feed = feed or ChangeFeed()
        self._poll_interval = poll_interval

    @property
    def feed(self) -> ChangeFeed:
        return self._feed

    async def insert_or_update_offline_area(self, area: OfflineArea) -> None:
        area.updated_at = datetime.now(UTC)
        try:
            await area.save()
        except PyMongoError as exc:
            msg = f"Failed to save offline area {area.id}"
            raise PersistenceError(msg, {"area_id": area.id}) from exc
        self._feed.publish()

    async def update_offline_area_state(
        self,
        area_id: str,
        state: OfflineAreaState,
    ) -> None:
        """Set an area's aggregate state; used by download reconciliation."""
        area = await self.get_offline_area_by_id(area_id)
        area.state = state
        await self.insert_or_update_offline_area(area)

    async def insert_or_update_tile(
        self,
        tile: Tile,
        area_id: str | None = None,
    ) -> None:
        """
        Insert a tile as PENDING, or add area membership to an existing one.

        The state of an existing tile is never modified here.
        """
        now = datetime.now(UTC)
        update: dict[str, Any] = {
            "$setOnInsert": {
                "url": tile.url,
                "path": tile.path,
                "state": TileState.PENDING.value,
                "attempts": 0,
                "created_at": now,
            },
        }
        if area_id is not None:
            update["$addToSet"] = {"area_ids": area_id}
        else:
            update["$setOnInsert"]["area_ids"] = []
        try:
            await Tile.get_pymongo_collection().update_one(
                {"_id": tile.id},
                update,
                upsert=True,
            )
        except PyMongoError as exc:
            msg = f"Failed to upsert tile {tile.id}"
            raise PersistenceError(msg, {"tile_id": tile.id}) from exc
        self._feed.publish()

    async def _compare_and_set(
        self,
        key: str,
        expected: Iterable[TileState],
        update: dict[str, Any],
    ) -> bool:
        try:
            result = await Tile.get_pymongo_collection().update_one(
                {"_id": key, "state": {"$in": [state.value for state in expected]}},
                update,
            )
        except PyMongoError as exc:
            msg = f"Failed to update tile {key}"
            raise PersistenceError(msg, {"tile_id": key}) from exc
        if result.modified_count != 1:
            return False
        self._feed.publish()
        return True

    async def update_tile_state(self, key: str, state: TileState) -> bool:
        """
        Move a tile to ``state`` if its current state allows it.

        Returns False when the tile is missing or the transition is refused.
        """
        allowed_from = [
            source for source, targets in TILE_TRANSITIONS.items() if state in targets
        ]
        if not allowed_from:
            return False
        return await self._compare_and_set(
            key,
            allowed_from,
            {"$set": {"state": state.value, "updated_at": datetime.now(UTC)}},
        )

    async def claim_tile(self, key: str, max_attempts: int) -> bool:
        """Mark a PENDING or FAILED tile IN_PROGRESS and count the attempt."""
        try:
            result = await Tile.get_pymongo_collection().update_one(
                {
                    "_id": key,
                    "state": {
                        "$in": [TileState.PENDING.value, TileState.FAILED.value],
                    },
                    "attempts": {"$lt": max_attempts},
                },
                {
                    "$set": {
                        "state": TileState.IN_PROGRESS.value,
                        "updated_at": datetime.now(UTC),
                    },
                    "$inc": {"attempts": 1},
                },
            )
        except PyMongoError as exc:
            msg = f"Failed to claim tile {key}"
            raise PersistenceError(msg, {"tile_id": key}) from exc
        if result.modified_count != 1:
            return False
        self._feed.publish()
        return True

    async def fail_stale_tiles(self) -> int:
        """Mark tiles left IN_PROGRESS by an interrupted worker as FAILED."""
        try:
            result = await Tile.get_pymongo_collection().update_many(
                {"state": TileState.IN_PROGRESS.value},
                {
                    "$set": {
                        "state": TileState.FAILED.value,
                        "updated_at": datetime.now(UTC),
                    },
                },
            )
        except PyMongoError as exc:
            msg = "Failed to reset stale tiles"
            raise PersistenceError(msg) from exc
        if result.modified_count:
            logger.warning("Marked %d stale tiles as failed", result.modified_count)
            self._feed.publish()
        return result.modified_count

    async def get_offline_area_by_id(self, area_id: str) -> OfflineArea:
        area = await OfflineArea.get(area_id)
        if area is None:
            msg = f"Offline area {area_id} not found"
            raise ResourceNotFoundError(msg, {"area_id": area_id})
        return area

    async def get_offline_areas(self) -> list[OfflineArea]:
        return await OfflineArea.find_all().sort("+created_at").to_list()

    async def get_tiles(self) -> frozenset[Tile]:
        return frozenset(await Tile.find_all().to_list())

    async def get_tiles_in_state(self, states: Iterable[TileState]) -> list[Tile]:
        values = [state.value for state in states]
        return await Tile.find({"state": {"$in": values}}).sort("+_id").to_list()

    def get_offline_areas_once_and_stream(self) -> AsyncIterator[list[OfflineArea]]:
        return once_and_stream(
            self._feed,
            self.get_offline_areas,
            fingerprint=_fingerprint,
            poll_interval=self._poll_interval,
        )

    def get_tiles_once_and_stream(self) -> AsyncIterator[frozenset[Tile]]:
        return once_and_stream(
            self._feed,
            self.get_tiles,
            fingerprint=_fingerprint,
            poll_interval=self._poll_interval,
        )

    async def delete_offline_area(self, area_id: str) -> list[Tile]:
        """
        Delete an area and those of its tiles no other area references.

        Returns only the tiles actually deleted. A tile another area picks up
        while this runs keeps its document and is not returned.
        """
        area = await self.get_offline_area_by_id(area_id)
        collection = Tile.get_pymongo_collection()
        deleted: list[Tile] = []
        try:
            members = await Tile.find({"area_ids": area_id}).to_list()
            await area.delete()
            await collection.update_many(
                {"area_ids": area_id},
                {"$pull": {"area_ids": area_id}},
            )
            for tile in members:
                result = await collection.delete_one(
                    {"_id": tile.id, "area_ids": {"$size": 0}},
                )
                if result.deleted_count == 1:
                    deleted.append(tile)
        except PyMongoError as exc:
            msg = f"Failed to delete offline area {area_id}"
            raise PersistenceError(msg, {"area_id": area_id}) from exc
        self._feed.publish()
        logger.info("Deleted offline area %s and %d tiles", area_id, len(deleted))
        return deleted
