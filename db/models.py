"""Beanie ODM document models for MongoDB collections.

This module defines the documents behind offline basemaps:
- Project: declares the basemap sources available offline
- ActiveProjectSetting: which project is active, shared by all processes
- OfflineArea: a user-requested rectangle kept available offline
- Tile: a downloadable map tile, shared by every area it intersects

Usage:
    from db.models import OfflineArea, Tile

    area = await OfflineArea.get("3f2c...")
    downloaded = await Tile.find(Tile.state == TileState.DOWNLOADED).to_list()
"""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum
from typing import ClassVar

from beanie import Document
from pydantic import BaseModel, Field, model_validator
from pymongo import ASCENDING, IndexModel

from core.spatial import validate_bounding_box

ACTIVE_PROJECT_SETTING_ID = "active_project"


class OfflineAreaState(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DOWNLOADED = "downloaded"
    FAILED = "failed"


class TileState(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    DOWNLOADED = "downloaded"
    FAILED = "failed"

    def can_transition_to(self, target: TileState) -> bool:
        return target in TILE_TRANSITIONS.get(self, frozenset())


# Tile states only move forward; FAILED may be retried.
TILE_TRANSITIONS: dict[TileState, frozenset[TileState]] = {
    TileState.PENDING: frozenset({TileState.IN_PROGRESS}),
    TileState.FAILED: frozenset({TileState.IN_PROGRESS}),
    TileState.IN_PROGRESS: frozenset({TileState.DOWNLOADED, TileState.FAILED}),
    TileState.DOWNLOADED: frozenset(),
}


class LatLng(BaseModel):
    latitude: float
    longitude: float


class LatLngBounds(BaseModel):
    """Geographic rectangle given by its south-west and north-east corners."""

    south_west: LatLng
    north_east: LatLng

    @model_validator(mode="after")
    def _check_corners(self) -> LatLngBounds:
        if not validate_bounding_box(
            self.south_west.latitude,
            self.south_west.longitude,
            self.north_east.latitude,
            self.north_east.longitude,
        ):
            msg = "Bounds must be ordered south-west to north-east within WGS84 ranges"
            raise ValueError(msg)
        return self

    @classmethod
    def from_coordinates(
        cls,
        south: float,
        west: float,
        north: float,
        east: float,
    ) -> LatLngBounds:
        return cls(
            south_west=LatLng(latitude=south, longitude=west),
            north_east=LatLng(latitude=north, longitude=east),
        )


class OfflineBaseMapSource(BaseModel):
    url: str


class Project(Document):
    """A project and the basemap sources it declares, in priority order."""

    id: str = Field(alias="_id")
    title: str = ""
    offline_base_map_sources: list[OfflineBaseMapSource] = Field(default_factory=list)
    updated_at: datetime | None = None

    class Settings:
        name = "projects"

    class Config:
        extra = "allow"
        populate_by_name = True


class ActiveProjectSetting(Document):
    """Singleton document naming the project every process works against."""

    id: str = Field(default=ACTIVE_PROJECT_SETTING_ID, alias="_id")
    project_id: str | None = None
    updated_at: datetime | None = None

    class Settings:
        name = "app_settings"

    class Config:
        extra = "allow"
        populate_by_name = True


class OfflineArea(Document):
    """A user-selected area whose tiles are kept available offline."""

    id: str = Field(alias="_id")
    bounds: LatLngBounds
    state: OfflineAreaState = OfflineAreaState.PENDING
    name: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None

    class Settings:
        name = "offline_areas"
        indexes: ClassVar[list[IndexModel]] = [
            IndexModel([("state", ASCENDING)], name="offline_areas_state_idx"),
        ]

    class Config:
        extra = "allow"
        populate_by_name = True


class Tile(Document):
    """
    A map tile keyed by its "z/x/y" coordinate.

    Tiles compare and hash by key only, so sets of tiles are sets of
    coordinates regardless of download state.
    """

    id: str = Field(alias="_id")
    url: str
    path: str
    state: TileState = TileState.PENDING
    area_ids: list[str] = Field(default_factory=list)
    attempts: int = 0
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime | None = None

    class Settings:
        name = "tiles"
        indexes: ClassVar[list[IndexModel]] = [
            IndexModel([("state", ASCENDING)], name="tiles_state_idx"),
            IndexModel([("area_ids", ASCENDING)], name="tiles_area_ids_idx"),
        ]

    class Config:
        extra = "allow"
        populate_by_name = True

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Tile):
            return NotImplemented
        return self.id == other.id

    def __hash__(self) -> int:
        return hash(self.id)


ALL_DOCUMENT_MODELS = [Project, ActiveProjectSetting, OfflineArea, Tile]
