"""Offline area API endpoints."""

from __future__ import annotations

import json
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from core.exceptions import ResourceNotFoundError
from db.models import LatLngBounds, OfflineArea
from offline_areas.coordinator import OfflineAreaCoordinator
from offline_areas.services import get_offline_area_coordinator

router = APIRouter(prefix="/api/offline-areas", tags=["offline-areas"])

Coordinator = Annotated[OfflineAreaCoordinator, Depends(get_offline_area_coordinator)]


class RequestAreaPayload(BaseModel):
    bounds: LatLngBounds
    name: str | None = None


def _area_payload(area: OfflineArea) -> dict[str, Any]:
    return area.model_dump(mode="json", exclude={"revision_id"})


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def request_offline_area(
    payload: RequestAreaPayload,
    coordinator: Coordinator,
) -> dict[str, Any]:
    """Register an area and start enqueuing its tiles."""
    request = coordinator.request_area(payload.bounds, name=payload.name)
    return {"status": "accepted", "area_id": request.area_id}


@router.get("")
async def list_offline_areas(coordinator: Coordinator) -> list[dict[str, Any]]:
    """Return the current list of offline areas."""
    stream = coordinator.list_areas()
    try:
        areas = await anext(stream)
    finally:
        await stream.aclose()
    return [_area_payload(area) for area in areas]


@router.get("/{area_id}")
async def get_offline_area(area_id: str, coordinator: Coordinator) -> dict[str, Any]:
    try:
        area = await coordinator.get_area(area_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return _area_payload(area)


@router.delete("/{area_id}")
async def delete_offline_area(area_id: str, coordinator: Coordinator) -> dict[str, Any]:
    """Remove an area and any tiles no other area uses."""
    try:
        removed = await coordinator.remove_area(area_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return {"status": "success", "removed_tiles": len(removed)}


@router.get("/{area_id}/tiles/sse", response_model=None)
async def stream_downloaded_tiles(
    area_id: str,
    coordinator: Coordinator,
) -> StreamingResponse:
    """Stream the area's downloaded tile keys via SSE."""
    try:
        area = await coordinator.get_area(area_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc

    async def event_generator():
        stream = coordinator.intersecting_downloaded_tiles(area)
        try:
            async for tiles in stream:
                payload = {
                    "area_id": area.id,
                    "downloaded": sorted(tile.id for tile in tiles),
                }
                yield f"data: {json.dumps(payload)}\n\n"
        finally:
            await stream.aclose()

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        },
    )
