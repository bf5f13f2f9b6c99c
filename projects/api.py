"""Project API endpoints."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from core.exceptions import NoActiveProjectError, ResourceNotFoundError
from db.models import OfflineBaseMapSource, Project
from offline_areas.services import get_project_repository
from projects.repository import ProjectRepository

router = APIRouter(prefix="/api/projects", tags=["projects"])

Projects = Annotated[ProjectRepository, Depends(get_project_repository)]


class SaveProjectPayload(BaseModel):
    title: str = ""
    offline_base_map_sources: list[OfflineBaseMapSource] = Field(default_factory=list)


def _project_payload(project: Project) -> dict[str, Any]:
    return project.model_dump(mode="json", exclude={"revision_id"})


@router.put("/{project_id}")
async def save_project(
    project_id: str,
    payload: SaveProjectPayload,
    projects: Projects,
) -> dict[str, Any]:
    project = Project(
        id=project_id,
        title=payload.title,
        offline_base_map_sources=payload.offline_base_map_sources,
    )
    return _project_payload(await projects.save_project(project))


@router.post("/{project_id}/activate")
async def activate_project(project_id: str, projects: Projects) -> dict[str, Any]:
    try:
        project = await projects.activate_project(project_id)
    except ResourceNotFoundError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return _project_payload(project)


@router.get("/active")
async def get_active_project(projects: Projects) -> dict[str, Any]:
    try:
        project = await projects.get_active_project()
    except NoActiveProjectError as exc:
        raise HTTPException(status_code=404, detail=exc.message) from exc
    return _project_payload(project)
