"""Active project tracking and live project queries."""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncIterator
from datetime import UTC, datetime

from core.exceptions import NoActiveProjectError, ResourceNotFoundError
from core.streams import ChangeFeed, once_and_stream
from db.models import ACTIVE_PROJECT_SETTING_ID, ActiveProjectSetting, Project

logger = logging.getLogger(__name__)


def _project_fingerprint(project: Project | None) -> tuple | None:
    if project is None:
        return None
    return (project.id, project.updated_at)


class ProjectRepository:
    """
    Reads and changes the active project.

    The selection is stored in MongoDB so every API process and worker sees
    the same active project. ``poll_interval`` makes live queries notice
    activations made by other processes.
    """

    def __init__(
        self,
        *,
        feed: ChangeFeed | None = None,
        poll_interval: float | None = None,
    ) -> None:
        self._feed = feed or ChangeFeed()
        self._poll_interval = poll_interval

    async def get_active_project_id(self) -> str | None:
        setting = await ActiveProjectSetting.get(ACTIVE_PROJECT_SETTING_ID)
        return setting.project_id if setting else None

    async def _set_active_project_id(self, project_id: str | None) -> None:
        await ActiveProjectSetting(
            id=ACTIVE_PROJECT_SETTING_ID,
            project_id=project_id,
            updated_at=datetime.now(UTC),
        ).save()
        self._feed.publish()

    async def save_project(self, project: Project) -> Project:
        project.updated_at = datetime.now(UTC)
        await project.save()
        if project.id == await self.get_active_project_id():
            self._feed.publish()
        return project

    async def activate_project(self, project_id: str) -> Project:
        project = await Project.get(project_id)
        if project is None:
            msg = f"Project {project_id} not found"
            raise ResourceNotFoundError(msg, {"project_id": project_id})
        await self._set_active_project_id(project_id)
        logger.info("Activated project %s", project_id)
        return project

    async def clear_active_project(self) -> None:
        await self._set_active_project_id(None)
        logger.info("Cleared active project")

    async def _find_active_project(self) -> Project | None:
        project_id = await self.get_active_project_id()
        if project_id is None:
            return None
        return await Project.get(project_id)

    async def get_active_project(self) -> Project:
        project_id = await self.get_active_project_id()
        if project_id is None:
            msg = "No active project"
            raise NoActiveProjectError(msg)
        project = await Project.get(project_id)
        if project is None:
            msg = f"Active project {project_id} no longer exists"
            raise NoActiveProjectError(msg, {"project_id": project_id})
        return project

    async def get_active_project_once_and_stream(self) -> AsyncIterator[Project]:
        """Emit the active project now and whenever it changes; wait while none."""
        async with contextlib.aclosing(
            once_and_stream(
                self._feed,
                self._find_active_project,
                fingerprint=_project_fingerprint,
                poll_interval=self._poll_interval,
            ),
        ) as stream:
            async for project in stream:
                if project is not None:
                    yield project
