"""Project configuration access."""

from projects.repository import ProjectRepository

__all__ = ["ProjectRepository"]
