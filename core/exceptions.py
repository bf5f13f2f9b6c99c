"""
Centralized exception hierarchy for domain-specific errors.

This module provides custom exception classes that represent specific
error conditions of the offline basemap pipeline, enabling callers to
tell configuration, network, parsing and storage failures apart.
"""


class OfflineTilesError(Exception):
    """Base exception for all application-specific errors."""

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class NoBaseMapSourceError(OfflineTilesError):
    """Exception raised when a project declares no basemap sources."""


class FetchError(OfflineTilesError):
    """Exception raised when a basemap source cannot be fetched."""


class ParseError(OfflineTilesError):
    """Exception raised when a geographic feature file is malformed."""


class PersistenceError(OfflineTilesError):
    """Exception raised when a store write fails."""


class ResourceNotFoundError(OfflineTilesError):
    """Exception raised when a requested resource is not found."""


class NoActiveProjectError(ResourceNotFoundError):
    """Exception raised when no project has been activated."""


NotFoundError = ResourceNotFoundError
