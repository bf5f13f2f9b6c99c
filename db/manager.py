"""
MongoDB client lifecycle for the API process and the tile download worker.

The motor client is bound to the event loop it was created on. When a caller
shows up on a different (or closed) loop, which happens under test clients
and worker restarts, the client is dropped and rebuilt lazily.
"""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import UTC
from typing import Any, Final

import certifi
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

logger = logging.getLogger(__name__)

DEFAULT_MONGO_URI: Final[str] = "mongodb://mongo:27017"
DEFAULT_DATABASE_NAME: Final[str] = "offline_basemaps"


def get_mongo_uri() -> str:
    return os.getenv("MONGODB_URI", "").strip() or DEFAULT_MONGO_URI


def get_database_name() -> str:
    return os.getenv("MONGODB_DATABASE", "").strip() or DEFAULT_DATABASE_NAME


def client_options(mongo_uri: str) -> dict[str, Any]:
    """Keyword arguments for AsyncIOMotorClient."""
    options: dict[str, Any] = {
        "tz_aware": True,
        "tzinfo": UTC,
        "maxPoolSize": int(os.getenv("MONGODB_MAX_POOL_SIZE", "50")),
        "serverSelectionTimeoutMS": int(
            os.getenv("MONGODB_SERVER_SELECTION_TIMEOUT_MS", "10000"),
        ),
        "retryWrites": True,
        "appname": "OfflineBasemaps",
    }
    # Atlas clusters require TLS with a known CA bundle.
    if mongo_uri.startswith("mongodb+srv://"):
        options.update(tls=True, tlsCAFile=certifi.where())
    return options


class DatabaseManager:
    """Owns the motor client and tracks whether Beanie has been initialised."""

    def __init__(self) -> None:
        self._client: AsyncIOMotorClient | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._beanie_ready = False

    def _drop_client(self) -> None:
        if self._client is not None:
            self._client.close()
        self._client = None
        self._loop = None
        self._beanie_ready = False

    def _ensure_client(self) -> AsyncIOMotorClient:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            loop = None

        if self._client is not None and self._loop is not None:
            if self._loop.is_closed() or (loop is not None and loop is not self._loop):
                logger.info("Event loop changed; reconnecting to MongoDB")
                self._drop_client()

        if self._client is None:
            mongo_uri = get_mongo_uri()
            self._client = AsyncIOMotorClient(mongo_uri, **client_options(mongo_uri))
            self._loop = loop
            logger.info("Connected MongoDB client (database %s)", get_database_name())
        return self._client

    @property
    def db(self) -> AsyncIOMotorDatabase:
        return self._ensure_client()[get_database_name()]

    async def init_beanie(self) -> None:
        """Register the offline area, tile and project documents with Beanie."""
        database = self.db
        if self._beanie_ready:
            return

        from beanie import init_beanie

        from db.models import ALL_DOCUMENT_MODELS

        await init_beanie(database=database, document_models=ALL_DOCUMENT_MODELS)
        self._beanie_ready = True
        logger.info(
            "Beanie initialized with %d document models",
            len(ALL_DOCUMENT_MODELS),
        )

    async def cleanup_connections(self) -> None:
        if self._client is not None:
            logger.info("Closing MongoDB client")
        self._drop_client()


db_manager = DatabaseManager()
