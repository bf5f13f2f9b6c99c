"""Centralized configuration for environment variables.

This module is the single source of truth for configuration used across the
application. Import getters from here rather than calling os.getenv directly
in multiple places.
"""

from __future__ import annotations

import os
from typing import Final

from dotenv import load_dotenv

# Load environment variables from .env if present
load_dotenv()


# --- Services ---
DEFAULT_REDIS_URL: Final[str] = "redis://redis:6379"

# --- Storage locations ---
DEFAULT_BASEMAP_CACHE_PATH: Final[str] = "data/basemaps"
DEFAULT_TILES_PATH: Final[str] = "data/tiles"

# --- Basemap sources ---
DEFAULT_SOURCE_STRATEGY: Final[str] = "first_only"
DEFAULT_FETCH_TIMEOUT_SECONDS: Final[float] = 60.0
DEFAULT_FETCH_RETRIES: Final[int] = 2

# --- Tile downloads ---
DEFAULT_TILE_DOWNLOAD_CONCURRENCY: Final[int] = 8
DEFAULT_TILE_DOWNLOAD_TIMEOUT_SECONDS: Final[float] = 30.0
DEFAULT_TILE_MAX_ATTEMPTS: Final[int] = 3
DEFAULT_TILE_DOWNLOAD_JOB_TIMEOUT_SECONDS: Final[int] = 60 * 60

# --- Live queries ---
DEFAULT_STREAM_POLL_SECONDS: Final[float] = 5.0


def _get_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def get_redis_url() -> str:
    """Redis URL backing the tile download queue."""
    return os.getenv("REDIS_URL", "").strip() or DEFAULT_REDIS_URL


def get_basemap_cache_path() -> str:
    """Directory where basemap source files are downloaded."""
    return os.getenv("BASEMAP_CACHE_PATH", "").strip() or DEFAULT_BASEMAP_CACHE_PATH


def get_tiles_path() -> str:
    """Directory where downloaded tiles are written."""
    return os.getenv("TILES_PATH", "").strip() or DEFAULT_TILES_PATH


def get_source_selection_strategy() -> str:
    """Which configured basemap sources are used ("first_only" or "all")."""
    value = os.getenv("BASEMAP_SOURCE_STRATEGY", "").strip().lower()
    return value or DEFAULT_SOURCE_STRATEGY


def get_basemap_fetch_timeout() -> float:
    return _get_float("BASEMAP_FETCH_TIMEOUT_SECONDS", DEFAULT_FETCH_TIMEOUT_SECONDS)


def get_basemap_fetch_retries() -> int:
    return max(0, _get_int("BASEMAP_FETCH_RETRIES", DEFAULT_FETCH_RETRIES))


def get_tile_download_concurrency() -> int:
    return max(
        1,
        _get_int("TILE_DOWNLOAD_CONCURRENCY", DEFAULT_TILE_DOWNLOAD_CONCURRENCY),
    )


def get_tile_download_timeout() -> float:
    return _get_float(
        "TILE_DOWNLOAD_TIMEOUT_SECONDS",
        DEFAULT_TILE_DOWNLOAD_TIMEOUT_SECONDS,
    )


def get_tile_max_attempts() -> int:
    return max(1, _get_int("TILE_MAX_ATTEMPTS", DEFAULT_TILE_MAX_ATTEMPTS))


def get_tile_download_job_timeout() -> int:
    return _get_int(
        "TILE_DOWNLOAD_JOB_TIMEOUT_SECONDS",
        DEFAULT_TILE_DOWNLOAD_JOB_TIMEOUT_SECONDS,
    )


def get_stream_poll_seconds() -> float | None:
    """
    Poll interval for live queries.

    Live queries are woken by writes made in this process; polling picks up
    writes made elsewhere (e.g. by the tile download worker). Zero disables it.
    """
    value = _get_float("OFFLINE_STREAM_POLL_SECONDS", DEFAULT_STREAM_POLL_SECONDS)
    return value if value > 0 else None


__all__ = [
    "get_basemap_cache_path",
    "get_basemap_fetch_retries",
    "get_basemap_fetch_timeout",
    "get_redis_url",
    "get_source_selection_strategy",
    "get_stream_poll_seconds",
    "get_tile_download_concurrency",
    "get_tile_download_job_timeout",
    "get_tile_download_timeout",
    "get_tile_max_attempts",
    "get_tiles_path",
]
