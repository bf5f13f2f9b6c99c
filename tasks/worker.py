"""ARQ worker settings and startup hooks."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import ClassVar

import httpx
from arq import cron, func

from config import (
    get_tile_download_job_timeout,
    get_tile_download_timeout,
    get_tiles_path,
)
from db import db_manager
from offline_areas.store import LocalAreaStore
from tasks.arq import get_redis_settings
from tasks.tiles import download_tiles

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logger = logging.getLogger(__name__)


def configure_logging(level: int = logging.INFO) -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler.setLevel(level)
    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    return handler


async def on_startup(ctx: dict) -> None:
    ctx["log_handler"] = configure_logging()
    await db_manager.init_beanie()

    store = LocalAreaStore()
    stale = await store.fail_stale_tiles()
    if stale:
        logger.info("Recovered %d tiles interrupted by a previous worker", stale)

    tiles_dir = Path(get_tiles_path())
    tiles_dir.mkdir(parents=True, exist_ok=True)

    ctx["store"] = store
    ctx["tiles_dir"] = tiles_dir
    ctx["http_client"] = httpx.AsyncClient(
        timeout=httpx.Timeout(get_tile_download_timeout()),
        follow_redirects=True,
    )


async def on_shutdown(ctx: dict) -> None:
    client = ctx.get("http_client")
    if client is not None:
        await client.aclose()

    await db_manager.cleanup_connections()

    handler = ctx.get("log_handler")
    if handler:
        logging.getLogger().removeHandler(handler)
        handler.close()


class WorkerSettings:
    functions: ClassVar[list[object]] = [
        # keep_result=0 frees the fixed job id as soon as a run finishes
        func(download_tiles, timeout=get_tile_download_job_timeout(), keep_result=0),
    ]
    cron_jobs: ClassVar[list[object]] = [
        # Sweep tiles queued while a previous run was finishing.
        cron(
            download_tiles,
            minute={0, 15, 30, 45},
            timeout=get_tile_download_job_timeout(),
            unique=True,
        ),
    ]
    redis_settings = get_redis_settings()
    on_startup = on_startup
    on_shutdown = on_shutdown
