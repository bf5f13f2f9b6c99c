"""Tile download scheduling and the ARQ job that downloads tiles."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections import Counter
from pathlib import Path
from typing import TYPE_CHECKING, Any

import httpx

from config import get_tile_download_concurrency, get_tile_max_attempts
from core.exceptions import PersistenceError
from db.models import TileState
from tasks.arq import get_arq_pool

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from arq.connections import ArqRedis

    from db.models import Tile
    from offline_areas.store import LocalAreaStore

logger = logging.getLogger(__name__)

TILE_DOWNLOAD_FUNCTION = "download_tiles"
TILE_DOWNLOAD_JOB_ID = "tile-download-worker"

OUTCOME_DOWNLOADED = "downloaded"
OUTCOME_FAILED = "failed"
OUTCOME_SKIPPED = "skipped"


class TileDownloadScheduler:
    """Enqueues the durable tile download job."""

    def __init__(
        self,
        pool_factory: Callable[[], Awaitable[ArqRedis]] = get_arq_pool,
    ) -> None:
        self._pool_factory = pool_factory

    async def enqueue_tile_download_worker(self) -> bool:
        """
        Queue the download job unless one is already queued.

        Returns True when a new job was queued.
        """
        pool = await self._pool_factory()
        job = await pool.enqueue_job(
            TILE_DOWNLOAD_FUNCTION,
            _job_id=TILE_DOWNLOAD_JOB_ID,
        )
        if job is None:
            logger.info("Tile download worker already queued")
            return False
        logger.info("Enqueued tile download worker")
        return True


async def _write_tile(destination: Path, content: bytes) -> None:
    def _write() -> None:
        destination.parent.mkdir(parents=True, exist_ok=True)
        temp_path = destination.with_name(destination.name + ".downloading")
        temp_path.write_bytes(content)
        os.replace(temp_path, destination)

    await asyncio.to_thread(_write)


async def _record_failure(store: LocalAreaStore, tile: Tile) -> None:
    try:
        await store.update_tile_state(tile.id, TileState.FAILED)
    except PersistenceError:
        # Left IN_PROGRESS; the next worker startup fails it.
        logger.exception("Could not mark tile %s as failed", tile.id)


async def download_tile(
    tile: Tile,
    *,
    store: LocalAreaStore,
    client: httpx.AsyncClient,
    tiles_dir: Path,
    max_attempts: int,
) -> str:
    """
    Claim and download one tile, recording the outcome in the store.

    After a successful claim, any error while downloading, writing or
    recording the result marks the tile FAILED.
    """
    if not await store.claim_tile(tile.id, max_attempts):
        return OUTCOME_SKIPPED

    try:
        response = await client.get(tile.url)
        response.raise_for_status()
        await _write_tile(tiles_dir / tile.path, response.content)
        await store.update_tile_state(tile.id, TileState.DOWNLOADED)
    except (httpx.HTTPError, httpx.InvalidURL, OSError) as exc:
        logger.warning(
            "Failed to download tile %s from %s: %s",
            tile.id,
            tile.url,
            exc,
        )
        await _record_failure(store, tile)
        return OUTCOME_FAILED
    except Exception:
        logger.exception("Unexpected error downloading tile %s", tile.id)
        await _record_failure(store, tile)
        return OUTCOME_FAILED

    return OUTCOME_DOWNLOADED


async def download_pending_tiles(
    store: LocalAreaStore,
    client: httpx.AsyncClient,
    tiles_dir: Path,
    *,
    concurrency: int,
    max_attempts: int,
) -> dict[str, int]:
    """Download PENDING and retryable FAILED tiles until none remain."""
    semaphore = asyncio.Semaphore(concurrency)
    outcomes: Counter[str] = Counter()

    async def _bounded(tile: Tile) -> str:
        async with semaphore:
            return await download_tile(
                tile,
                store=store,
                client=client,
                tiles_dir=tiles_dir,
                max_attempts=max_attempts,
            )

    while True:
        candidates = [
            tile
            for tile in await store.get_tiles_in_state(
                (TileState.PENDING, TileState.FAILED),
            )
            if tile.attempts < max_attempts
        ]
        if not candidates:
            break
        gathered = await asyncio.gather(
            *(_bounded(tile) for tile in candidates),
            return_exceptions=True,
        )
        results = []
        for tile, result in zip(candidates, gathered, strict=True):
            if isinstance(result, Exception):
                # Claim failed; the tile was not touched.
                logger.error("Could not claim tile %s", tile.id, exc_info=result)
                result = OUTCOME_SKIPPED
            results.append(result)
        outcomes.update(results)
        if all(result == OUTCOME_SKIPPED for result in results):
            break

    logger.info(
        "Tile download pass finished: %d downloaded, %d failed, %d skipped",
        outcomes[OUTCOME_DOWNLOADED],
        outcomes[OUTCOME_FAILED],
        outcomes[OUTCOME_SKIPPED],
    )
    return dict(outcomes)


async def download_tiles(ctx: dict[str, Any]) -> dict[str, int]:
    """ARQ job: download every tile still waiting for it."""
    store: LocalAreaStore = ctx["store"]
    tiles_dir = Path(ctx["tiles_dir"])
    client: httpx.AsyncClient | None = ctx.get("http_client")

    async with contextlib.AsyncExitStack() as stack:
        if client is None:
            client = await stack.enter_async_context(
                httpx.AsyncClient(follow_redirects=True),
            )
        return await download_pending_tiles(
            store,
            client,
            tiles_dir,
            concurrency=get_tile_download_concurrency(),
            max_attempts=get_tile_max_attempts(),
        )
