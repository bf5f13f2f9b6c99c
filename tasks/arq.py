"""Redis pool shared by everything that enqueues tile download jobs."""

from __future__ import annotations

import asyncio
import logging

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from config import get_redis_url

logger = logging.getLogger(__name__)


class _PoolState:
    pool: ArqRedis | None = None
    lock: asyncio.Lock | None = None


def get_redis_settings() -> RedisSettings:
    """RedisSettings for the queue, parsed from REDIS_URL."""
    return RedisSettings.from_dsn(get_redis_url())


async def get_arq_pool() -> ArqRedis:
    """Return the process-wide queue pool, connecting on first use."""
    if _PoolState.pool is not None:
        return _PoolState.pool
    if _PoolState.lock is None:
        _PoolState.lock = asyncio.Lock()
    async with _PoolState.lock:
        if _PoolState.pool is None:
            settings = get_redis_settings()
            _PoolState.pool = await create_pool(settings)
            logger.info(
                "Connected tile download queue at %s:%s",
                settings.host,
                settings.port,
            )
    return _PoolState.pool


async def close_arq_pool() -> None:
    pool, _PoolState.pool = _PoolState.pool, None
    if pool is None:
        return
    await pool.aclose()
    logger.info("Closed tile download queue pool")
