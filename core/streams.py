"""
Async stream helpers for live queries.

Live queries are async generators that emit a snapshot immediately and then
again whenever the underlying data changes. Writers signal changes through a
:class:`ChangeFeed`; readers wait on it. The combinators here compose those
generators and confine error swallowing to the places that ask for it.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any, TypeVar

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Awaitable, Callable

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

_ITEM = "item"
_ERROR = "error"
_COMPLETE = "complete"


def _wake(waiter: asyncio.Future) -> None:
    if not waiter.done():
        waiter.set_result(None)


class ChangeFeed:
    """
    Monotonic change counter with async waiters.

    Waiters may live on any event loop; wake-ups are scheduled on the
    waiter's own loop.
    """

    def __init__(self) -> None:
        self._version = 0
        self._waiters: set[asyncio.Future] = set()

    @property
    def version(self) -> int:
        return self._version

    def publish(self) -> None:
        self._version += 1
        for waiter in list(self._waiters):
            waiter.get_loop().call_soon_threadsafe(_wake, waiter)

    async def wait_after(self, version: int, timeout: float | None = None) -> bool:
        """
        Wait until the feed moves past ``version``.

        Returns False when ``timeout`` elapsed without a change.
        """
        if self._version > version:
            return True
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.add(waiter)
        try:
            if self._version > version:
                return True
            await asyncio.wait_for(waiter, timeout)
            return True
        except TimeoutError:
            return False
        finally:
            self._waiters.discard(waiter)


async def once_and_stream(
    feed: ChangeFeed,
    query: Callable[[], Awaitable[T]],
    *,
    fingerprint: Callable[[T], Any] | None = None,
    poll_interval: float | None = None,
) -> AsyncIterator[T]:
    """
    Emit ``query()`` now and again after every change published on ``feed``.

    With ``poll_interval`` set the query is also re-run periodically and the
    result is emitted when its fingerprint differs from the last emission.
    """
    key = fingerprint or (lambda value: value)
    version = feed.version
    last = await query()
    yield last
    while True:
        changed = await feed.wait_after(version, poll_interval)
        version = feed.version
        snapshot = await query()
        if changed or key(snapshot) != key(last):
            last = snapshot
            yield snapshot


async def switch_map(
    source: AsyncIterator[T],
    project: Callable[[T], AsyncIterator[R]],
) -> AsyncIterator[R]:
    """
    Map each source item to an inner stream, following only the latest one.

    A new source item cancels the previous inner stream. Errors from either
    side are re-raised to the consumer. The result completes once the source
    and the last inner stream have completed.
    """
    events: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()
    inner: asyncio.Task | None = None

    async def drain(value: T) -> None:
        try:
            async with contextlib.aclosing(project(value)) as inner_stream:
                async for item in inner_stream:
                    events.put_nowait((_ITEM, item))
        except Exception as exc:
            events.put_nowait((_ERROR, exc))

    async def follow() -> None:
        nonlocal inner
        try:
            async with contextlib.aclosing(source) as outer_stream:
                async for value in outer_stream:
                    if inner is not None:
                        inner.cancel()
                    inner = asyncio.create_task(drain(value))
        except Exception as exc:
            events.put_nowait((_ERROR, exc))
            return
        if inner is not None:
            await asyncio.gather(inner, return_exceptions=True)
        events.put_nowait((_COMPLETE, None))

    outer = asyncio.create_task(follow())
    try:
        while True:
            kind, payload = await events.get()
            if kind == _COMPLETE:
                return
            if kind == _ERROR:
                raise payload
            yield payload
    finally:
        pending = [task for task in (outer, inner) if task is not None]
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)


async def recover_with(
    stream: AsyncIterator[T],
    default: T,
    *,
    message: str = "Live query failed",
) -> AsyncIterator[T]:
    """Pass ``stream`` through; on failure log, emit ``default`` and complete."""
    try:
        async with contextlib.aclosing(stream) as items:
            async for item in items:
                yield item
    except Exception:
        logger.exception(message)
        yield default


async def recover_complete(
    operation: Awaitable[Any],
    *,
    message: str = "Background operation failed",
) -> None:
    """Await ``operation``; on failure log and complete normally."""
    try:
        await operation
    except Exception:
        logger.exception(message)
