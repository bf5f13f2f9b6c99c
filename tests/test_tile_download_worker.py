from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest

from core.exceptions import PersistenceError
from db.models import Tile, TileState
from offline_areas.store import LocalAreaStore
from tasks import tiles as tile_tasks
from tasks.tiles import (
    OUTCOME_DOWNLOADED,
    OUTCOME_FAILED,
    OUTCOME_SKIPPED,
    TILE_DOWNLOAD_FUNCTION,
    TILE_DOWNLOAD_JOB_ID,
    TileDownloadScheduler,
    download_pending_tiles,
    download_tile,
    download_tiles,
)

GOOD_KEYS = ("10/512/511", "10/513/511")
BROKEN_KEY = "10/512/510"


class _FakePool:
    def __init__(self, results) -> None:
        self.results = list(results)
        self.calls: list[tuple[tuple, dict]] = []

    async def enqueue_job(self, *args, **kwargs):
        self.calls.append((args, kwargs))
        return self.results.pop(0)


def _tile(key: str) -> Tile:
    return Tile(
        id=key,
        url=f"https://tiles.example.com/{key}.png",
        path=f"{key}.png",
    )


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(_tile_handler))


def _tile_handler(request: httpx.Request) -> httpx.Response:
    if request.url.path == f"/{BROKEN_KEY}.png":
        return httpx.Response(500, content=b"server error")
    return httpx.Response(200, content=request.url.path.encode())


async def _seed(store: LocalAreaStore, *keys: str) -> None:
    for key in keys:
        await store.insert_or_update_tile(_tile(key), area_id="area-1")


@pytest.mark.asyncio
async def test_scheduler_enqueues_with_fixed_job_id() -> None:
    pool = _FakePool([SimpleNamespace(job_id=TILE_DOWNLOAD_JOB_ID), None])

    async def pool_factory():
        return pool

    scheduler = TileDownloadScheduler(pool_factory=pool_factory)

    assert await scheduler.enqueue_tile_download_worker() is True
    assert await scheduler.enqueue_tile_download_worker() is False
    assert pool.calls == [
        ((TILE_DOWNLOAD_FUNCTION,), {"_job_id": TILE_DOWNLOAD_JOB_ID}),
        ((TILE_DOWNLOAD_FUNCTION,), {"_job_id": TILE_DOWNLOAD_JOB_ID}),
    ]


@pytest.mark.asyncio
async def test_download_tile_writes_file_and_marks_downloaded(
    beanie_db,
    tmp_path,
) -> None:
    store = LocalAreaStore()
    await _seed(store, GOOD_KEYS[0])

    async with _client() as client:
        outcome = await download_tile(
            _tile(GOOD_KEYS[0]),
            store=store,
            client=client,
            tiles_dir=tmp_path,
            max_attempts=3,
        )

    assert outcome == OUTCOME_DOWNLOADED
    assert (tmp_path / "10/512/511.png").read_bytes() == b"/10/512/511.png"
    stored = await Tile.get(GOOD_KEYS[0])
    assert stored.state == TileState.DOWNLOADED
    assert stored.attempts == 1


@pytest.mark.asyncio
async def test_download_tile_skips_tiles_it_cannot_claim(beanie_db, tmp_path) -> None:
    store = LocalAreaStore()
    await _seed(store, GOOD_KEYS[0])
    await store.claim_tile(GOOD_KEYS[0], max_attempts=3)
    await store.update_tile_state(GOOD_KEYS[0], TileState.DOWNLOADED)

    async with _client() as client:
        outcome = await download_tile(
            _tile(GOOD_KEYS[0]),
            store=store,
            client=client,
            tiles_dir=tmp_path,
            max_attempts=3,
        )

    assert outcome == OUTCOME_SKIPPED
    assert not (tmp_path / "10/512/511.png").exists()


@pytest.mark.asyncio
async def test_download_pending_tiles_retries_failures_up_to_the_limit(
    beanie_db,
    tmp_path,
) -> None:
    store = LocalAreaStore()
    await _seed(store, *GOOD_KEYS, BROKEN_KEY)

    async with _client() as client:
        outcomes = await download_pending_tiles(
            store,
            client,
            tmp_path,
            concurrency=2,
            max_attempts=3,
        )

    assert outcomes == {OUTCOME_DOWNLOADED: 2, OUTCOME_FAILED: 3}
    for key in GOOD_KEYS:
        assert (tmp_path / f"{key}.png").exists()
    broken = await Tile.get(BROKEN_KEY)
    assert broken.state == TileState.FAILED
    assert broken.attempts == 3
    assert not (tmp_path / f"{BROKEN_KEY}.png").exists()


@pytest.mark.asyncio
async def test_download_tiles_job_uses_worker_context(
    beanie_db,
    tmp_path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("TILE_MAX_ATTEMPTS", "1")
    store = LocalAreaStore()
    await _seed(store, *GOOD_KEYS, BROKEN_KEY)

    async with _client() as client:
        outcomes = await download_tiles(
            {"store": store, "tiles_dir": str(tmp_path), "http_client": client},
        )

    assert outcomes == {OUTCOME_DOWNLOADED: 2, OUTCOME_FAILED: 1}
    downloaded = await store.get_tiles_in_state([TileState.DOWNLOADED])
    assert [tile.id for tile in downloaded] == sorted(GOOD_KEYS)


def test_job_constants_match_worker_registration() -> None:
    from tasks.worker import WorkerSettings

    names = {function.name for function in WorkerSettings.functions}
    assert tile_tasks.TILE_DOWNLOAD_FUNCTION in names
    assert WorkerSettings.cron_jobs


@pytest.mark.asyncio
async def test_worker_startup_fails_interrupted_tiles(
    beanie_db,
    tmp_path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    from tasks import worker

    async def noop() -> None:
        return None

    monkeypatch.setattr(worker.db_manager, "init_beanie", noop)
    monkeypatch.setattr(worker.db_manager, "cleanup_connections", noop)
    monkeypatch.setenv("TILES_PATH", str(tmp_path / "tiles"))
    store = LocalAreaStore()
    await _seed(store, GOOD_KEYS[0])
    await store.claim_tile(GOOD_KEYS[0], max_attempts=3)

    ctx: dict = {}
    await worker.on_startup(ctx)
    try:
        interrupted = await Tile.get(GOOD_KEYS[0])
        assert interrupted.state == TileState.FAILED
        assert ctx["tiles_dir"].is_dir()
        assert isinstance(ctx["http_client"], httpx.AsyncClient)
    finally:
        await worker.on_shutdown(ctx)

    assert ctx["http_client"].is_closed


@pytest.mark.asyncio
async def test_unparseable_tile_url_fails_only_that_tile(beanie_db, tmp_path) -> None:
    store = LocalAreaStore()
    await _seed(store, GOOD_KEYS[0])
    await store.insert_or_update_tile(
        Tile(id=BROKEN_KEY, url="http://[::1/b.png", path=f"{BROKEN_KEY}.png"),
        area_id="area-1",
    )

    async with _client() as client:
        outcomes = await download_pending_tiles(
            store,
            client,
            tmp_path,
            concurrency=2,
            max_attempts=2,
        )

    assert outcomes == {OUTCOME_DOWNLOADED: 1, OUTCOME_FAILED: 2}
    assert (await Tile.get(GOOD_KEYS[0])).state == TileState.DOWNLOADED
    broken = await Tile.get(BROKEN_KEY)
    assert broken.state == TileState.FAILED
    assert broken.attempts == 2


class _DownloadedWriteFailsStore(LocalAreaStore):
    async def update_tile_state(self, key: str, state: TileState) -> bool:
        if state is TileState.DOWNLOADED:
            raise PersistenceError("write rejected", {"tile_id": key})
        return await super().update_tile_state(key, state)


@pytest.mark.asyncio
async def test_failed_result_write_marks_tile_failed(beanie_db, tmp_path) -> None:
    store = _DownloadedWriteFailsStore()
    await _seed(store, GOOD_KEYS[0])

    async with _client() as client:
        outcome = await download_tile(
            _tile(GOOD_KEYS[0]),
            store=store,
            client=client,
            tiles_dir=tmp_path,
            max_attempts=3,
        )

    assert outcome == OUTCOME_FAILED
    stored = await Tile.get(GOOD_KEYS[0])
    assert stored.state == TileState.FAILED


class _ClaimFailsStore(LocalAreaStore):
    async def claim_tile(self, key: str, max_attempts: int) -> bool:
        if key == BROKEN_KEY:
            raise PersistenceError("claim rejected", {"tile_id": key})
        return await super().claim_tile(key, max_attempts)


@pytest.mark.asyncio
async def test_claim_error_does_not_stop_the_pass(beanie_db, tmp_path) -> None:
    store = _ClaimFailsStore()
    await _seed(store, *GOOD_KEYS, BROKEN_KEY)

    async with _client() as client:
        outcomes = await download_pending_tiles(
            store,
            client,
            tmp_path,
            concurrency=3,
            max_attempts=3,
        )

    assert outcomes == {OUTCOME_DOWNLOADED: 2, OUTCOME_SKIPPED: 2}
    assert (await Tile.get(BROKEN_KEY)).state == TileState.PENDING
