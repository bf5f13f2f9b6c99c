import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]

if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import pytest
from beanie import init_beanie
from mongomock_motor import AsyncMongoMockClient
from network_blocker import install_network_blocker

from db.models import ALL_DOCUMENT_MODELS  # noqa: E402

FIXTURES = Path(__file__).resolve().parent / "fixtures"


@pytest.fixture(autouse=True)
def _default_test_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("BASEMAP_CACHE_PATH", str(tmp_path / "basemaps"))
    monkeypatch.setenv("TILES_PATH", str(tmp_path / "tiles"))
    monkeypatch.setenv("OFFLINE_STREAM_POLL_SECONDS", "0")
    install_network_blocker(monkeypatch)


@pytest.fixture
async def beanie_db():
    client = AsyncMongoMockClient()
    database = client["test_db"]
    await init_beanie(database=database, document_models=ALL_DOCUMENT_MODELS)
    return database


@pytest.fixture
def basemap_path() -> Path:
    return FIXTURES / "basemap.geojson"


@pytest.fixture
def extra_basemap_path() -> Path:
    return FIXTURES / "basemap_extra.geojson"
