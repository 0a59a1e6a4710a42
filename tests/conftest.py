"""Shared test fixtures for ranking tests."""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio

from ranking.core.config import RankingConfig
from ranking.storage.memory import MemoryStore
from ranking.storage.sqlite import SqliteStore


class Recorder:
    """Observer that keeps every projection it is handed."""

    def __init__(self) -> None:
        self.calls: list[tuple] = []

    def __call__(self, projection) -> None:
        self.calls.append(projection)

    @property
    def last(self):
        return self.calls[-1]


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture
def make_recorder():
    return Recorder


@pytest.fixture
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest_asyncio.fixture
async def sqlite_store(tmp_path: Path) -> AsyncGenerator[SqliteStore, None]:
    store = SqliteStore(str(tmp_path / "ranking.sqlite3"))
    store.init()
    yield store
    await store.close()


@pytest.fixture
def service_config(tmp_path: Path) -> RankingConfig:
    """Service config with an isolated database and an admin token."""
    return RankingConfig(
        sqlite_path=str(tmp_path / "service.sqlite3"),
        admin_token="admin-secret",
        ws_heartbeat_sec=5.0,
    )
