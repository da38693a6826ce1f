"""Shared test fixtures."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import ASGITransport, AsyncClient

import skyrelay.main as main_module
from skyrelay.config import AppConfig
from skyrelay.core.stats import FleetStats
from skyrelay.events.asyncio_broadcaster import AsyncioEventBroadcaster
from skyrelay.storage.sqlite_storage import SqliteStorage


class StepClock:
    """Deterministic clock: each call advances by one second."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        current = self.now
        self.now = self.now + timedelta(seconds=1)
        return current


class RecordingNotifier:
    """EventNotifier that keeps every event it is given."""

    def __init__(self) -> None:
        self.events = []

    async def emit(self, event) -> None:
        self.events.append(event)

    def names(self) -> list[str]:
        return [e.name for e in self.events]


@pytest.fixture
def clock():
    return StepClock()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def storage(tmp_path):
    """A storage adapter whose schema has not been created yet."""
    return SqliteStorage(db_path=tmp_path / "db" / "skyrelay.db")


@pytest.fixture
async def ready_storage(storage):
    await storage.initialize()
    return storage


@pytest.fixture(autouse=True)
def _init_server(tmp_path):
    """Initialize server singletons for every test, using a temp directory."""
    config = AppConfig()
    config.storage.db_path = str(tmp_path / "server" / "skyrelay.db")
    config.logging.level = "warning"

    stats = FleetStats(active_window_seconds=config.limits.active_window_seconds)
    storage = SqliteStorage(db_path=config.storage.db_path)
    broadcaster = AsyncioEventBroadcaster(queue_size=config.events.subscriber_queue_size)
    processor = main_module.build_processor(config, storage, broadcaster, stats)

    # Patch module-level singletons
    main_module._config = config
    main_module._stats = stats
    main_module._storage = storage
    main_module._processor = processor

    yield

    # Cleanup
    main_module._config = None
    main_module._stats = None
    main_module._storage = None
    main_module._processor = None


@pytest.fixture
async def client():
    from skyrelay.main import app

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
