"""Fixtures for unit tests.

The store runs against a real SQLite file (aiosqlite) per test; the
container runtime is always an AsyncMock.
"""

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from giftmgr.app.config import TrackerConfig
from giftmgr.core.interfaces import ContainerDriver, ContainerState, ContainerStats
from giftmgr.infra.database import create_engine, create_session_factory, create_tables
from giftmgr.services.audit import AuditLog
from giftmgr.services.instance_store import InstanceStore
from giftmgr.services.orchestrator import LifecycleOrchestrator
from giftmgr.services.ports import PortAllocator

PORT_START = 3000
PORT_END = 3010


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncEngine:
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'instances.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory: async_sessionmaker[AsyncSession]) -> InstanceStore:
    return InstanceStore(session_factory)


@pytest.fixture
def audit(session_factory: async_sessionmaker[AsyncSession]) -> AuditLog:
    return AuditLog(session_factory)


@pytest.fixture
def ports(store: InstanceStore) -> PortAllocator:
    return PortAllocator(store, PORT_START, PORT_END)


@pytest.fixture
def tracker() -> TrackerConfig:
    return TrackerConfig(
        image="gift-tracker:test",
        backend_api_url="http://backend:8080",
        default_dash_password="changeme",
    )


@pytest.fixture
def mock_driver() -> AsyncMock:
    """Mock ContainerDriver: creates "c1", containers start out not running."""
    driver = AsyncMock(spec=ContainerDriver)
    driver.create_container = AsyncMock(return_value="c1")
    driver.start = AsyncMock()
    driver.stop = AsyncMock()
    driver.restart = AsyncMock()
    driver.remove = AsyncMock()
    driver.inspect_status = AsyncMock(
        return_value=ContainerState(running=False, status="created")
    )
    driver.fetch_logs = AsyncMock(return_value=[])
    driver.fetch_stats = AsyncMock(
        return_value=ContainerStats(
            cpu_percent=0.0,
            memory_usage_bytes=0,
            memory_limit_bytes=0,
            memory_percent=0.0,
        )
    )
    driver.ping = AsyncMock(return_value=True)
    driver.info = AsyncMock(return_value={})
    driver.list_images = AsyncMock(return_value=[])
    return driver


@pytest.fixture
def orchestrator(
    store: InstanceStore,
    mock_driver: AsyncMock,
    audit: AuditLog,
    ports: PortAllocator,
    tracker: TrackerConfig,
) -> LifecycleOrchestrator:
    return LifecycleOrchestrator(store, mock_driver, audit, ports, tracker)


def instance_data(name: str = "alpha", port: int = 3000, **overrides: Any) -> dict[str, Any]:
    """Valid create payload."""
    data = {
        "name": name,
        "api_key": f"key-{name}",
        "account_id": f"acct-{name}",
        "tiktok_username": f"@{name}",
        "port": port,
    }
    data.update(overrides)
    return data


@pytest.fixture
def make_instance(store: InstanceStore):
    """Insert an instance straight through the store."""

    async def _make(name: str = "alpha", port: int = 3000, **overrides: Any):
        return await store.create(instance_data(name, port, **overrides))

    return _make


@pytest.fixture
def payload():
    """Factory for valid create payloads."""
    return instance_data
