"""Test fixtures for the short-link mapping store."""

import os

# Settings are read at import time, so the environment goes first
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_TO_FILE", "false")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("CACHE_ENABLED", "false")
os.environ.setdefault("DB_RUN_MIGRATIONS_ON_STARTUP", "false")

from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from shortlinks.core.telemetry import AllocationMetrics
from shortlinks.db.base import create_schema, get_session_factory
# Import models to ensure they're registered with SQLModel metadata
from shortlinks.models.url import UrlMapping  # noqa: F401


# Test database URL - using SQLite in-memory
TEST_SQLALCHEMY_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def test_engine():
    """Create a fresh in-memory SQLite engine with the schema applied."""
    engine = create_async_engine(
        TEST_SQLALCHEMY_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture
async def test_db(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session on the in-memory engine."""
    session_factory = get_session_factory(test_engine)

    async with session_factory() as session:
        yield session


@pytest.fixture
def file_database_url(tmp_path) -> str:
    """URL of a file-backed SQLite database unique to the test."""
    return f"sqlite+aiosqlite:///{tmp_path / 'shortlinks.db'}"


@pytest_asyncio.fixture
async def file_engine(file_database_url):
    """File-backed SQLite engine giving every session its own connection.

    Used where concurrent sessions must not share a connection.
    """
    engine = create_async_engine(file_database_url, poolclass=NullPool, echo=False)

    await create_schema(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def mock_meter():
    """Meter handing out a distinct mock per counter."""
    meter = MagicMock()
    meter.create_counter.side_effect = lambda name, **kwargs: MagicMock(name=name)
    return meter


@pytest.fixture
def allocation_metrics(mock_meter) -> AllocationMetrics:
    """Allocation counters backed by mocks, for asserting on."""
    return AllocationMetrics(meter=mock_meter)


@pytest.fixture
def mock_redis():
    """Mock Redis for testing."""
    class MockRedis:
        def __init__(self):
            self.data = {}
            self.expiry = {}

        async def get(self, key):
            return self.data.get(key)

        async def set(self, key, value, ex=None):
            self.data[key] = value
            if ex:
                self.expiry[key] = ex

        async def delete(self, key):
            if key in self.data:
                del self.data[key]
                if key in self.expiry:
                    del self.expiry[key]

        async def exists(self, key):
            return key in self.data

        async def ping(self):
            return True

        async def aclose(self):
            pass

    return MockRedis()


@pytest.fixture
def mock_redis_manager(mock_redis):
    """Redis client manager handing out the mock client."""
    manager = MagicMock()
    manager.get_client = AsyncMock(return_value=mock_redis)
    manager.ping = AsyncMock(return_value=True)
    manager.close = AsyncMock()
    return manager
