"""
Pytest configuration and shared fixtures.

Tests run against a throwaway SQLite file by default. Point
TEST_DATABASE_URL at a PostgreSQL database to exercise the
FOR UPDATE SKIP LOCKED path for real.
"""

import os
from collections.abc import AsyncGenerator
from typing import Any

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

# Settings are read from the environment; set test values BEFORE importing the app
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")
os.environ.setdefault("WORKER_LEASE_DURATION_SECONDS", "30")

from jobqueue.api.main import create_app  # noqa: E402
from jobqueue.config import Settings, get_settings  # noqa: E402
from jobqueue.db import get_async_session  # noqa: E402
from jobqueue.db.connection import (  # noqa: E402
    create_session_factory,
    drop_schema,
    get_test_engine,
    init_schema,
)

TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")

get_settings.cache_clear()


@pytest.fixture
def database_url(tmp_path) -> str:
    """Get the test database URL."""
    if TEST_DATABASE_URL:
        return TEST_DATABASE_URL
    return f"sqlite+aiosqlite:///{tmp_path / 'jobqueue_test.db'}"


@pytest_asyncio.fixture
async def async_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create an engine with a fresh jobs table."""
    engine = get_test_engine(database_url)
    await drop_schema(engine)
    await init_schema(engine)

    yield engine

    await drop_schema(engine)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return create_session_factory(async_engine)


@pytest_asyncio.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Create a database session for tests."""
    async with session_factory() as session:
        yield session

        # Rollback any uncommitted changes
        await session.rollback()


@pytest.fixture
def test_settings(database_url: str) -> Settings:
    """Create test settings with fast timings."""
    return Settings(
        database_url=database_url,
        log_level="DEBUG",
        log_format="console",
        tracing_enabled=False,
        worker_count=3,
        worker_poll_interval_seconds=0.05,
        worker_heartbeat_interval_seconds=0.1,
        worker_store_backoff_seconds=0.01,
        worker_max_consecutive_store_failures=3,
        shutdown_grace_period_seconds=5.0,
        retry_base_delay_seconds=0.0,
        reaper_interval_seconds=1,
    )


@pytest_asyncio.fixture
async def app(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[FastAPI]:
    """Create a FastAPI app whose sessions come from the test engine."""

    async def override_session() -> AsyncGenerator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app = create_app()
    app.dependency_overrides[get_async_session] = override_session
    yield app
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def sample_job_payload() -> dict[str, Any]:
    """Create a sample job payload."""
    return {
        "job_type": "echo",
        "data": {"message": "Hello, World!"},
    }
