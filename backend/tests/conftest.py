"""
Pytest configuration and fixtures for backend tests.

This module provides the core testing infrastructure including:
- A throwaway SQLite database per test
- Session fixtures for database access
- A push channel manager wired into the app
- Test client for API integration tests
"""

import os

# Settings are read at import time; these must be set before the app is imported
os.environ.setdefault("SECRET_KEY", "test-secret-key-with-enough-entropy")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("ALARM_TIMEZONE", "UTC")

from collections.abc import AsyncGenerator  # noqa: E402

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402
from sqlmodel.ext.asyncio.session import AsyncSession  # noqa: E402

from app.core.rate_limit import limiter  # noqa: E402
from app.main import app  # noqa: E402
from app.services.realtime import PushChannelManager  # noqa: E402


@pytest.fixture(scope="function")
async def engine(tmp_path):
    """Create a file-backed SQLite engine with every table created."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'alarms.db'}", future=True)
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    """Session maker bound to the test engine, for tests that need several sessions."""
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a clean AsyncSession for the test."""
    async with session_factory() as test_session:
        yield test_session


@pytest.fixture
def channels() -> PushChannelManager:
    """A push channel manager with a short release window."""
    return PushChannelManager(release_delay=0.05, send_timeout=1.0)


@pytest.fixture
async def client(channels: PushChannelManager) -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async HTTP client for testing API endpoints.

    This fixture:
    - Installs the ``channels`` fixture as the app's push channel manager
    - Disables rate limiting

    Usage:
        async def test_endpoint(client: AsyncClient):
            response = await client.get("/api/v1/health")
            assert response.status_code == 200
    """

    app.state.channels = channels
    limiter.enabled = False

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as test_client:
        yield test_client

    del app.state.channels
    await channels.shutdown()
