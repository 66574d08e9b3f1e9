"""
Pytest configuration and fixtures for backend tests.

This module provides the core testing infrastructure including:
- A throwaway SQLite database per test, created from the model metadata
- Session fixtures for database access
- A fake Battle.net API and a client wired to it
- Test client for API integration tests
"""

from collections.abc import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from rostersync.db import base  # noqa: F401  # ensure models are imported for metadata
from rostersync.main import app
from rostersync.services.battlenet_client import BattleNetClient
from rostersync.testing.battlenet import FakeBattleNet


@pytest.fixture(scope="function")
async def engine(tmp_path):
    """Create a test database engine backed by a fresh SQLite file."""
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'rostersync_test.db'}", echo=False)
    async with test_engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    """Session factory bound to the test engine, configured like the application one."""
    return sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


@pytest.fixture(scope="function")
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for each test."""
    async with session_factory() as test_session:
        yield test_session


@pytest.fixture
def fake_battlenet() -> FakeBattleNet:
    """In-memory Battle.net API. Register payloads with ``fake_battlenet.add``."""
    return FakeBattleNet()


@pytest.fixture
async def bnet_client(fake_battlenet: FakeBattleNet) -> AsyncGenerator[BattleNetClient, None]:
    client = fake_battlenet.client()
    yield client
    await client.aclose()


@pytest.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """
    Create an async HTTP client for testing API endpoints.

    Startup hooks do not run under ASGITransport, so tests install whatever
    ``app.state`` they need and this fixture clears it afterwards.

    Usage:
        async def test_endpoint(client: AsyncClient):
            response = await client.get("/api/v1/sync/status")
            assert response.status_code == 200
    """
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as test_client:
        yield test_client

    for attribute in ("sync_runner", "battlenet_client", "sync_tasks"):
        if hasattr(app.state, attribute):
            delattr(app.state, attribute)
