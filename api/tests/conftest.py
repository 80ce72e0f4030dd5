"""Shared fixtures.

Service tests run against FakeStreakStore (tests/fakes.py); repository and
route tests run against a fresh in-memory SQLite database per test. The fake
is kept honest by the repository tests exercising the same operations.
"""

# Settings are read at import time by core.ratelimit and main
import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("RATELIMIT_ENABLED", "false")
os.environ.setdefault("STREAK_TIMEZONE", "UTC")

from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

import models  # noqa: F401
from core.config import Settings, clear_settings_cache
from core.database import Base, create_session_maker
from core.wide_event import init_wide_event
from repositories.streak_repository import streak_transaction
from services.activity_service import StreakService
from services.leaderboard_service import LeaderboardService
from services.streak_lock_service import KeyLockRegistry
from tests.factories import TEST_DATABASE_URL, make_settings
from tests.fakes import FakeStreakStore


@pytest.fixture
def test_settings() -> Settings:
    return make_settings()


@pytest.fixture(autouse=True)
def setup_wide_event():
    """Services annotate the wide event; give every test an open one."""
    init_wide_event(request_id="test")
    yield


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None]:
    clear_settings_cache()
    yield
    clear_settings_cache()


# =============================================================================
# Verified fake store
# =============================================================================


@pytest.fixture
def fake_store() -> FakeStreakStore:
    return FakeStreakStore()


@pytest.fixture
def streak_service(
    fake_store: FakeStreakStore, test_settings: Settings
) -> StreakService:
    return StreakService(
        fake_store.transaction, settings=test_settings, locks=KeyLockRegistry()
    )


@pytest.fixture
def leaderboard_service(
    fake_store: FakeStreakStore, test_settings: Settings
) -> LeaderboardService:
    return LeaderboardService(fake_store.transaction, settings=test_settings)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_engine() -> AsyncGenerator[AsyncEngine]:
    """Fresh in-memory SQLite database per test.

    StaticPool keeps the single connection alive so every session sees the
    same database.
    """
    engine = create_async_engine(
        TEST_DATABASE_URL,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_maker(test_engine)


@pytest_asyncio.fixture
async def db_session(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Session whose autobegun transaction is rolled back after the test."""
    async with session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture
def db_streak_service(
    session_maker: async_sessionmaker[AsyncSession], test_settings: Settings
) -> StreakService:
    return StreakService(
        lambda: streak_transaction(session_maker),
        settings=test_settings,
        locks=KeyLockRegistry(),
    )


# =============================================================================
# FastAPI Test Client Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def app(
    test_engine: AsyncEngine,
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[FastAPI]:
    """FastAPI app wired to the test database.

    The lifespan is not run by ASGITransport, so state is set up here.
    """
    from main import app as fastapi_app
    from main import build_services

    fastapi_app.state.engine = test_engine
    fastapi_app.state.session_maker = session_maker
    build_services(fastapi_app)

    yield fastapi_app


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
