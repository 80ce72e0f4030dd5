"""Streak store engine, sessions and health checks.

PostgreSQL (asyncpg) in production; SQLite (aiosqlite) for local runs and
tests. Schema is owned by Alembic, never created at startup.
"""

from __future__ import annotations

import asyncio
from typing import Any, NamedTuple, TypedDict

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import QueuePool

from core.config import Settings, get_settings
from core.logger import get_logger

logger = get_logger(__name__)

CONNECT_CHECK_TIMEOUT_SECONDS = 30


class Base(DeclarativeBase):
    pass


class PoolStatus(NamedTuple):
    pool_size: int
    checked_out: int
    overflow: int
    checked_in: int


class HealthCheckResult(TypedDict):
    database: bool
    pool: PoolStatus | None


def engine_options(settings: Settings) -> dict[str, Any]:
    """Keyword arguments for create_async_engine.

    Pool sizing and the server-side statement timeout only apply to
    PostgreSQL; SQLite picks its own pool.
    """
    options: dict[str, Any] = {"echo": settings.db_echo}
    if settings.is_sqlite:
        return options

    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_pool_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_recycle=settings.db_pool_recycle,
        pool_pre_ping=True,
        connect_args={
            "server_settings": {
                "statement_timeout": str(settings.db_statement_timeout_ms),
                "application_name": "workspace-streaks",
            }
        },
    )
    return options


def create_engine(settings: Settings | None = None) -> AsyncEngine:
    settings = settings or get_settings()
    return create_async_engine(settings.database_url, **engine_options(settings))


def create_session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # Streak states are copied out of the session before commit, so nothing
    # needs reloading afterwards.
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def check_db_connection(
    engine: AsyncEngine, timeout: float = CONNECT_CHECK_TIMEOUT_SECONDS
) -> None:
    """Round-trip a SELECT 1; raises if the store is unreachable."""
    async with asyncio.timeout(timeout):
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))


async def init_db(engine: AsyncEngine) -> None:
    """Startup check that the streak store is reachable."""
    await check_db_connection(engine)
    logger.info("db.connectivity.verified", dialect=engine.dialect.name)


async def dispose_engine(engine: AsyncEngine) -> None:
    await engine.dispose()
    logger.info("db.engine.disposed")


def get_pool_status(engine: AsyncEngine) -> PoolStatus | None:
    """QueuePool counters, or None for pools without them (SQLite)."""
    pool = engine.sync_engine.pool
    if not isinstance(pool, QueuePool):
        return None
    return PoolStatus(
        pool_size=pool.size(),
        checked_out=pool.checkedout(),
        overflow=pool.overflow(),
        checked_in=pool.checkedin(),
    )


async def comprehensive_health_check(engine: AsyncEngine) -> HealthCheckResult:
    """Connectivity plus pool counters. Never raises."""
    try:
        await check_db_connection(engine)
        reachable = True
    except Exception:
        logger.warning("db.health_check.failed", exc_info=True)
        reachable = False

    return {"database": reachable, "pool": get_pool_status(engine)}
