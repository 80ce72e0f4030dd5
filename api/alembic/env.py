"""Alembic environment for the streak store.

Migrations run with a sync driver (psycopg2, or plain sqlite) against the
same DATABASE_URL the service uses. On PostgreSQL a session advisory lock
keeps replicas that start together from migrating concurrently.
"""

from __future__ import annotations

import logging
import sys
import time
from collections.abc import Iterator
from contextlib import contextmanager
from logging.config import fileConfig
from pathlib import Path

from sqlalchemy import Connection, create_engine, text

# api/ holds the models and core packages
sys.path.insert(0, str(Path(__file__).parent.parent))

import models  # noqa: F401,E402
from alembic import context  # noqa: E402
from core.config import get_settings  # noqa: E402
from core.database import Base  # noqa: E402

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

logger = logging.getLogger("alembic.env")

target_metadata = Base.metadata

MIGRATION_LOCK_KEY = 518733091
MIGRATION_LOCK_WAIT_SECONDS = 120
MIGRATION_LOCK_POLL_SECONDS = 2

_SYNC_DRIVERS = {"+asyncpg": "+psycopg2", "+aiosqlite": ""}


def sync_database_url() -> str:
    url = get_settings().database_url
    for async_driver, sync_driver in _SYNC_DRIVERS.items():
        if async_driver in url:
            return url.replace(async_driver, sync_driver)
    return url


def _try_lock(connection: Connection) -> bool:
    acquired = connection.execute(
        text("SELECT pg_try_advisory_lock(:key)"), {"key": MIGRATION_LOCK_KEY}
    ).scalar()
    # Leave no transaction open; the lock is session scoped
    connection.commit()
    return bool(acquired)


@contextmanager
def migration_lock(connection: Connection) -> Iterator[None]:
    if connection.dialect.name != "postgresql":
        yield
        return

    deadline = time.monotonic() + MIGRATION_LOCK_WAIT_SECONDS
    while not _try_lock(connection):
        if time.monotonic() >= deadline:
            raise RuntimeError(
                f"Migration lock not acquired within {MIGRATION_LOCK_WAIT_SECONDS}s; "
                "another replica may be holding it"
            )
        logger.debug("Waiting for migration lock")
        time.sleep(MIGRATION_LOCK_POLL_SECONDS)
    logger.info("Acquired migration lock")

    try:
        yield
    finally:
        connection.execute(
            text("SELECT pg_advisory_unlock(:key)"), {"key": MIGRATION_LOCK_KEY}
        )
        connection.commit()
        logger.info("Released migration lock")


def run_migrations_offline() -> None:
    context.configure(
        url=sync_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        compare_type=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    engine = create_engine(sync_database_url())

    with engine.connect() as connection, migration_lock(connection):
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            compare_type=True,
            # SQLite needs batch mode for ALTER
            render_as_batch=True,
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
