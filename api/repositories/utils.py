"""Shared helpers for the streak repositories.

- ``log_slow_query`` records slow or failing statements on the wide event
- ``dialect_insert`` picks the ON CONFLICT capable INSERT for the bind
- the two ``*_on_conflict*`` helpers wrap the statements the repository needs

None of these commit; the caller owns the transaction.
"""

import time
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, ParamSpec, TypeVar

from sqlalchemy import Insert
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from core.logger import get_logger
from core.wide_event import set_wide_event_fields

logger = get_logger(__name__)

SLOW_QUERY_THRESHOLD_MS = 500

# Raised when the store cannot be reached at all, as opposed to a bad statement
STORE_UNAVAILABLE_ERRORS = (OperationalError, InterfaceError, ConnectionError)

_INSERTS_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}

P = ParamSpec("P")
R = TypeVar("R")
T = TypeVar("T")


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def log_slow_query(
    operation_name: str,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Time a repository coroutine and annotate the wide event.

    Calls slower than SLOW_QUERY_THRESHOLD_MS set ``db_slow_query``; failures
    set ``db_query_error`` with the exception type and are re-raised.
    """

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            start = time.perf_counter()
            try:
                result = await func(*args, **kwargs)
            except Exception as exc:
                set_wide_event_fields(
                    db_query_error=True,
                    db_operation=operation_name,
                    db_duration_ms=_elapsed_ms(start),
                    db_error=str(exc),
                    db_error_type=type(exc).__name__,
                )
                raise

            duration_ms = _elapsed_ms(start)
            if duration_ms > SLOW_QUERY_THRESHOLD_MS:
                logger.debug(
                    "db.query.slow",
                    db_operation=operation_name,
                    db_duration_ms=duration_ms,
                )
                set_wide_event_fields(
                    db_slow_query=True,
                    db_operation=operation_name,
                    db_duration_ms=duration_ms,
                )
            return result

        return wrapper

    return decorator


def dialect_insert(db: AsyncSession, model: type) -> Insert:
    dialect = db.get_bind().dialect.name
    insert = _INSERTS_BY_DIALECT.get(dialect)
    if insert is None:
        raise NotImplementedError(f"ON CONFLICT is not supported for {dialect!r}")
    return insert(model)


async def upsert_on_conflict(
    db: AsyncSession,
    model: type[T],
    values: dict[str, Any],
    index_elements: list[str],
    update_fields: list[str],
) -> None:
    """INSERT, or overwrite ``update_fields`` when ``index_elements`` clash.

    ON CONFLICT DO UPDATE skips Column.onupdate, so any ``updated_at`` has to
    be passed in ``values`` and listed in ``update_fields``.
    """
    missing = [field for field in update_fields if field not in values]
    if missing:
        raise ValueError(f"update_fields not present in values: {missing}")

    stmt = dialect_insert(db, model).values(**values)
    await db.execute(
        stmt.on_conflict_do_update(
            index_elements=index_elements,
            set_={field: values[field] for field in update_fields},
        )
    )


async def insert_on_conflict_do_nothing(
    db: AsyncSession,
    model: type[T],
    values: dict[str, Any],
    index_elements: list[str],
) -> bool:
    """INSERT unless the row exists. True when this call created it."""
    stmt = dialect_insert(db, model).values(**values)
    result = await db.execute(stmt.on_conflict_do_nothing(index_elements=index_elements))
    return result.rowcount == 1
