"""Activity recording for workspace streaks.

This module handles:
- Resolving an activity signal to a day in the pinned streak timezone
- Applying the streak transition under the member's key lock, inside one
  store transaction (rolled back on error, timeout or cancellation)
- Retrying when another writer won a race for the same member
- Administrative streak resets

Activity sources (messages, workspace visits, ...) should call
record_activity_safely(), which never raises: a failed streak update must
not fail the action that triggered it.
"""

import asyncio
from datetime import UTC, date, datetime

from sqlalchemy.exc import SQLAlchemyError
from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from core.config import Settings, get_settings
from core.logger import get_logger
from core.wide_event import set_wide_event_fields
from repositories.streak_repository import TransactionFactory
from repositories.utils import STORE_UNAVAILABLE_ERRORS
from schemas import StreakState
from services.streak_lock_service import KeyLockRegistry, with_key_lock
from services.streaks_service import (
    StaleEventRejectedError,
    StreakConflictError,
    StreakError,
    StreakStoreUnavailableError,
    StreakValidationError,
    transition,
)

logger = get_logger(__name__)

MAX_ID_LENGTH = 255


def _validate_member_key(workspace_id: str, user_id: str) -> None:
    for name, value in (("workspace_id", workspace_id), ("user_id", user_id)):
        if not isinstance(value, str) or not value.strip():
            raise StreakValidationError(f"{name} must be a non-empty string")
        if len(value) > MAX_ID_LENGTH:
            raise StreakValidationError(
                f"{name} must be at most {MAX_ID_LENGTH} characters"
            )


def _outcome(existing: StreakState | None, new_state: StreakState) -> str:
    if existing is None:
        return "created"
    if new_state is existing:
        return "duplicate"
    if new_state.current_streak > 1:
        return "continued"
    return "restarted"


class StreakService:
    """Records activity and manages streak state for workspace members."""

    def __init__(
        self,
        transaction_factory: TransactionFactory,
        *,
        settings: Settings | None = None,
        locks: KeyLockRegistry | None = None,
    ) -> None:
        self._transaction = transaction_factory
        self._settings = settings or get_settings()
        self._locks = locks

    def today(self) -> date:
        """Current day in the pinned streak timezone."""
        return datetime.now(UTC).astimezone(self._settings.streak_zone).date()

    def resolve_activity_day(
        self,
        signal_time: datetime | None = None,
        event_date: date | None = None,
    ) -> date:
        """Turn a signal into the day it is credited to.

        An explicit event_date wins. Otherwise signal_time (default: now) is
        converted to the pinned timezone; naive datetimes are taken as UTC.

        Raises:
            StreakValidationError: the day is after today in the pinned zone
        """
        # datetime is a date subclass; a full timestamp still needs the zone
        if isinstance(event_date, datetime):
            signal_time, event_date = event_date, None

        if event_date is not None:
            day = event_date
        else:
            moment = signal_time or datetime.now(UTC)
            if moment.tzinfo is None:
                moment = moment.replace(tzinfo=UTC)
            day = moment.astimezone(self._settings.streak_zone).date()

        today = self.today()
        if day > today:
            raise StreakValidationError(
                f"Activity day {day.isoformat()} is in the future "
                f"(today is {today.isoformat()} in {self._settings.streak_timezone})"
            )
        return day

    async def record_activity(
        self,
        workspace_id: str,
        user_id: str,
        signal_time: datetime | None = None,
        *,
        event_date: date | None = None,
        timeout: float | None = None,
    ) -> StreakState:
        """Credit a member with activity and return the resulting streak.

        A second signal on the same day returns the stored state unchanged.

        Args:
            timeout: Deadline in seconds for the whole operation. On expiry
                the transaction is rolled back and TimeoutError is raised.

        Raises:
            StreakValidationError: malformed ids or a future-dated signal
            StaleEventRejectedError: the day precedes last_active_date
            StreakConflictError: the member stayed contended after retries
            StreakStoreUnavailableError: the store could not be reached
        """
        _validate_member_key(workspace_id, user_id)
        day = self.resolve_activity_day(signal_time, event_date)

        retrying = AsyncRetrying(
            retry=retry_if_exception_type(StreakConflictError),
            stop=stop_after_attempt(self._settings.streak_max_retries),
            wait=wait_exponential_jitter(initial=0.01, max=0.25),
            reraise=True,
        )

        try:
            async with asyncio.timeout(timeout):
                existing, new_state = await retrying(
                    self._apply_guarded, workspace_id, user_id, day
                )
        except StaleEventRejectedError as e:
            logger.info(
                "streak.stale_rejected",
                workspace_id=workspace_id,
                user_id=user_id,
                event_date=day.isoformat(),
                last_active_date=e.state.last_active_date.isoformat(),
            )
            set_wide_event_fields(streak_outcome="stale_rejected")
            raise
        except STORE_UNAVAILABLE_ERRORS as e:
            logger.error(
                "streak.store.unavailable",
                workspace_id=workspace_id,
                user_id=user_id,
                error=str(e),
            )
            raise StreakStoreUnavailableError("Streak store is unavailable") from e

        outcome = _outcome(existing, new_state)
        logger.info(
            "streak.recorded",
            workspace_id=workspace_id,
            user_id=user_id,
            event_date=day.isoformat(),
            outcome=outcome,
            current_streak=new_state.current_streak,
        )
        set_wide_event_fields(
            streak_outcome=outcome,
            streak_current=new_state.current_streak,
            streak_score=new_state.activity_score,
        )
        return new_state

    async def _apply_guarded(
        self, workspace_id: str, user_id: str, day: date
    ) -> tuple[StreakState | None, StreakState]:
        async def read_transition_write() -> tuple[StreakState | None, StreakState]:
            async with self._transaction() as store:
                existing = await store.get_for_update(workspace_id, user_id)
                new_state = transition(
                    existing, day, workspace_id=workspace_id, user_id=user_id
                )
                if new_state is existing:
                    return existing, new_state

                if existing is None:
                    if not await store.insert_if_absent(new_state):
                        # Another process created the row between our read and
                        # insert; re-read it under the row lock.
                        raise StreakConflictError(
                            f"Concurrent first write for user {user_id} "
                            f"in workspace {workspace_id}"
                        )
                else:
                    await store.upsert(new_state)
                return existing, new_state

        return await with_key_lock(
            workspace_id,
            user_id,
            read_transition_write,
            timeout=self._settings.streak_lock_timeout_seconds,
            registry=self._locks,
        )

    async def record_activity_safely(
        self,
        workspace_id: str,
        user_id: str,
        signal_time: datetime | None = None,
        *,
        event_date: date | None = None,
        timeout: float | None = None,
    ) -> StreakState | None:
        """Fire-and-forget variant of record_activity for activity sources.

        Failures are logged, never raised. Returns None when nothing was
        recorded.
        """
        try:
            return await self.record_activity(
                workspace_id,
                user_id,
                signal_time,
                event_date=event_date,
                timeout=timeout,
            )
        except StaleEventRejectedError:
            # Already logged by record_activity
            return None
        except (StreakError, SQLAlchemyError, TimeoutError) as e:
            logger.warning(
                "streak.record.failed",
                workspace_id=workspace_id,
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None

    async def get_streak(self, workspace_id: str, user_id: str) -> StreakState | None:
        """Stored streak for a member, or None if they were never active."""
        _validate_member_key(workspace_id, user_id)
        try:
            async with self._transaction() as store:
                return await store.get(workspace_id, user_id)
        except STORE_UNAVAILABLE_ERRORS as e:
            raise StreakStoreUnavailableError("Streak store is unavailable") from e

    async def reset_streak(
        self, workspace_id: str, user_id: str, *, timeout: float | None = None
    ) -> None:
        """Administrative reset of a member's current streak.

        Keeps longest_streak and total_active_days. No-op when the member has
        no record, so calling it twice is harmless.
        """
        _validate_member_key(workspace_id, user_id)

        async def reset() -> StreakState | None:
            async with self._transaction() as store:
                return await store.reset(workspace_id, user_id)

        try:
            async with asyncio.timeout(timeout):
                state = await with_key_lock(
                    workspace_id,
                    user_id,
                    reset,
                    timeout=self._settings.streak_lock_timeout_seconds,
                    registry=self._locks,
                )
        except STORE_UNAVAILABLE_ERRORS as e:
            raise StreakStoreUnavailableError("Streak store is unavailable") from e

        logger.info(
            "streak.reset",
            workspace_id=workspace_id,
            user_id=user_id,
            found=state is not None,
        )

    async def delete_streak(self, workspace_id: str, user_id: str) -> bool:
        """Drop a member's streak when they leave the workspace.

        Called by the membership service; returns False if there was no record.
        """
        _validate_member_key(workspace_id, user_id)

        async def delete() -> bool:
            async with self._transaction() as store:
                return await store.delete(workspace_id, user_id)

        try:
            deleted = await with_key_lock(
                workspace_id,
                user_id,
                delete,
                timeout=self._settings.streak_lock_timeout_seconds,
                registry=self._locks,
            )
        except STORE_UNAVAILABLE_ERRORS as e:
            raise StreakStoreUnavailableError("Streak store is unavailable") from e

        logger.info(
            "streak.deleted", workspace_id=workspace_id, user_id=user_id, found=deleted
        )
        return deleted
