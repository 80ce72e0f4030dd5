"""Streak transition rules.

Pure functions only: no I/O, no clock reads unless a timestamp is not
supplied. Given the stored state for a member (or None) and the day an
activity is attributed to, compute the next state:

- first signal ever: streak of 1
- same day as last_active_date: unchanged (duplicate signal)
- the day after last_active_date: streak continues
- any later day: streak restarts at 1, longest_streak is kept
- an earlier day: rejected, history cannot be rewritten in place
"""

from datetime import UTC, date, datetime, timedelta

from schemas import StreakState

# Score bonus per day of current streak, in tenths
STREAK_BONUS_TENTHS = 1

# A member's first recorded day scores a flat 1.0; the streak bonus starts
# with the second credited day
INITIAL_ACTIVITY_SCORE = 1.0


class StreakError(Exception):
    """Base class for streak engine errors."""


class StreakValidationError(StreakError):
    """Raised for malformed or future-dated activity signals."""


class StaleEventRejectedError(StreakError):
    """Raised when a signal's day precedes the stored last_active_date."""

    def __init__(self, message: str, state: StreakState):
        super().__init__(message)
        self.state = state


class StreakConflictError(StreakError):
    """Raised when a key stayed contended after all retries. Safe to retry."""


class StreakStoreUnavailableError(StreakError):
    """Raised when the streak store cannot be reached."""


def calculate_activity_score(total_active_days: int, current_streak: int) -> float:
    """total_active_days * (1 + current_streak * 0.1).

    Evaluated as a single division so the result is the correctly rounded
    float (3 days at streak 1 gives exactly 3.3).
    """
    return total_active_days * (10 + current_streak * STREAK_BONUS_TENTHS) / 10


def new_streak(
    workspace_id: str, user_id: str, day: date, *, now: datetime | None = None
) -> StreakState:
    return StreakState(
        workspace_id=workspace_id,
        user_id=user_id,
        current_streak=1,
        longest_streak=1,
        total_active_days=1,
        activity_score=INITIAL_ACTIVITY_SCORE,
        last_active_date=day,
        updated_at=now or datetime.now(UTC),
    )


def transition(
    existing: StreakState | None,
    day: date,
    *,
    workspace_id: str | None = None,
    user_id: str | None = None,
    now: datetime | None = None,
) -> StreakState:
    """Compute the state after crediting ``day``.

    Args:
        existing: Stored state, or None for a member with no record yet
        day: Activity day, already resolved in the pinned timezone
        workspace_id: Key for a new record (ignored when existing is set)
        user_id: Key for a new record (ignored when existing is set)
        now: Timestamp for updated_at; defaults to the current UTC time

    Returns:
        The new state. A same-day duplicate returns ``existing`` itself.

    Raises:
        StaleEventRejectedError: ``day`` is before ``existing.last_active_date``
    """
    if existing is None:
        if workspace_id is None or user_id is None:
            raise StreakValidationError("workspace_id and user_id are required")
        return new_streak(workspace_id, user_id, day, now=now)

    last = existing.last_active_date
    if day == last:
        return existing

    if day < last:
        raise StaleEventRejectedError(
            f"Activity day {day.isoformat()} precedes last active day "
            f"{last.isoformat()}",
            state=existing,
        )

    if day == last + timedelta(days=1):
        current_streak = existing.current_streak + 1
    else:
        current_streak = 1

    total_active_days = existing.total_active_days + 1
    return existing.model_copy(
        update={
            "current_streak": current_streak,
            "longest_streak": max(existing.longest_streak, current_streak),
            "total_active_days": total_active_days,
            "activity_score": calculate_activity_score(
                total_active_days, current_streak
            ),
            "last_active_date": day,
            "updated_at": now or datetime.now(UTC),
        }
    )


def reset_streak_state(
    existing: StreakState, *, now: datetime | None = None
) -> StreakState:
    """Administrative reset: current streak and score drop to zero.

    longest_streak, total_active_days and last_active_date are kept.
    """
    return existing.model_copy(
        update={
            "current_streak": 0,
            "activity_score": 0.0,
            "updated_at": now or datetime.now(UTC),
        }
    )
