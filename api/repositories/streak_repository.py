"""Repository for member activity streak state."""

from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from models import MemberActivityStreak, utcnow
from repositories.utils import (
    insert_on_conflict_do_nothing,
    log_slow_query,
    upsert_on_conflict,
)
from schemas import LeaderboardEntry, StreakState

_MEMBER_KEY = ["workspace_id", "user_id"]
_STATE_FIELDS = [
    "current_streak",
    "longest_streak",
    "total_active_days",
    "activity_score",
    "last_active_date",
    "updated_at",
]


def _to_values(state: StreakState) -> dict:
    return {
        "workspace_id": state.workspace_id,
        "user_id": state.user_id,
        **{field: getattr(state, field) for field in _STATE_FIELDS},
    }


class StreakRepository:
    """Streak state keyed by (workspace_id, user_id).

    Does not commit; callers own the transaction (see streak_transaction).
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    def _member_query(self, workspace_id: str, user_id: str):
        return select(MemberActivityStreak).where(
            MemberActivityStreak.workspace_id == workspace_id,
            MemberActivityStreak.user_id == user_id,
        )

    @log_slow_query("streak_get")
    async def get(self, workspace_id: str, user_id: str) -> StreakState | None:
        """Get a member's streak. None if the member has never been active."""
        result = await self.db.execute(self._member_query(workspace_id, user_id))
        row = result.scalar_one_or_none()
        return StreakState.model_validate(row) if row else None

    @log_slow_query("streak_get_for_update")
    async def get_for_update(
        self, workspace_id: str, user_id: str
    ) -> StreakState | None:
        """Get a member's streak and lock the row until the transaction ends.

        On PostgreSQL this is SELECT ... FOR UPDATE. SQLite has no row locks
        and ignores the clause; the in-process key lock covers it there.
        """
        result = await self.db.execute(
            self._member_query(workspace_id, user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        return StreakState.model_validate(row) if row else None

    @log_slow_query("streak_insert_if_absent")
    async def insert_if_absent(self, state: StreakState) -> bool:
        """Insert the first record for a member.

        Returns False when another writer created the row first.
        """
        return await insert_on_conflict_do_nothing(
            self.db,
            MemberActivityStreak,
            values=_to_values(state),
            index_elements=_MEMBER_KEY,
        )

    @log_slow_query("streak_upsert")
    async def upsert(self, state: StreakState) -> None:
        """Full replace of a member's streak in one atomic statement."""
        await upsert_on_conflict(
            self.db,
            MemberActivityStreak,
            values=_to_values(state),
            index_elements=_MEMBER_KEY,
            update_fields=_STATE_FIELDS,
        )

    @log_slow_query("streak_reset")
    async def reset(self, workspace_id: str, user_id: str) -> StreakState | None:
        """Zero the current streak and score, keeping longest and total days.

        No-op returning None when the member has no record.
        """
        result = await self.db.execute(
            update(MemberActivityStreak)
            .where(
                MemberActivityStreak.workspace_id == workspace_id,
                MemberActivityStreak.user_id == user_id,
            )
            .values(current_streak=0, activity_score=0.0, updated_at=utcnow())
            .returning(MemberActivityStreak)
            .execution_options(synchronize_session=False)
        )
        row = result.scalar_one_or_none()
        return StreakState.model_validate(row) if row else None

    @log_slow_query("streak_delete")
    async def delete(self, workspace_id: str, user_id: str) -> bool:
        """Remove a member's streak. Used when a member leaves a workspace."""
        result = await self.db.execute(
            delete(MemberActivityStreak).where(
                MemberActivityStreak.workspace_id == workspace_id,
                MemberActivityStreak.user_id == user_id,
            )
        )
        return result.rowcount > 0

    @log_slow_query("streak_leaderboard")
    async def leaderboard(
        self, workspace_id: str, limit: int
    ) -> Sequence[LeaderboardEntry]:
        """Top members of a workspace.

        Ordered by activity_score desc, current_streak desc, user_id asc;
        the user_id tiebreak keeps equal scores in a stable order.
        """
        result = await self.db.execute(
            select(
                MemberActivityStreak.user_id,
                MemberActivityStreak.current_streak,
                MemberActivityStreak.longest_streak,
                MemberActivityStreak.activity_score,
            )
            .where(MemberActivityStreak.workspace_id == workspace_id)
            .order_by(
                MemberActivityStreak.activity_score.desc(),
                MemberActivityStreak.current_streak.desc(),
                MemberActivityStreak.user_id.asc(),
            )
            .limit(limit)
        )
        return [LeaderboardEntry.model_validate(row) for row in result.all()]


TransactionFactory = Callable[[], AbstractAsyncContextManager[StreakRepository]]


@asynccontextmanager
async def streak_transaction(
    session_maker: async_sessionmaker[AsyncSession],
) -> AsyncIterator[StreakRepository]:
    """Open a session and a transaction around a StreakRepository.

    Commits when the block exits normally. Any exception, including
    cancellation, rolls the transaction back so no partial write survives.
    """
    async with session_maker() as session:
        async with session.begin():
            yield StreakRepository(session)
