"""Tests for StreakRepository.

Runs against in-memory SQLite (aiosqlite), which supports the same
ON CONFLICT and RETURNING statements the repository issues on PostgreSQL.
"""

from datetime import UTC, date, datetime

import pytest
import time_machine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Mark all tests in this module as integration tests (database required)
pytestmark = pytest.mark.integration

from repositories.streak_repository import StreakRepository, streak_transaction
from services.activity_service import StreakService
from tests.factories import (
    WORKSPACE_ID,
    MemberActivityStreakFactory,
    create_async,
    create_batch_async,
    make_state,
)


def _counters(state) -> tuple:
    return (
        state.current_streak,
        state.longest_streak,
        state.total_active_days,
        state.activity_score,
        state.last_active_date,
    )


class TestStreakRepositoryGet:
    async def test_unknown_member_returns_none(self, db_session: AsyncSession):
        repo = StreakRepository(db_session)
        assert await repo.get(WORKSPACE_ID, "nobody") is None

    async def test_returns_state(self, db_session: AsyncSession):
        row = await create_async(
            MemberActivityStreakFactory, db_session, user_id="alice"
        )
        repo = StreakRepository(db_session)

        state = await repo.get(WORKSPACE_ID, "alice")

        assert state is not None
        assert state.user_id == "alice"
        assert state.current_streak == row.current_streak
        assert state.last_active_date == row.last_active_date

    async def test_get_for_update_matches_get(self, db_session: AsyncSession):
        await create_async(MemberActivityStreakFactory, db_session, user_id="alice")
        repo = StreakRepository(db_session)

        locked = await repo.get_for_update(WORKSPACE_ID, "alice")
        plain = await repo.get(WORKSPACE_ID, "alice")

        assert _counters(locked) == _counters(plain)


class TestStreakRepositoryWrites:
    async def test_insert_if_absent(self, db_session: AsyncSession):
        repo = StreakRepository(db_session)
        state = make_state("alice", last_active_date=date(2026, 3, 1))

        assert await repo.insert_if_absent(state) is True
        assert await repo.insert_if_absent(state) is False

        stored = await repo.get(WORKSPACE_ID, "alice")
        assert _counters(stored) == _counters(state)

    async def test_insert_if_absent_does_not_overwrite(self, db_session: AsyncSession):
        repo = StreakRepository(db_session)
        await repo.insert_if_absent(make_state("alice", current_streak=4))

        inserted = await repo.insert_if_absent(make_state("alice", current_streak=1))

        assert inserted is False
        assert (await repo.get(WORKSPACE_ID, "alice")).current_streak == 4

    async def test_upsert_inserts_then_replaces(self, db_session: AsyncSession):
        repo = StreakRepository(db_session)
        first = make_state("alice", current_streak=1, last_active_date=date(2026, 3, 1))
        second = make_state(
            "alice",
            current_streak=2,
            total_active_days=2,
            last_active_date=date(2026, 3, 2),
        )

        await repo.upsert(first)
        await repo.upsert(second)

        stored = await repo.get(WORKSPACE_ID, "alice")
        assert _counters(stored) == _counters(second)

    async def test_one_row_per_member(self, db_session: AsyncSession):
        repo = StreakRepository(db_session)
        await repo.upsert(make_state("alice"))
        await repo.upsert(make_state("alice", current_streak=3))

        db_session.add(
            MemberActivityStreakFactory.build(workspace_id=WORKSPACE_ID, user_id="alice")
        )
        with pytest.raises(IntegrityError):
            await db_session.flush()

    async def test_reset_keeps_longest_and_total(self, db_session: AsyncSession):
        repo = StreakRepository(db_session)
        await repo.upsert(
            make_state(
                "alice",
                current_streak=2,
                longest_streak=2,
                total_active_days=3,
                last_active_date=date(2026, 3, 5),
            )
        )

        state = await repo.reset(WORKSPACE_ID, "alice")

        assert _counters(state) == (0, 2, 3, 0.0, date(2026, 3, 5))
        stored = await repo.get(WORKSPACE_ID, "alice")
        assert _counters(stored) == (0, 2, 3, 0.0, date(2026, 3, 5))

    async def test_reset_unknown_member_returns_none(self, db_session: AsyncSession):
        repo = StreakRepository(db_session)
        assert await repo.reset(WORKSPACE_ID, "nobody") is None

    async def test_delete(self, db_session: AsyncSession):
        repo = StreakRepository(db_session)
        await repo.upsert(make_state("alice"))

        assert await repo.delete(WORKSPACE_ID, "alice") is True
        assert await repo.delete(WORKSPACE_ID, "alice") is False
        assert await repo.get(WORKSPACE_ID, "alice") is None


class TestStreakRepositoryLeaderboard:
    async def test_ordering(self, db_session: AsyncSession):
        repo = StreakRepository(db_session)
        for state in (
            make_state("A", current_streak=1, total_active_days=3, activity_score=3.3),
            make_state("B", current_streak=3, total_active_days=5, activity_score=6.5),
            make_state("C", current_streak=2, total_active_days=4, activity_score=4.8),
            make_state("D", current_streak=4, total_active_days=4, activity_score=3.3),
        ):
            await repo.upsert(state)

        entries = await repo.leaderboard(WORKSPACE_ID, 10)

        # D ties A on score and wins on current streak
        assert [e.user_id for e in entries] == ["B", "C", "D", "A"]
        assert all(e.rank is None for e in entries)

    async def test_tie_on_score_and_streak_ordered_by_user_id(
        self, db_session: AsyncSession
    ):
        repo = StreakRepository(db_session)
        for user in ("carol", "alice", "bob"):
            await repo.upsert(make_state(user, current_streak=1, activity_score=2.0))

        entries = await repo.leaderboard(WORKSPACE_ID, 10)

        assert [e.user_id for e in entries] == ["alice", "bob", "carol"]

    async def test_equal_scores_ordered_by_user_id(self, db_session: AsyncSession):
        repo = StreakRepository(db_session)
        for user, score in (("A", 5.0), ("C", 7.2), ("B", 7.2)):
            await repo.upsert(make_state(user, current_streak=2, activity_score=score))

        entries = await repo.leaderboard(WORKSPACE_ID, 10)

        assert [e.user_id for e in entries] == ["B", "C", "A"]

    async def test_limit_and_workspace_scope(self, db_session: AsyncSession):
        await create_batch_async(
            MemberActivityStreakFactory, db_session, 5, workspace_id="ws_1"
        )
        await create_batch_async(
            MemberActivityStreakFactory, db_session, 3, workspace_id="ws_2"
        )
        repo = StreakRepository(db_session)

        assert len(await repo.leaderboard("ws_1", 2)) == 2
        assert len(await repo.leaderboard("ws_1", 10)) == 5
        assert len(await repo.leaderboard("ws_2", 10)) == 3


class TestStreakTransaction:
    async def test_commits_on_success(
        self, session_maker: async_sessionmaker[AsyncSession]
    ):
        async with streak_transaction(session_maker) as repo:
            await repo.upsert(make_state("alice"))

        async with streak_transaction(session_maker) as repo:
            assert await repo.get(WORKSPACE_ID, "alice") is not None

    async def test_rolls_back_on_error(
        self, session_maker: async_sessionmaker[AsyncSession]
    ):
        with pytest.raises(RuntimeError):
            async with streak_transaction(session_maker) as repo:
                await repo.upsert(make_state("alice"))
                raise RuntimeError("abort")

        async with streak_transaction(session_maker) as repo:
            assert await repo.get(WORKSPACE_ID, "alice") is None


class TestStreakServiceOnSqlite:
    """The recorder end to end against a real store."""

    async def test_alice_march(self, db_streak_service: StreakService):
        with time_machine.travel(datetime(2026, 3, 15, tzinfo=UTC), tick=False):
            for day in (1, 2, 2, 5):
                state = await db_streak_service.record_activity(
                    WORKSPACE_ID, "alice", event_date=date(2026, 3, day)
                )
            assert _counters(state) == (1, 2, 3, 3.3, date(2026, 3, 5))

            await db_streak_service.reset_streak(WORKSPACE_ID, "alice")
            stored = await db_streak_service.get_streak(WORKSPACE_ID, "alice")
            assert _counters(stored) == (0, 2, 3, 0.0, date(2026, 3, 5))

            assert await db_streak_service.delete_streak(WORKSPACE_ID, "alice") is True
            assert await db_streak_service.get_streak(WORKSPACE_ID, "alice") is None

