"""Workspace streak leaderboard.

Read-only: takes no key locks, so ranking never waits on writers and may
trail an in-flight write by one transition.
"""

import asyncio

from core.config import Settings, get_settings
from core.logger import get_logger
from repositories.streak_repository import TransactionFactory
from repositories.utils import STORE_UNAVAILABLE_ERRORS
from schemas import LeaderboardEntry
from services.streaks_service import StreakStoreUnavailableError, StreakValidationError

logger = get_logger(__name__)


class LeaderboardService:
    def __init__(
        self,
        transaction_factory: TransactionFactory,
        *,
        settings: Settings | None = None,
    ) -> None:
        self._transaction = transaction_factory
        self._settings = settings or get_settings()

    def normalize_limit(self, limit: int | None) -> int:
        """Out-of-range limits fall back to the default page size."""
        if limit is None or not 1 <= limit <= self._settings.leaderboard_max_limit:
            return self._settings.leaderboard_default_limit
        return limit

    async def get_leaderboard(
        self,
        workspace_id: str,
        limit: int | None = None,
        *,
        timeout: float | None = None,
    ) -> list[LeaderboardEntry]:
        """Top members of a workspace, ranked from 1.

        Ordered by activity_score desc, then current_streak desc, then
        user_id asc, so equal scores always come back in the same order.
        Errors propagate to the caller.
        """
        if not workspace_id or not workspace_id.strip():
            raise StreakValidationError("workspace_id must be a non-empty string")

        page_size = self.normalize_limit(limit)
        try:
            async with asyncio.timeout(timeout):
                async with self._transaction() as store:
                    entries = await store.leaderboard(workspace_id, page_size)
        except STORE_UNAVAILABLE_ERRORS as e:
            logger.error(
                "leaderboard.store.unavailable",
                workspace_id=workspace_id,
                error=str(e),
            )
            raise StreakStoreUnavailableError("Streak store is unavailable") from e

        return [
            entry.model_copy(update={"rank": position})
            for position, entry in enumerate(entries, start=1)
        ]
