"""Per-member locks for streak read-modify-write cycles.

Two activity signals for the same member can arrive at once (two tabs, a
message and a page view). Each signal reads the stored streak, computes the
next state and writes it back; interleaving two of those would drop a day
credit or apply an increment twice. Every write for a (workspace, user) key
therefore runs under that key's lock. Different keys never share a lock.

Locks are created on first use and dropped when the last holder or waiter
leaves, so idle members cost nothing.

This is per-process. Across processes the store's row lock
(SELECT ... FOR UPDATE) and conditional insert provide the same guarantee.
"""

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TypeVar

from core.logger import get_logger
from services.streaks_service import StreakConflictError

logger = get_logger(__name__)

R = TypeVar("R")

MemberKey = tuple[str, str]


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class KeyLockRegistry:
    """asyncio locks keyed by (workspace_id, user_id)."""

    def __init__(self) -> None:
        self._locks: dict[MemberKey, _KeyLock] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def is_locked(self, workspace_id: str, user_id: str) -> bool:
        entry = self._locks.get((workspace_id, user_id))
        return entry is not None and entry.lock.locked()

    @asynccontextmanager
    async def hold(
        self,
        workspace_id: str,
        user_id: str,
        *,
        timeout: float | None = None,
    ) -> AsyncIterator[None]:
        """Hold the key's lock for the duration of the block.

        Raises:
            StreakConflictError: the lock was not acquired within ``timeout``
        """
        key = (workspace_id, user_id)
        # No await between lookup and registration, so this is atomic
        # within the event loop.
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1

        try:
            try:
                async with asyncio.timeout(timeout):
                    await entry.lock.acquire()
            except TimeoutError as e:
                logger.warning(
                    "streak.lock.timeout",
                    workspace_id=workspace_id,
                    user_id=user_id,
                    timeout_seconds=timeout,
                )
                raise StreakConflictError(
                    f"Streak for user {user_id} in workspace {workspace_id} "
                    "is busy, retry later"
                ) from e

            try:
                yield
            finally:
                entry.lock.release()
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]


_registry = KeyLockRegistry()


def get_lock_registry() -> KeyLockRegistry:
    return _registry


async def with_key_lock(
    workspace_id: str,
    user_id: str,
    fn: Callable[[], Awaitable[R]],
    *,
    timeout: float | None = None,
    registry: KeyLockRegistry | None = None,
) -> R:
    """Run ``fn`` while holding the member's lock and return its result.

    No two calls for the same (workspace_id, user_id) overlap; calls for
    other keys proceed in parallel.
    """
    locks = registry if registry is not None else _registry
    async with locks.hold(workspace_id, user_id, timeout=timeout):
        return await fn()
