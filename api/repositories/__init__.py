"""Repository layer for database operations.

Repositories encapsulate all database queries, keeping services free of SQL.
This separation provides:
- Single source of truth for database operations
- Easier testing (repositories can be swapped for fakes)
- Transaction boundaries owned by the caller, never the repository
"""

from repositories.streak_repository import StreakRepository, streak_transaction
from repositories.utils import log_slow_query

__all__ = [
    "StreakRepository",
    "log_slow_query",
    "streak_transaction",
]
