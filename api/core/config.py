"""Service configuration, read from the environment (and .env) once per process."""

from functools import cached_property, lru_cache
from typing import Self
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Every field maps to an upper-case environment variable of the same name."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        frozen=True,
    )

    # postgresql+asyncpg://... in production, sqlite+aiosqlite://... for local runs
    database_url: str = ""

    # PostgreSQL pool, per worker process
    db_pool_size: int = 5
    db_pool_max_overflow: int = 5
    db_pool_timeout: int = 30
    db_pool_recycle: int = 300
    db_statement_timeout_ms: int = 10000  # server-side, per statement
    db_echo: bool = False

    # IANA zone used to turn a signal timestamp into an activity day.
    # Every host must agree on this, so it is never the server's local time.
    streak_timezone: str = "UTC"

    # Per-key guard: how long a writer waits for the key before giving up
    streak_lock_timeout_seconds: float = 5.0
    # Attempts for the whole read-transition-write sequence on conflict
    streak_max_retries: int = 3
    # Deadline for a whole record/reset/leaderboard call made over HTTP
    streak_request_timeout_seconds: float = 10.0

    leaderboard_default_limit: int = 10
    leaderboard_max_limit: int = 50

    # memory:// counts per worker; redis://host:port shares counters
    ratelimit_storage_uri: str = "memory://"
    ratelimit_enabled: bool = True

    # Off unless explicitly enabled
    debug: bool = False
    enable_docs: bool = False

    @field_validator("streak_timezone")
    @classmethod
    def validate_streak_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown STREAK_TIMEZONE: {v!r}") from e
        return v

    @model_validator(mode="after")
    def validate_config(self) -> Self:
        if not self.database_url:
            raise ValueError(
                "Database configuration required. "
                "Set DATABASE_URL for the streak store connection."
            )
        if self.streak_max_retries < 1:
            raise ValueError("STREAK_MAX_RETRIES must be at least 1")
        if not 1 <= self.leaderboard_default_limit <= self.leaderboard_max_limit:
            raise ValueError(
                "LEADERBOARD_DEFAULT_LIMIT must be between 1 and "
                "LEADERBOARD_MAX_LIMIT"
            )
        return self

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @cached_property
    def streak_zone(self) -> ZoneInfo:
        """The pinned reference zone for activity days."""
        return ZoneInfo(self.streak_timezone)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


def clear_settings_cache() -> None:
    """Forget the cached Settings so the next get_settings() rereads the env."""
    get_settings.cache_clear()
