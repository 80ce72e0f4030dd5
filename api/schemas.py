"""Pydantic schemas for API request/response validation."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field


class StreakState(BaseModel):
    """Streak state for one (workspace, user) key.

    Immutable: transitions build a new instance, so an unchanged state is
    returned as the very same object.
    """

    model_config = ConfigDict(frozen=True, from_attributes=True)

    workspace_id: str
    user_id: str
    current_streak: int = Field(ge=0)
    longest_streak: int = Field(ge=0)
    total_active_days: int = Field(ge=0)
    activity_score: float = Field(ge=0)
    last_active_date: date
    updated_at: datetime


class LeaderboardEntry(BaseModel):
    model_config = ConfigDict(frozen=True, from_attributes=True)

    # 1-based position, filled in by the leaderboard service
    rank: int | None = None
    user_id: str
    current_streak: int
    longest_streak: int
    activity_score: float


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str


class PoolStatusResponse(BaseModel):
    pool_size: int
    checked_out: int
    overflow: int
    checked_in: int


class DetailedHealthResponse(HealthResponse):
    """Health check with per-component status."""

    database: bool
    pool: PoolStatusResponse | None = None


class RecordActivityRequest(BaseModel):
    """Activity signal for a workspace member.

    When event_date is omitted the current time is resolved to a day in
    the configured streak timezone.
    """

    event_date: date | None = None


class StreakResponse(BaseModel):
    """A member's streak state within a workspace."""

    model_config = ConfigDict(from_attributes=True)

    workspace_id: str
    user_id: str
    current_streak: int = 0
    longest_streak: int = 0
    total_active_days: int = 0
    activity_score: float = 0.0
    last_active_date: date | None = None
    updated_at: datetime | None = None


class LeaderboardEntryResponse(BaseModel):
    """One ranked row of a workspace leaderboard."""

    model_config = ConfigDict(from_attributes=True)

    rank: int = Field(ge=1)
    user_id: str
    current_streak: int
    longest_streak: int
    activity_score: float


class ErrorResponse(BaseModel):
    detail: str
    streak: StreakResponse | None = None
