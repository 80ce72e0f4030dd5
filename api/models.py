"""SQLAlchemy models for workspace activity streaks."""

from datetime import UTC, date, datetime

from sqlalchemy import (
    Date,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from core.database import Base


def utcnow() -> datetime:
    """Return current UTC time (timezone-aware)."""
    return datetime.now(UTC)


class MemberActivityStreak(Base):
    """Daily-engagement streak for one member of one workspace.

    Rows are written only through StreakRepository; the activity score is
    derived from total_active_days and current_streak on every transition.
    """

    __tablename__ = "member_activity_streaks"
    __table_args__ = (
        UniqueConstraint(
            "workspace_id", "user_id", name="uq_member_activity_streaks_member"
        ),
        # Leaderboard: filter by workspace, order by score descending
        Index(
            "ix_member_activity_streaks_leaderboard",
            "workspace_id",
            "activity_score",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    workspace_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    current_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    longest_streak: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_active_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    activity_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    last_active_date: Mapped[date] = mapped_column(Date, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
