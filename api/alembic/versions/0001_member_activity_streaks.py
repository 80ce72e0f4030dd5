"""member activity streaks

Revision ID: 0001_member_activity_streaks
Revises:
Create Date: 2026-10-19

One row per workspace member holding the streak counters and the
leaderboard score.
"""

import sqlalchemy as sa

from alembic import op

# revision identifiers, used by Alembic.
revision = "0001_member_activity_streaks"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "member_activity_streaks",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("workspace_id", sa.String(255), nullable=False),
        sa.Column("user_id", sa.String(255), nullable=False),
        sa.Column("current_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("longest_streak", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "total_active_days", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("activity_score", sa.Float(), nullable=False, server_default="0"),
        sa.Column("last_active_date", sa.Date(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "workspace_id", "user_id", name="uq_member_activity_streaks_member"
        ),
    )

    # Leaderboard: filter by workspace, order by score descending
    op.create_index(
        "ix_member_activity_streaks_leaderboard",
        "member_activity_streaks",
        ["workspace_id", "activity_score"],
    )


def downgrade() -> None:
    op.drop_index(
        "ix_member_activity_streaks_leaderboard",
        table_name="member_activity_streaks",
    )
    op.drop_table("member_activity_streaks")
