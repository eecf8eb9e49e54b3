"""Dashboard widget catalog and per-user widget layout."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261001_0003"
down_revision = "20261001_0002"
branch_labels = None
depends_on = None

_OUTLINE_WEEK = {"skin": "outline", "timeRange": "week"}

CATALOG = (
    ("ClockWidget", None, {"skin": "outline"}),
    ("TotalTime", "coding_time", _OUTLINE_WEEK),
    ("TotalTime1x2", "coding_time", _OUTLINE_WEEK),
    ("TodaysActivity1x2", "todays_activity", _OUTLINE_WEEK),
    ("MostActiveWeekday", "most_active_weekday", _OUTLINE_WEEK),
    ("Top3BarsChart", "top_items", {**_OUTLINE_WEEK, "item": "languages"}),
    ("GoalProgressBar1x2", "goal_progress", _OUTLINE_WEEK),
    ("MaxFocusStreak", "max_focus_streak", _OUTLINE_WEEK),
    ("GoalMosaic1x2", "goal_mosaic", _OUTLINE_WEEK),
    ("TopItemsGroupedByTime2x2", "top_items_grouped_by_time", {**_OUTLINE_WEEK, "item": "projects"}),
)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    """Create the widget tables and seed the catalog."""
    widgets = op.create_table(
        "widgets",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("query", sa.String(length=255), nullable=True),
        sa.Column("default_props", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_widgets"),
        sa.UniqueConstraint("name", name="uq_widgets_name"),
    )

    op.create_table(
        "users_has_widgets",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("widget_id", sa.Integer(), nullable=False),
        sa.Column("props", postgresql.JSONB(), nullable=True),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        *_timestamps(),
        sa.ForeignKeyConstraint(
            ["user_id"],
            ["users.id"],
            name="fk_users_has_widgets_user_id_users",
            ondelete="CASCADE",
        ),
        sa.ForeignKeyConstraint(
            ["widget_id"],
            ["widgets.id"],
            name="fk_users_has_widgets_widget_id_widgets",
            ondelete="CASCADE",
        ),
        sa.PrimaryKeyConstraint("id", name="pk_users_has_widgets"),
    )
    op.create_index(
        "ix_users_has_widgets_user_id_position", "users_has_widgets", ["user_id", "position"]
    )

    op.bulk_insert(
        widgets,
        [
            {"name": name, "query": query, "default_props": default_props}
            for name, query, default_props in CATALOG
        ],
    )


def downgrade() -> None:
    """Drop the widget tables."""
    op.drop_index("ix_users_has_widgets_user_id_position", table_name="users_has_widgets")
    op.drop_table("users_has_widgets")
    op.drop_table("widgets")
