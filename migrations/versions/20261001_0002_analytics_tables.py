"""Append-only audit and activity tables."""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "20261001_0002"
down_revision = "20261001_0001"
branch_labels = None
depends_on = None

auth_provider = postgresql.ENUM("google", "github", "local", name="auth_provider")
auth_event_type = postgresql.ENUM(
    "login",
    "logout",
    "token_refresh",
    "failed",
    "session_created",
    "session_refreshed",
    "session_expired",
    "session_revoked",
    name="auth_event_type",
)
api_key_event_type = postgresql.ENUM(
    "created", "regenerated", "revoked", "last_used", name="api_key_event_type"
)
pulse_entity_type = postgresql.ENUM("file", "app", "domain", name="pulse_entity_type")
pulse_activity_state = postgresql.ENUM(
    "coding", "debugging", "reading", name="pulse_activity_state"
)

_ENUMS = (
    auth_provider,
    auth_event_type,
    api_key_event_type,
    pulse_entity_type,
    pulse_activity_state,
)


def _timestamp(name: str) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=False)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
    )


def upgrade() -> None:
    """Create enum types and analytical tables."""
    bind = op.get_bind()
    for enum_type in _ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "auth_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        _timestamp("timestamp"),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("ip_address", sa.String(length=45), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=False),
        sa.Column("country_code", sa.String(length=8), nullable=False),
        sa.Column("city", sa.String(length=100), nullable=False),
        sa.Column("provider", postgresql.ENUM(name="auth_provider", create_type=False), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.Column("session_id", sa.String(length=64), nullable=False),
        sa.Column(
            "event_type", postgresql.ENUM(name="auth_event_type", create_type=False), nullable=False
        ),
        sa.Column("device_name", sa.String(length=255), nullable=False),
        sa.Column("device_type", sa.String(length=50), nullable=False),
        sa.Column("browser", sa.String(length=100), nullable=False),
        sa.Column("os", sa.String(length=100), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_auth_logs"),
    )
    op.create_index("ix_auth_logs_user_id_timestamp", "auth_logs", ["user_id", "timestamp"])
    op.create_index("ix_auth_logs_event_type_timestamp", "auth_logs", ["event_type", "timestamp"])

    op.create_table(
        "api_key_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        _timestamp("timestamp"),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column(
            "event_type",
            postgresql.ENUM(name="api_key_event_type", create_type=False),
            nullable=False,
        ),
        sa.Column("ip_address", sa.String(length=45), nullable=False),
        sa.Column("user_agent", sa.Text(), nullable=False),
        sa.Column("country_code", sa.String(length=8), nullable=False),
        sa.Column("city", sa.String(length=100), nullable=False),
        sa.Column("device_name", sa.String(length=255), nullable=False),
        sa.Column("device_type", sa.String(length=50), nullable=False),
        sa.Column("browser", sa.String(length=100), nullable=False),
        sa.Column("os", sa.String(length=100), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_api_key_events"),
    )
    op.create_index(
        "ix_api_key_events_user_id_timestamp", "api_key_events", ["user_id", "timestamp"]
    )

    op.create_table(
        "aggregated_pulses",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("entity", sa.Text(), nullable=False),
        sa.Column(
            "type", postgresql.ENUM(name="pulse_entity_type", create_type=False), nullable=False
        ),
        sa.Column(
            "state", postgresql.ENUM(name="pulse_activity_state", create_type=False), nullable=False
        ),
        _timestamp("start_time"),
        _timestamp("end_time"),
        sa.Column("project", sa.String(length=255), nullable=False),
        sa.Column("branch", sa.String(length=255), nullable=False),
        sa.Column("language", sa.String(length=100), nullable=False),
        sa.Column("dependencies", sa.Text(), nullable=False),
        sa.Column("machine_name_id", sa.String(length=255), nullable=False),
        sa.Column("line_additions", sa.Integer(), nullable=False),
        sa.Column("line_deletions", sa.Integer(), nullable=False),
        sa.Column("lines", sa.Integer(), nullable=False),
        sa.Column("is_write", sa.Boolean(), nullable=False),
        sa.Column("timezone", sa.String(length=64), nullable=False),
        _created_at(),
        sa.PrimaryKeyConstraint("id", name="pk_aggregated_pulses"),
    )
    op.create_index(
        "ix_aggregated_pulses_user_id_start_time", "aggregated_pulses", ["user_id", "start_time"]
    )

    op.create_table(
        "sync_events",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        _timestamp("timestamp"),
        sa.Column("machine_name_id", sa.String(length=255), nullable=False),
        sa.Column("entries_count", sa.Integer(), nullable=False),
        sa.Column("sync_duration_ms", sa.BigInteger(), nullable=False),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column("error_message", sa.Text(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_sync_events"),
    )
    op.create_index("ix_sync_events_user_id_timestamp", "sync_events", ["user_id", "timestamp"])


def downgrade() -> None:
    """Drop analytical tables and their enum types."""
    op.drop_index("ix_sync_events_user_id_timestamp", table_name="sync_events")
    op.drop_table("sync_events")
    op.drop_index("ix_aggregated_pulses_user_id_start_time", table_name="aggregated_pulses")
    op.drop_table("aggregated_pulses")
    op.drop_index("ix_api_key_events_user_id_timestamp", table_name="api_key_events")
    op.drop_table("api_key_events")
    op.drop_index("ix_auth_logs_event_type_timestamp", table_name="auth_logs")
    op.drop_index("ix_auth_logs_user_id_timestamp", table_name="auth_logs")
    op.drop_table("auth_logs")
    bind = op.get_bind()
    for enum_type in reversed(_ENUMS):
        enum_type.drop(bind, checkfirst=True)
