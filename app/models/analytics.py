"""Append-only analytical store ORM models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, Text, func
from sqlalchemy import Enum as SAEnum
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


class AuthProvider(str, Enum):
    """Identity providers recorded on authentication events."""

    GOOGLE = "google"
    GITHUB = "github"
    LOCAL = "local"


class AuthEventType(str, Enum):
    """Authentication and session lifecycle event tags."""

    LOGIN = "login"
    LOGOUT = "logout"
    TOKEN_REFRESH = "token_refresh"
    FAILED = "failed"
    SESSION_CREATED = "session_created"
    SESSION_REFRESHED = "session_refreshed"
    SESSION_EXPIRED = "session_expired"
    SESSION_REVOKED = "session_revoked"


LOGIN_EVENT_TYPES = (
    AuthEventType.LOGIN,
    AuthEventType.LOGOUT,
    AuthEventType.TOKEN_REFRESH,
    AuthEventType.FAILED,
)
SESSION_EVENT_TYPES = (
    AuthEventType.SESSION_CREATED,
    AuthEventType.SESSION_REFRESHED,
    AuthEventType.SESSION_EXPIRED,
    AuthEventType.SESSION_REVOKED,
)


class ApiKeyEventType(str, Enum):
    """API key lifecycle event tags."""

    CREATED = "created"
    REGENERATED = "regenerated"
    REVOKED = "revoked"
    LAST_USED = "last_used"


class EntityType(str, Enum):
    """Kinds of entity an editor pulse can point at."""

    FILE = "file"
    APP = "app"
    DOMAIN = "domain"


class ActivityState(str, Enum):
    """Editor activity states."""

    CODING = "coding"
    DEBUGGING = "debugging"
    READING = "reading"


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    """Store enum values instead of enum member names."""
    return [member.value for member in enum_cls]


class AuthLog(Base):
    """Immutable authentication or session lifecycle fact."""

    __tablename__ = "auth_logs"
    __table_args__ = (
        Index("ix_auth_logs_user_id_timestamp", "user_id", "timestamp"),
        Index("ix_auth_logs_event_type_timestamp", "event_type", "timestamp"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    email: Mapped[str] = mapped_column(String(320), nullable=False, default="")
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False, default="unknown")
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="")
    country_code: Mapped[str] = mapped_column(String(8), nullable=False, default="UN")
    city: Mapped[str] = mapped_column(String(100), nullable=False, default="Unknown")
    provider: Mapped[AuthProvider] = mapped_column(
        SAEnum(AuthProvider, name="auth_provider", values_callable=_enum_values),
        nullable=False,
    )
    error_message: Mapped[str] = mapped_column(Text, nullable=False, default="")
    session_id: Mapped[str] = mapped_column(String(64), nullable=False, default="")
    event_type: Mapped[AuthEventType] = mapped_column(
        SAEnum(AuthEventType, name="auth_event_type", values_callable=_enum_values),
        nullable=False,
    )
    device_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    device_type: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    browser: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    os: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class ApiKeyEventLog(Base):
    """Immutable API key lifecycle fact."""

    __tablename__ = "api_key_events"
    __table_args__ = (Index("ix_api_key_events_user_id_timestamp", "user_id", "timestamp"),)

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    event_type: Mapped[ApiKeyEventType] = mapped_column(
        SAEnum(ApiKeyEventType, name="api_key_event_type", values_callable=_enum_values),
        nullable=False,
    )
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False, default="unknown")
    user_agent: Mapped[str] = mapped_column(Text, nullable=False, default="")
    country_code: Mapped[str] = mapped_column(String(8), nullable=False, default="")
    city: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    device_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    device_type: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    browser: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    os: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class AggregatedPulse(Base):
    """One editor activity interval synchronized by a client."""

    __tablename__ = "aggregated_pulses"
    __table_args__ = (
        Index("ix_aggregated_pulses_user_id_start_time", "user_id", "start_time"),
    )

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    entity: Mapped[str] = mapped_column(Text, nullable=False)
    type: Mapped[EntityType] = mapped_column(
        SAEnum(EntityType, name="pulse_entity_type", values_callable=_enum_values),
        nullable=False,
    )
    state: Mapped[ActivityState] = mapped_column(
        SAEnum(ActivityState, name="pulse_activity_state", values_callable=_enum_values),
        nullable=False,
    )
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    project: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    branch: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    language: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    dependencies: Mapped[str] = mapped_column(Text, nullable=False, default="")
    machine_name_id: Mapped[str] = mapped_column(String(255), nullable=False)
    line_additions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    line_deletions: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lines: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_write: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    timezone: Mapped[str] = mapped_column(String(64), nullable=False, default="UTC")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )


class SyncEventLog(Base):
    """Outcome of one client synchronization request."""

    __tablename__ = "sync_events"
    __table_args__ = (Index("ix_sync_events_user_id_timestamp", "user_id", "timestamp"),)

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    machine_name_id: Mapped[str] = mapped_column(String(255), nullable=False, default="server")
    entries_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    sync_duration_ms: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False)
    error_message: Mapped[str] = mapped_column(Text, nullable=False, default="")
