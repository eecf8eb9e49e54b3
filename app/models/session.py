"""Device session ORM model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base

if TYPE_CHECKING:
    from app.models.user import User


class UserSession(Base):
    """One authenticated device or browser instance belonging to a user."""

    __tablename__ = "user_sessions"
    __table_args__ = (
        Index("ix_user_sessions_user_id_is_revoked", "user_id", "is_revoked"),
        Index("ix_user_sessions_refresh_token", "refresh_token"),
        Index("ix_user_sessions_expires_at", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    refresh_token: Mapped[str] = mapped_column(String(255), nullable=False)
    device_name: Mapped[str] = mapped_column(String(255), nullable=False, default="Unknown device")
    device_type: Mapped[str] = mapped_column(String(50), nullable=False, default="Unknown")
    browser: Mapped[str] = mapped_column(String(100), nullable=False, default="Unknown")
    os: Mapped[str] = mapped_column(String(100), nullable=False, default="Unknown")
    ip_address: Mapped[str] = mapped_column(String(45), nullable=False, default="unknown")
    last_active: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_revoked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )

    user: Mapped[User] = relationship(back_populates="sessions")

    def is_active(self, now: datetime) -> bool:
        """Return True when the session is neither revoked nor expired."""
        return not self.is_revoked and now < self.expires_at

    def to_public_dict(self, current_session_id: str | None = None) -> dict[str, object]:
        """Serialize session metadata for the sessions listing."""
        return {
            "id": self.id,
            "deviceName": self.device_name,
            "deviceType": self.device_type,
            "browser": self.browser,
            "os": self.os,
            "ipAddress": self.ip_address,
            "lastActive": self.last_active.isoformat() if self.last_active else None,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "expiresAt": self.expires_at.isoformat(),
            "isCurrent": current_session_id is not None and self.id == current_session_id,
        }
