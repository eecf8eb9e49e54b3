"""Dashboard widget catalog and per-user widget layout ORM models."""

from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PGUUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, TimestampMixin


class Widget(Base, TimestampMixin):
    """Catalog entry for a dashboard widget type."""

    __tablename__ = "widgets"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    query: Mapped[str | None] = mapped_column(String(255), nullable=True)
    default_props: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)

    def to_public_dict(self) -> dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "query": self.query,
            "defaultProps": self.default_props or {},
        }


class UserWidget(Base, TimestampMixin):
    """A widget placed on one user's dashboard, with its own props and position.

    A user may place the same widget more than once.
    """

    __tablename__ = "users_has_widgets"
    __table_args__ = (Index("ix_users_has_widgets_user_id_position", "user_id", "position"),)

    id: Mapped[UUID] = mapped_column(PGUUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    widget_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("widgets.id", ondelete="CASCADE"), nullable=False
    )
    props: Mapped[dict[str, Any] | None] = mapped_column(JSONB, nullable=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    widget: Mapped[Widget] = relationship(lazy="joined")

    def to_public_dict(self, widget_data: object | None = None) -> dict[str, object]:
        """Serialize the placement joined with its catalog entry."""
        return {
            "id": str(self.id),
            "position": self.position,
            "widgetId": self.widget_id,
            "widgetName": self.widget.name,
            "widgetQuery": self.widget.query,
            "props": self.props or {},
            "created": self.created_at.isoformat() if self.created_at else None,
            "widgetData": widget_data if widget_data is not None else {},
        }
