"""Dashboard widget catalog, per-user layout, and widget data resolution."""

from __future__ import annotations

from collections.abc import Sequence
from functools import lru_cache
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.widget import UserWidget, Widget
from app.schemas.stats import TimeRange, TopEntity
from app.services.stats_service import DEFAULT_WEEKDAY_WEEKS, StatsService, get_stats_service

logger = structlog.get_logger(__name__)

DEFAULT_WIDGET_TIME_RANGE = TimeRange.WEEK
DEFAULT_WIDGET_ITEM = TopEntity.LANGUAGES
USER_WIDGET_NOT_FOUND = "User widget not found"


class WidgetsServiceError(Exception):
    """Raised for widget catalog and layout failures."""

    def __init__(self, detail: str, code: str, status_code: int) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code


class WidgetsService:
    """Manage the widget catalog and each user's dashboard layout.

    Placed widgets carry free-form ``props``. A widget whose catalog entry names a
    stats query gets that query's result as ``widgetData``, computed with
    ``timeRange``/``item``/``weeks`` taken from its props.
    """

    def __init__(self, stats_service: StatsService) -> None:
        self._stats = stats_service

    async def list_widgets(self, db_session: AsyncSession) -> list[Widget]:
        """Return the whole catalog ordered by id."""
        result = await db_session.execute(select(Widget).order_by(Widget.id))
        return list(result.scalars().all())

    async def list_user_widgets(
        self, db_session: AsyncSession, analytics_session: AsyncSession, user_id: int
    ) -> list[dict[str, Any]]:
        """Return the caller's widgets by position, each with its resolved data."""
        result = await db_session.execute(
            select(UserWidget)
            .where(UserWidget.user_id == user_id)
            .order_by(UserWidget.position, UserWidget.created_at)
        )
        placed = result.scalars().all()
        return [
            row.to_public_dict(
                await self.widget_data(analytics_session, user_id, row.widget.query, row.props)
            )
            for row in placed
        ]

    async def add_user_widget(
        self,
        db_session: AsyncSession,
        user_id: int,
        widget_id: int,
        props: dict[str, Any] | None = None,
    ) -> UserWidget:
        """Append a catalog widget to the end of the caller's layout.

        Without explicit ``props`` the catalog defaults are copied.
        """
        widget = await db_session.get(Widget, widget_id)
        if widget is None:
            raise WidgetsServiceError("Widget not found", "widget_not_found", 404)
        last_position = await db_session.scalar(
            select(func.max(UserWidget.position)).where(UserWidget.user_id == user_id)
        )
        row = UserWidget(
            user_id=user_id,
            widget=widget,
            props=props if props is not None else dict(widget.default_props or {}),
            position=0 if last_position is None else last_position + 1,
        )
        db_session.add(row)
        await self._commit(db_session)
        await db_session.refresh(row)
        logger.info("user_widget_added", user_id=user_id, widget=widget.name, position=row.position)
        return row

    async def update_user_widget(
        self,
        db_session: AsyncSession,
        user_id: int,
        user_widget_id: UUID,
        props: dict[str, Any],
    ) -> UserWidget:
        """Replace the props of one of the caller's widgets."""
        result = await db_session.execute(
            select(UserWidget).where(
                UserWidget.id == user_widget_id, UserWidget.user_id == user_id
            )
        )
        row = result.scalar_one_or_none()
        if row is None:
            raise WidgetsServiceError(USER_WIDGET_NOT_FOUND, "not_found", 404)
        row.props = props
        await self._commit(db_session)
        await db_session.refresh(row)
        return row

    async def delete_user_widget(
        self, db_session: AsyncSession, user_id: int, user_widget_id: UUID
    ) -> bool:
        """Remove one of the caller's widgets; False when it is not theirs or absent."""
        try:
            result = await db_session.execute(
                delete(UserWidget).where(
                    UserWidget.id == user_widget_id, UserWidget.user_id == user_id
                )
            )
        except Exception:
            await db_session.rollback()
            raise
        await db_session.commit()
        return bool(result.rowcount)

    async def update_positions(
        self,
        db_session: AsyncSession,
        user_id: int,
        positions: Sequence[tuple[UUID, int]],
    ) -> int:
        """Move several of the caller's widgets in one transaction.

        Nothing is changed when any id does not belong to the caller.
        """
        updated = 0
        try:
            for user_widget_id, position in positions:
                result = await db_session.execute(
                    update(UserWidget)
                    .where(UserWidget.id == user_widget_id, UserWidget.user_id == user_id)
                    .values(position=position, updated_at=func.now())
                )
                updated += int(result.rowcount or 0)
        except Exception:
            await db_session.rollback()
            raise
        if updated != len(positions):
            await db_session.rollback()
            raise WidgetsServiceError(USER_WIDGET_NOT_FOUND, "not_found", 404)
        await db_session.commit()
        return updated

    async def widget_data(
        self,
        analytics_session: AsyncSession,
        user_id: int,
        query: str | None,
        props: dict[str, Any] | None,
    ) -> Any:
        """Run the stats query a widget is bound to; ``{}`` when it has none."""
        if not query:
            return {}
        props = props or {}
        try:
            time_range = TimeRange(props.get("timeRange", DEFAULT_WIDGET_TIME_RANGE))
            if query == "coding_time":
                return await self._stats.get_coding_time(
                    analytics_session, user_id, time_range=time_range
                )
            if query == "todays_activity":
                return await self._stats.get_todays_activity(analytics_session, user_id)
            if query == "most_active_weekday":
                weeks = int(props.get("weeks", DEFAULT_WEEKDAY_WEEKS))
                if weeks < 1:
                    raise ValueError("weeks must be positive")
                return await self._stats.get_most_active_weekday(
                    analytics_session, user_id, weeks=weeks
                )
            if query == "top_items":
                return await self._stats.get_top_items(
                    analytics_session,
                    user_id,
                    TopEntity(props.get("item", DEFAULT_WIDGET_ITEM)),
                    time_range=time_range,
                )
            if query == "top_items_grouped_by_time":
                return await self._stats.get_top_items_grouped_by_time(
                    analytics_session,
                    user_id,
                    TopEntity(props.get("item", DEFAULT_WIDGET_ITEM)),
                    time_range=time_range,
                )
        except ValueError as exc:
            logger.warning("widget_props_invalid", user_id=user_id, query=query, error=str(exc))
            return {}
        logger.warning("widget_query_unavailable", user_id=user_id, query=query)
        return {}

    @staticmethod
    async def _commit(db_session: AsyncSession) -> None:
        try:
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise


@lru_cache
def get_widgets_service() -> WidgetsService:
    """Create and cache the widgets service."""
    return WidgetsService(stats_service=get_stats_service())
