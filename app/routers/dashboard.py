"""Dashboard widget layout and dashboard-only statistics routes."""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import RequestContext
from app.dependencies import get_analytics_session, get_database_session, require_user
from app.responses import error_response, success_response
from app.schemas.dashboard import UserWidgetCreate, UserWidgetUpdate, WidgetPositionsUpdate
from app.services.stats_service import DEFAULT_WEEKDAY_WEEKS, StatsService, get_stats_service
from app.services.widgets_service import (
    USER_WIDGET_NOT_FOUND,
    WidgetsService,
    get_widgets_service,
)

router = APIRouter(prefix="/dashboard", tags=["dashboard"])

Context = Annotated[RequestContext, Depends(require_user)]
Database = Annotated[AsyncSession, Depends(get_database_session)]
Analytics = Annotated[AsyncSession, Depends(get_analytics_session)]
Widgets = Annotated[WidgetsService, Depends(get_widgets_service)]


@router.get("/widgets")
async def list_widgets(context: Context, db_session: Database, widgets: Widgets) -> JSONResponse:
    """Catalog of widget types a dashboard can hold."""
    catalog = await widgets.list_widgets(db_session)
    return success_response(data=[widget.to_public_dict() for widget in catalog])


@router.get("/user-widgets")
async def list_user_widgets(
    context: Context, db_session: Database, analytics_session: Analytics, widgets: Widgets
) -> JSONResponse:
    """The caller's widgets in layout order, each with its computed data."""
    placed = await widgets.list_user_widgets(db_session, analytics_session, context.user_id)
    return success_response(data=placed)


@router.post("/user-widget")
async def add_user_widget(
    payload: UserWidgetCreate, context: Context, db_session: Database, widgets: Widgets
) -> JSONResponse:
    row = await widgets.add_user_widget(
        db_session, context.user_id, payload.widget_id, payload.props
    )
    return success_response(data=row.to_public_dict(), status_code=201)


@router.put("/user-widget/{user_widget_id}")
async def update_user_widget(
    user_widget_id: UUID,
    payload: UserWidgetUpdate,
    context: Context,
    db_session: Database,
    widgets: Widgets,
) -> JSONResponse:
    """Replace a placed widget's props."""
    row = await widgets.update_user_widget(
        db_session, context.user_id, user_widget_id, payload.props
    )
    return success_response(data=row.to_public_dict())


@router.delete("/user-widget/{user_widget_id}", status_code=204, response_model=None)
async def delete_user_widget(
    user_widget_id: UUID, context: Context, db_session: Database, widgets: Widgets
) -> Response:
    deleted = await widgets.delete_user_widget(db_session, context.user_id, user_widget_id)
    if not deleted:
        return error_response(status_code=404, error=USER_WIDGET_NOT_FOUND, code="not_found")
    return Response(status_code=204)


@router.put("/user-widgets-position")
async def update_user_widgets_position(
    payload: WidgetPositionsUpdate, context: Context, db_session: Database, widgets: Widgets
) -> JSONResponse:
    """Reorder placed widgets; all-or-nothing."""
    updated = await widgets.update_positions(
        db_session,
        context.user_id,
        [(item.user_widget_id, item.position) for item in payload.widgets],
    )
    return success_response(data={"updatedCount": updated})


@router.get("/todays-activity")
async def todays_activity(
    context: Context,
    analytics_session: Analytics,
    stats_service: Annotated[StatsService, Depends(get_stats_service)],
) -> JSONResponse:
    """Today's merged activity timeline with activity-state shares."""
    activity = await stats_service.get_todays_activity(analytics_session, context.user_id)
    return success_response(data=activity)


@router.get("/most-active-weekday")
async def most_active_weekday(
    context: Context,
    analytics_session: Analytics,
    stats_service: Annotated[StatsService, Depends(get_stats_service)],
    weeks: Annotated[int, Query(ge=1, le=52)] = DEFAULT_WEEKDAY_WEEKS,
) -> JSONResponse:
    """Weekday with the highest average coding hours over recent weeks."""
    summary = await stats_service.get_most_active_weekday(
        analytics_session, context.user_id, weeks=weeks
    )
    return success_response(data=summary)
