"""Coding activity statistics routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import RequestContext
from app.dependencies import OptionalBounds, get_analytics_session, get_optional_bounds, require_user
from app.responses import success_response
from app.schemas.stats import Aggregation, PulseFormat, TimeRange, TopEntity
from app.services.stats_service import StatsService, get_stats_service

router = APIRouter(prefix="/stats", tags=["stats"])

Context = Annotated[RequestContext, Depends(require_user)]
Analytics = Annotated[AsyncSession, Depends(get_analytics_session)]
Bounds = Annotated[OptionalBounds, Depends(get_optional_bounds)]
Stats = Annotated[StatsService, Depends(get_stats_service)]


@router.get("/coding-hours")
async def coding_hours(
    context: Context,
    analytics_session: Analytics,
    bounds: Bounds,
    stats_service: Stats,
    aggregation: Annotated[Aggregation, Query()],
) -> JSONResponse:
    """Coding hours per day, week, month, or year, or a single total."""
    rows = await stats_service.get_coding_hours(
        analytics_session, context.user_id, aggregation, bounds.start, bounds.end
    )
    return success_response(data={"codingHours": rows})


@router.get("/coding-time")
async def coding_time(
    context: Context,
    analytics_session: Analytics,
    bounds: Bounds,
    stats_service: Stats,
    time_range: Annotated[TimeRange, Query(alias="timeRange")] = TimeRange.MONTH,
    aggregation: Annotated[Aggregation | None, Query()] = None,
) -> JSONResponse:
    summary = await stats_service.get_coding_time(
        analytics_session,
        context.user_id,
        time_range=time_range,
        start=bounds.start,
        end=bounds.end,
        aggregation=aggregation,
    )
    return success_response(data=summary)


@router.get("/top/{entity}")
async def top_items(
    entity: TopEntity,
    context: Context,
    analytics_session: Analytics,
    bounds: Bounds,
    stats_service: Stats,
    time_range: Annotated[TimeRange, Query(alias="timeRange")] = TimeRange.DAY,
    limit: Annotated[int, Query(ge=1, le=50)] = 5,
) -> JSONResponse:
    """Top languages, editors, projects, or machines by time spent."""
    items = await stats_service.get_top_items(
        analytics_session,
        context.user_id,
        entity,
        time_range=time_range,
        start=bounds.start,
        end=bounds.end,
        limit=limit,
    )
    return success_response(data=items)


@router.get("/top/{entity}/grouped")
async def top_items_grouped(
    entity: TopEntity,
    context: Context,
    analytics_session: Analytics,
    stats_service: Stats,
    time_range: Annotated[TimeRange, Query(alias="timeRange")] = TimeRange.DAY,
) -> JSONResponse:
    """Top items for each of the last seven days, weeks, or months."""
    grouped = await stats_service.get_top_items_grouped_by_time(
        analytics_session, context.user_id, entity, time_range=time_range
    )
    return success_response(data=grouped)


@router.get("/pulses")
async def pulses(
    context: Context,
    analytics_session: Analytics,
    bounds: Bounds,
    stats_service: Stats,
    time_range: Annotated[TimeRange, Query(alias="timeRange")] = TimeRange.DAY,
    response_format: Annotated[PulseFormat, Query(alias="format")] = PulseFormat.DEFAULT,
) -> JSONResponse:
    rows = await stats_service.get_pulses(
        analytics_session,
        context.user_id,
        time_range=time_range,
        start=bounds.start,
        end=bounds.end,
        response_format=response_format,
    )
    return success_response(data={"pulses": rows})


@router.get("/pulse-states")
async def pulse_states(
    context: Context,
    analytics_session: Analytics,
    bounds: Bounds,
    stats_service: Stats,
    time_range: Annotated[TimeRange, Query(alias="timeRange")] = TimeRange.DAY,
) -> JSONResponse:
    """Share of coding, debugging, and other activity states."""
    shares = await stats_service.get_pulse_states(
        analytics_session,
        context.user_id,
        time_range=time_range,
        start=bounds.start,
        end=bounds.end,
    )
    return success_response(data={"states": shares})


@router.get("/projects")
async def projects(
    context: Context,
    analytics_session: Analytics,
    bounds: Bounds,
    stats_service: Stats,
    time_range: Annotated[TimeRange, Query(alias="timeRange")] = TimeRange.MONTH,
) -> JSONResponse:
    rows = await stats_service.get_projects(
        analytics_session,
        context.user_id,
        time_range=time_range,
        start=bounds.start,
        end=bounds.end,
    )
    return success_response(data={"projects": rows})
