"""API key event statistics routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import RequestContext
from app.dependencies import DateRange, get_analytics_session, get_date_range, require_user
from app.responses import success_response
from app.services.audit_sink import AuditSink, get_audit_sink

router = APIRouter(prefix="/api-key-stats", tags=["api-key-stats"])


@router.get("")
async def api_key_stats(
    context: Annotated[RequestContext, Depends(require_user)],
    date_range: Annotated[DateRange, Depends(get_date_range)],
    analytics_session: Annotated[AsyncSession, Depends(get_analytics_session)],
    audit_sink: Annotated[AuditSink, Depends(get_audit_sink)],
) -> JSONResponse:
    stats = await audit_sink.get_api_key_stats(
        analytics_session, context.user_id, date_range.start, date_range.end
    )
    return success_response(data=stats)


@router.get("/recent")
async def recent_api_key_events(
    context: Annotated[RequestContext, Depends(require_user)],
    analytics_session: Annotated[AsyncSession, Depends(get_analytics_session)],
    audit_sink: Annotated[AuditSink, Depends(get_audit_sink)],
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> JSONResponse:
    events = await audit_sink.get_recent_api_key_events(
        analytics_session, context.user_id, limit=limit
    )
    return success_response(data={"events": events})
