"""Device session management routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import RequestContext
from app.core.sessions import SessionStore, get_session_store
from app.dependencies import (
    DateRange,
    get_analytics_session,
    get_database_session,
    get_date_range,
    require_user,
)
from app.models.analytics import SESSION_EVENT_TYPES
from app.responses import error_response, success_response
from app.services.audit_sink import AuditSink, get_audit_sink
from app.services.auth_service import AuthService, get_auth_service

router = APIRouter(prefix="/sessions", tags=["sessions"])


@router.get("")
async def list_sessions(
    context: Annotated[RequestContext, Depends(require_user)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    session_store: Annotated[SessionStore, Depends(get_session_store)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> JSONResponse:
    """List the caller's active device sessions, flagging the current one."""
    current_id = await auth_service.resolve_session_id(db_session, context.refresh_token)
    sessions = await session_store.list_active_sessions(db_session, context.user_id)
    return success_response(
        data={
            "sessions": [session.to_public_dict(current_id) for session in sessions],
            "currentSession": current_id,
        }
    )


@router.get("/stats")
async def session_stats(
    context: Annotated[RequestContext, Depends(require_user)],
    date_range: Annotated[DateRange, Depends(get_date_range)],
    analytics_session: Annotated[AsyncSession, Depends(get_analytics_session)],
    audit_sink: Annotated[AuditSink, Depends(get_audit_sink)],
) -> JSONResponse:
    """Session lifecycle counts per day and event type."""
    stats = await audit_sink.get_session_stats(
        analytics_session, context.user_id, date_range.start, date_range.end
    )
    return success_response(data=stats)


@router.get("/recent")
async def recent_session_events(
    context: Annotated[RequestContext, Depends(require_user)],
    analytics_session: Annotated[AsyncSession, Depends(get_analytics_session)],
    audit_sink: Annotated[AuditSink, Depends(get_audit_sink)],
    limit: Annotated[int, Query(ge=1, le=100)] = 10,
) -> JSONResponse:
    """Most recent session lifecycle events."""
    events = await audit_sink.get_recent_events(
        analytics_session, context.user_id, limit=limit, event_types=SESSION_EVENT_TYPES
    )
    return success_response(data={"events": events})


@router.delete("/{session_id}")
async def revoke_session(
    session_id: str,
    context: Annotated[RequestContext, Depends(require_user)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> JSONResponse:
    """Revoke one of the caller's other sessions."""
    current_id = await auth_service.resolve_session_id(db_session, context.refresh_token)
    if current_id is not None and current_id == session_id:
        return error_response(
            status_code=400,
            error="Cannot revoke the current session. Use the logout endpoint instead.",
            code="current_session",
        )
    revoked = await auth_service.revoke_session(
        db_session, context.user, session_id, context.client
    )
    if not revoked:
        return error_response(
            status_code=404, error="Session not found or not owned by you", code="not_found"
        )
    return success_response(message="Session revoked successfully")


@router.delete("")
async def revoke_other_sessions(
    context: Annotated[RequestContext, Depends(require_user)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
) -> JSONResponse:
    """Revoke every active session except the caller's own."""
    current_id = await auth_service.resolve_session_id(db_session, context.refresh_token)
    if current_id is None:
        return error_response(status_code=400, error="No active session found", code="no_session")
    revoked_count = await auth_service.revoke_other_sessions(
        db_session, context.user, current_id, context.client
    )
    return success_response(
        data={"revokedCount": revoked_count},
        message=f"{revoked_count} sessions revoked successfully",
    )
