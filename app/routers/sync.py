"""Editor activity sync route."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import RequestContext
from app.dependencies import get_analytics_session, require_user
from app.responses import error_response, success_response
from app.schemas.sync import SyncRequest
from app.services.sync_service import SyncService, get_sync_service

router = APIRouter(tags=["sync"])


@router.post("/sync")
async def sync(
    payload: SyncRequest,
    context: Annotated[RequestContext, Depends(require_user)],
    analytics_session: Annotated[AsyncSession, Depends(get_analytics_session)],
    sync_service: Annotated[SyncService, Depends(get_sync_service)],
) -> JSONResponse:
    """Store a batch of time entries; invalid entries are reported, not stored.

    Responds 200 when every entry is stored, 207 when only some are, and 400 when
    none are. Storage failures surface as ``SyncServiceError`` (500).
    """
    result = await sync_service.sync(analytics_session, context.user_id, payload)
    data = {"syncedCount": result.synced_count, "errors": result.errors}
    if result.errors and result.synced_count == 0:
        return error_response(
            status_code=400, error="No valid time entries.", code="invalid_entries", data=data
        )
    message = f"Successfully synchronized {result.synced_count} time entries."
    status_code = 207 if result.errors else 200
    return success_response(data=data, message=message, status_code=status_code)
