"""API key retrieval and rotation routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import RequestContext
from app.dependencies import get_database_session, require_user
from app.responses import success_response
from app.services.api_key_service import APIKeyService, get_api_key_service

router = APIRouter(prefix="/api-keys", tags=["api-keys"])


@router.get("")
async def get_api_key(
    context: Annotated[RequestContext, Depends(require_user)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    api_key_service: Annotated[APIKeyService, Depends(get_api_key_service)],
) -> JSONResponse:
    """Return the caller's key, issuing one on first access."""
    api_key = await api_key_service.get_api_key(db_session, context.user_id)
    if not api_key:
        api_key = await api_key_service.create_api_key(
            db_session, context.user_id, context.client
        )
    return success_response(data={"apiKey": api_key})


@router.put("")
async def regenerate_api_key(
    context: Annotated[RequestContext, Depends(require_user)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    api_key_service: Annotated[APIKeyService, Depends(get_api_key_service)],
) -> JSONResponse:
    """Replace the caller's key; the previous key stops working immediately."""
    api_key = await api_key_service.regenerate_api_key(
        db_session, context.user_id, context.client
    )
    return success_response(data={"apiKey": api_key}, message="API key regenerated successfully")
