"""User profile routes guarded by path ownership."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from app.core.context import RequestContext
from app.dependencies import require_user
from app.responses import success_response

router = APIRouter(prefix="/users", tags=["users"])


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    context: Annotated[RequestContext, Depends(require_user)],
) -> JSONResponse:
    """Return the profile of ``user_id``; callers may only read their own."""
    return success_response(data={"user": context.user.to_public_dict()})
