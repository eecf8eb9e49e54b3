"""Rate limit status route."""

from __future__ import annotations

import time
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse

from app.config import Settings, get_settings
from app.core.devices import extract_client_ip
from app.middleware.rate_limit import (
    SlidingWindowCounter,
    get_rate_limit_counter,
    limit_for_path,
    rate_limit_key,
)
from app.responses import success_response

router = APIRouter(tags=["rate-limit"])


@router.get("/rate-limit")
async def rate_limit_status(
    request: Request,
    settings: Annotated[Settings, Depends(get_settings)],
    counter: Annotated[SlidingWindowCounter, Depends(get_rate_limit_counter)],
    path: Annotated[str | None, Query(max_length=255)] = None,
) -> JSONResponse:
    """Report the calling client's usage of one path's window.

    Defaults to this route's own window; the current request is already counted.
    ``reset`` is in epoch seconds.
    """
    target = path or request.url.path
    client_ip = extract_client_ip(request)
    limits = settings.rate_limit
    status = counter.status(
        rate_limit_key(target, client_ip),
        limit_for_path(
            target,
            limits.default_requests_per_minute,
            limits.auth_requests_per_minute,
            limits.sync_requests_per_minute,
        ),
    )
    return success_response(
        data={
            "limit": status.limit,
            "remaining": status.remaining,
            "reset": int(time.time()) + status.reset_after_seconds,
            "identifier": f"ip:{client_ip}",
            "path": target,
        }
    )
