"""Structured request logging middleware with credential redaction."""

from __future__ import annotations

from time import perf_counter
from typing import Any

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.core.devices import extract_client_ip

SENSITIVE_KEYS = {
    "access_token",
    "api_key",
    "apikey",
    "authorization",
    "code",
    "cookie",
    "refresh_token",
    "set-cookie",
    "state",
    "token",
    "x-api-key",
}
REDACTED = "***REDACTED***"

logger = structlog.get_logger(__name__)


def _is_sensitive_key(key: str) -> bool:
    """Return True when key likely carries credential material."""
    normalized = key.lower().replace("-", "_")
    if normalized in SENSITIVE_KEYS:
        return True
    return "token" in normalized or "secret" in normalized or "api_key" in normalized


def redact(values: dict[str, Any]) -> dict[str, Any]:
    """Redact credential values from a (possibly nested) mapping."""
    redacted: dict[str, Any] = {}
    for key, value in values.items():
        if _is_sensitive_key(key):
            redacted[key] = REDACTED
        elif isinstance(value, dict):
            redacted[key] = redact(value)
        elif isinstance(value, list):
            redacted[key] = [redact(item) if isinstance(item, dict) else item for item in value]
        else:
            redacted[key] = value
    return redacted


def _user_id(request: Request) -> Any:
    user_state = getattr(request.state, "user", None)
    return user_state.get("user_id") if isinstance(user_state, dict) else None


class LoggingMiddleware(BaseHTTPMiddleware):
    """Emit one structured ``request_completed`` line per request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        """Log completion metadata for each request."""
        start = perf_counter()
        fields: dict[str, Any] = {
            "method": request.method,
            "path": request.url.path,
            "query_params": redact(dict(request.query_params.items())),
            "client_ip": extract_client_ip(request),
            "user_agent": request.headers.get("user-agent", ""),
        }

        try:
            response = await call_next(request)
        except Exception:
            logger.exception(
                "request_completed",
                status_code=500,
                duration_ms=round((perf_counter() - start) * 1000, 2),
                user_id=_user_id(request),
                **fields,
            )
            raise

        event_logger = logger.warning if response.status_code >= 400 else logger.info
        event_logger(
            "request_completed",
            status_code=response.status_code,
            duration_ms=round((perf_counter() - start) * 1000, 2),
            user_id=_user_id(request),
            **fields,
        )
        return response
