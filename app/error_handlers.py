"""Global exception handlers enforcing the response envelope."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.core.context import AuthenticationError, AuthorizationError, RefreshRequired
from app.core.devices import extract_client_ip
from app.core.tokens import InvalidToken
from app.responses import error_response
from app.services.api_key_service import APIKeyServiceError
from app.services.oauth_service import OAuthServiceError
from app.services.sync_service import SyncServiceError
from app.services.widgets_service import WidgetsServiceError

DOMAIN_ERRORS: tuple[type[Exception], ...] = (
    InvalidToken,
    AuthenticationError,
    AuthorizationError,
    APIKeyServiceError,
    OAuthServiceError,
    SyncServiceError,
    WidgetsServiceError,
)

_DEFAULT_ERROR_BY_STATUS: dict[int, str] = {
    400: "Bad request",
    401: "Authentication required",
    403: "Forbidden",
    404: "Not found",
    405: "Method not allowed",
    429: "Rate limit exceeded",
}

logger = structlog.get_logger(__name__)


def _extract_detail_and_code(detail: Any, status_code: int) -> tuple[str, str | None]:
    """Normalize exception detail payload into message and optional code."""
    if isinstance(detail, dict):
        raw_detail = detail.get("detail", _DEFAULT_ERROR_BY_STATUS.get(status_code, "Error"))
        raw_code = detail.get("code")
        return str(raw_detail), str(raw_code) if raw_code is not None else None
    if isinstance(detail, str) and detail:
        return detail, None
    return _DEFAULT_ERROR_BY_STATUS.get(status_code, "Request failed"), None


def _sanitize_detail(detail: str, status_code: int, environment: str) -> str:
    """Hide internal failure details outside development."""
    if environment != "development" and status_code >= 500:
        return "Internal server error"
    return detail


def _describe_validation_error(exc: RequestValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid request"
    first = errors[0]
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query"))
    message = first.get("msg", "validation error")
    return f"Invalid request: {location}: {message}" if location else f"Invalid request: {message}"


def _log_auth_failure(request: Request, status_code: int, detail: str, code: str | None) -> None:
    """Emit a WARNING for rejected credentials and ownership mismatches."""
    if status_code not in (401, 403):
        return
    user_state = getattr(request.state, "user", None)
    logger.warning(
        "auth_failure",
        user_id=user_state.get("user_id") if isinstance(user_state, dict) else None,
        ip_address=extract_client_ip(request),
        status_code=status_code,
        code=code,
        detail=detail,
        path=request.url.path,
        method=request.method,
    )


def register_exception_handlers(app: FastAPI, environment: str) -> None:
    """Register global exception handlers enforcing the envelope contract."""

    @app.exception_handler(RefreshRequired)
    async def handle_refresh_required(request: Request, exc: RefreshRequired) -> Response:
        """Send callers with a stale access cookie to the refresh endpoint."""
        logger.info("access_cookie_stale", path=request.url.path)
        return RedirectResponse(url=exc.location, status_code=exc.status_code)

    for error_type in DOMAIN_ERRORS:

        @app.exception_handler(error_type)
        async def handle_domain_error(request: Request, exc: Exception) -> JSONResponse:
            """Map domain errors carrying (detail, code, status_code) to the envelope."""
            status_code = int(getattr(exc, "status_code", 500))
            detail = _sanitize_detail(str(getattr(exc, "detail", exc)), status_code, environment)
            code = getattr(exc, "code", None)
            _log_auth_failure(request, status_code, detail, code)
            return error_response(status_code=status_code, error=detail, code=code)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        """Normalize framework HTTP exceptions to the envelope."""
        detail, code = _extract_detail_and_code(exc.detail, exc.status_code)
        _log_auth_failure(request, exc.status_code, detail, code)
        response = error_response(status_code=exc.status_code, error=detail, code=code)
        for header, value in (exc.headers or {}).items():
            response.headers[header] = value
        return response

    @app.exception_handler(RequestValidationError)
    async def handle_validation_exception(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        """Map request validation errors to a readable 400."""
        return error_response(
            status_code=400, error=_describe_validation_error(exc), code="validation_error"
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_exception(request: Request, exc: Exception) -> JSONResponse:
        """Mask internal errors and enforce the envelope."""
        logger.error(
            "unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=exc,
        )
        detail = _sanitize_detail(str(exc), 500, environment)
        return error_response(status_code=500, error=detail, code="internal_error")
