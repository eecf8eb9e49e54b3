"""Shared FastAPI dependency helpers."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from dataclasses import dataclass
from datetime import UTC, date, datetime, time, timedelta
from typing import Annotated

import structlog
from fastapi import Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import (
    AuthenticationError,
    AuthMethod,
    AuthorizationError,
    ClientMetadata,
    RefreshRequired,
    RequestContext,
)
from app.core.tokens import CredentialIssuer, InvalidToken, get_credential_issuer
from app.db.session import get_analytics_db_session, get_db_session
from app.models.user import User
from app.services.api_key_service import APIKeyService, get_api_key_service
from app.services.user_service import UserService, get_user_service

ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
API_KEY_HEADER = "x-api-key"
OWNERSHIP_PATH_PARAMS = ("user_id", "id")
DEFAULT_RANGE_DAYS = 30
INVALID_DATE_MESSAGE = "Invalid date format. Use YYYY-MM-DD"

logger = structlog.get_logger(__name__)


async def get_database_session() -> AsyncGenerator[AsyncSession, None]:
    """Expose the request-scoped relational session dependency."""
    async for session in get_db_session():
        yield session


async def get_analytics_session() -> AsyncGenerator[AsyncSession, None]:
    """Expose the request-scoped analytical store session dependency."""
    async for session in get_analytics_db_session():
        yield session


def get_client_metadata(request: Request) -> ClientMetadata:
    """Derive caller IP and device details."""
    return ClientMetadata.from_request(request)


def _extract_bearer_token(request: Request) -> str | None:
    """Extract bearer token from Authorization header."""
    authorization = request.headers.get("authorization", "").strip()
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer":
        return None
    cleaned = token.strip()
    return cleaned or None


def _names_user(value: object, user_id: int) -> bool:
    try:
        return int(str(value)) == user_id
    except ValueError:
        return False


def _enforce_ownership(request: Request, user: User) -> None:
    """Reject requests whose ``user_id``/``id`` path parameter names another user.

    Path values are compared as integers, so ``/users/01`` still belongs to user 1.
    """
    for name in OWNERSHIP_PATH_PARAMS:
        value = request.path_params.get(name)
        if value is not None and not _names_user(value, user.id):
            logger.warning("ownership_mismatch", user_id=user.id, path=request.url.path)
            raise AuthorizationError()


def _build_context(request: Request, user: User, method: AuthMethod) -> RequestContext:
    _enforce_ownership(request, user)
    request.state.user = {"user_id": user.id, "email": user.email}
    return RequestContext(
        user=user,
        auth_method=method,
        client=ClientMetadata.from_request(request),
        refresh_token=request.cookies.get(REFRESH_COOKIE),
    )


async def _user_from_access_token(
    token: str,
    db_session: AsyncSession,
    issuer: CredentialIssuer,
    user_service: UserService,
) -> User:
    try:
        user_id = issuer.verify_access_token(token)
    except InvalidToken as exc:
        raise AuthenticationError(exc.detail, exc.code) from exc
    user = await user_service.get_user_by_id(db_session, user_id)
    if user is None:
        raise AuthenticationError("Invalid token.", "invalid_token")
    return user


async def _authenticate_bearer(
    request: Request,
    db_session: AsyncSession,
    issuer: CredentialIssuer,
    user_service: UserService,
) -> RequestContext:
    token = _extract_bearer_token(request)
    if token is None:
        raise AuthenticationError("Unauthorized", "missing_token")
    user = await _user_from_access_token(token, db_session, issuer, user_service)
    return _build_context(request, user, "bearer")


async def _authenticate_cookie(
    request: Request,
    db_session: AsyncSession,
    issuer: CredentialIssuer,
    user_service: UserService,
) -> RequestContext:
    token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        raise AuthenticationError()
    try:
        user = await _user_from_access_token(token, db_session, issuer, user_service)
    except AuthenticationError:
        if request.cookies.get(REFRESH_COOKIE):
            raise RefreshRequired() from None
        raise AuthenticationError() from None
    return _build_context(request, user, "cookie")


async def _authenticate_api_key(
    request: Request,
    db_session: AsyncSession,
    api_key_service: APIKeyService,
) -> RequestContext:
    raw_key = request.headers.get(API_KEY_HEADER, "").strip()
    user = await api_key_service.validate_api_key(db_session, raw_key)
    if user is None:
        raise AuthenticationError("Invalid API key", "invalid_api_key")
    return _build_context(request, user, "api_key")


async def require_bearer_user(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    issuer: Annotated[CredentialIssuer, Depends(get_credential_issuer)],
    user_service: Annotated[UserService, Depends(get_user_service)],
) -> RequestContext:
    """Authenticate with ``Authorization: Bearer <access token>``."""
    return await _authenticate_bearer(request, db_session, issuer, user_service)


async def require_cookie_user(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    issuer: Annotated[CredentialIssuer, Depends(get_credential_issuer)],
    user_service: Annotated[UserService, Depends(get_user_service)],
) -> RequestContext:
    """Authenticate with the ``access_token`` cookie, redirecting to refresh when stale."""
    return await _authenticate_cookie(request, db_session, issuer, user_service)


async def require_api_key_user(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    issuer: Annotated[CredentialIssuer, Depends(get_credential_issuer)],
    user_service: Annotated[UserService, Depends(get_user_service)],
    api_key_service: Annotated[APIKeyService, Depends(get_api_key_service)],
) -> RequestContext:
    """Authenticate with ``X-API-Key``, falling back to the cookie when absent."""
    if request.headers.get(API_KEY_HEADER):
        return await _authenticate_api_key(request, db_session, api_key_service)
    return await _authenticate_cookie(request, db_session, issuer, user_service)


async def require_user(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    issuer: Annotated[CredentialIssuer, Depends(get_credential_issuer)],
    user_service: Annotated[UserService, Depends(get_user_service)],
    api_key_service: Annotated[APIKeyService, Depends(get_api_key_service)],
) -> RequestContext:
    """Accept any credential: bearer header first, then API key, then cookie."""
    if request.headers.get("authorization"):
        return await _authenticate_bearer(request, db_session, issuer, user_service)
    if request.headers.get(API_KEY_HEADER):
        return await _authenticate_api_key(request, db_session, api_key_service)
    return await _authenticate_cookie(request, db_session, issuer, user_service)


@dataclass(frozen=True)
class DateRange:
    """Inclusive timestamp bounds derived from ``startDate``/``endDate`` query values."""

    start: datetime
    end: datetime


def _parse_day(value: str) -> date:
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError as exc:
        raise HTTPException(
            status_code=400, detail={"detail": INVALID_DATE_MESSAGE, "code": "invalid_date"}
        ) from exc


def get_date_range(
    start_date: Annotated[str | None, Query(alias="startDate")] = None,
    end_date: Annotated[str | None, Query(alias="endDate")] = None,
) -> DateRange:
    """Resolve a YYYY-MM-DD range, defaulting to the last 30 days."""
    end_day = _parse_day(end_date) if end_date else datetime.now(UTC).date()
    start_day = (
        _parse_day(start_date) if start_date else end_day - timedelta(days=DEFAULT_RANGE_DAYS)
    )
    if start_day > end_day:
        raise HTTPException(
            status_code=400,
            detail={"detail": "startDate must not be after endDate", "code": "invalid_date"},
        )
    return DateRange(
        start=datetime.combine(start_day, time.min, tzinfo=UTC),
        end=datetime.combine(end_day, time.max, tzinfo=UTC),
    )


@dataclass(frozen=True)
class OptionalBounds:
    """Explicit window bounds; ``None`` sides fall back to the query's default window."""

    start: datetime | None
    end: datetime | None


def get_optional_bounds(
    start_date: Annotated[str | None, Query(alias="startDate")] = None,
    end_date: Annotated[str | None, Query(alias="endDate")] = None,
) -> OptionalBounds:
    """Parse optional YYYY-MM-DD bounds without applying a default window."""
    start = (
        datetime.combine(_parse_day(start_date), time.min, tzinfo=UTC) if start_date else None
    )
    end = datetime.combine(_parse_day(end_date), time.max, tzinfo=UTC) if end_date else None
    if start is not None and end is not None and start > end:
        raise HTTPException(
            status_code=400,
            detail={"detail": "startDate must not be after endDate", "code": "invalid_date"},
        )
    return OptionalBounds(start=start, end=end)
