"""Google sign-in, token refresh, logout, and profile routes."""

from __future__ import annotations

from typing import Annotated

import structlog
from fastapi import APIRouter, Depends, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings, get_settings
from app.core.context import ClientMetadata, RequestContext
from app.core.tokens import InvalidToken
from app.dependencies import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    get_client_metadata,
    get_database_session,
    require_cookie_user,
)
from app.models.analytics import AuthEventType, AuthProvider
from app.responses import error_response, success_response
from app.services.audit_sink import AuditSink, AuthEvent, get_audit_sink
from app.services.auth_service import AuthService, get_auth_service
from app.services.oauth_service import OAuthService, OAuthServiceError, get_oauth_service

router = APIRouter(prefix="/auth", tags=["auth"])
logger = structlog.get_logger(__name__)


def _frontend_url(settings: Settings, path: str) -> str:
    return f"{str(settings.app.frontend_url).rstrip('/')}{path}"


def set_auth_cookies(
    response: Response,
    settings: Settings,
    access_token: str,
    refresh_token: str | None = None,
) -> None:
    """Attach httpOnly, SameSite=Lax credential cookies."""
    response.set_cookie(
        ACCESS_COOKIE,
        access_token,
        max_age=settings.jwt.access_token_ttl_seconds,
        httponly=True,
        secure=settings.app.cookie_secure,
        samesite="lax",
        path="/",
    )
    if refresh_token is not None:
        response.set_cookie(
            REFRESH_COOKIE,
            refresh_token,
            max_age=settings.jwt.refresh_token_ttl_seconds,
            httponly=True,
            secure=settings.app.cookie_secure,
            samesite="lax",
            path="/",
        )


def clear_auth_cookies(response: Response, settings: Settings) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(
            name, path="/", httponly=True, secure=settings.app.cookie_secure, samesite="lax"
        )


@router.get("/google")
async def google_login(
    oauth_service: Annotated[OAuthService, Depends(get_oauth_service)],
) -> Response:
    """Redirect to the Google consent screen."""
    try:
        authorization_url = await oauth_service.build_google_login_url()
    except OAuthServiceError as exc:
        return error_response(status_code=exc.status_code, error=exc.detail, code=exc.code)
    return RedirectResponse(url=authorization_url, status_code=302)


@router.get("/google/callback")
async def google_callback(
    state: Annotated[str, Query(min_length=8)],
    code: Annotated[str, Query(min_length=1)],
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    client: Annotated[ClientMetadata, Depends(get_client_metadata)],
    oauth_service: Annotated[OAuthService, Depends(get_oauth_service)],
    audit_sink: Annotated[AuditSink, Depends(get_audit_sink)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> Response:
    """Complete Google sign-in, set credential cookies, and return to the frontend."""
    try:
        issued = await oauth_service.complete_google_callback(
            db_session=db_session, state=state, code=code, client=client
        )
    except OAuthServiceError as exc:
        audit_sink.record(
            AuthEvent(
                user_id=0,
                email="unknown",
                event_type=AuthEventType.FAILED,
                success=False,
                provider=AuthProvider.GOOGLE,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                device=client.device,
                error_message=exc.detail,
            )
        )
        return RedirectResponse(
            url=_frontend_url(settings, f"/auth?error={exc.code}"), status_code=302
        )

    response = RedirectResponse(
        url=_frontend_url(settings, "/auth/callback?success=true"), status_code=302
    )
    set_auth_cookies(response, settings, issued.access_token, issued.refresh_token)
    return response


@router.api_route("/refresh-token", methods=["GET", "POST"])
async def refresh_token(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    client: Annotated[ClientMetadata, Depends(get_client_metadata)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> JSONResponse:
    """Mint a new access token from the refresh cookie."""
    raw_refresh = request.cookies.get(REFRESH_COOKIE)
    if not raw_refresh:
        logger.warning("refresh_missing_cookie", ip_address=client.ip_address)
        return error_response(status_code=401, error="Refresh token not found", code="missing_token")
    try:
        refreshed = await auth_service.refresh(db_session, raw_refresh, client)
    except InvalidToken as exc:
        return error_response(status_code=401, error="Invalid refresh token", code=exc.code)

    response = success_response(data={"apiKey": refreshed.user.api_key})
    set_auth_cookies(response, settings, refreshed.access_token)
    return response


@router.post("/logout")
async def logout(
    request: Request,
    db_session: Annotated[AsyncSession, Depends(get_database_session)],
    client: Annotated[ClientMetadata, Depends(get_client_metadata)],
    auth_service: Annotated[AuthService, Depends(get_auth_service)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> JSONResponse:
    """Revoke the current session when it still resolves and clear cookies."""
    await auth_service.logout(db_session, request.cookies.get(REFRESH_COOKIE), client)
    response = success_response(message="Logged out successfully")
    clear_auth_cookies(response, settings)
    return response


@router.get("/me")
async def me(
    context: Annotated[RequestContext, Depends(require_cookie_user)],
) -> JSONResponse:
    """Return the signed-in user's profile and API key."""
    user = context.user
    return success_response(data={"user": {**user.to_public_dict(), "apiKey": user.api_key}})

