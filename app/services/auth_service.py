"""Session-bound credential issuance, refresh, and logout orchestration."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.context import ClientMetadata
from app.core.sessions import SessionStore, get_session_store
from app.core.tokens import CredentialIssuer, InvalidToken, get_credential_issuer
from app.models.analytics import AuthEventType, AuthProvider
from app.models.user import User
from app.services.audit_sink import AuditSink, AuthEvent, get_audit_sink
from app.services.user_service import UserService, get_user_service

BULK_REVOCATION_ID = "bulk-revocation"

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class IssuedCredentials:
    """Access/refresh pair bound to a device session."""

    access_token: str
    refresh_token: str
    session_id: str
    reused_session: bool


@dataclass(frozen=True)
class RefreshedAccess:
    """New access token minted from a valid refresh credential."""

    access_token: str
    user: User
    session_id: str


class AuthService:
    """Coordinates the credential issuer, session store, and audit sink."""

    def __init__(
        self,
        issuer: CredentialIssuer,
        session_store: SessionStore,
        audit_sink: AuditSink,
        user_service: UserService,
    ) -> None:
        self._issuer = issuer
        self._session_store = session_store
        self._audit_sink = audit_sink
        self._user_service = user_service

    async def issue_session_tokens(
        self,
        db_session: AsyncSession,
        user: User,
        client: ClientMetadata,
        provider: AuthProvider = AuthProvider.GOOGLE,
    ) -> IssuedCredentials:
        """Mint a token pair, reusing the caller's device session when one matches."""
        access_token = self._issuer.issue_access_token(user)
        refresh = self._issuer.issue_refresh_token()
        expires_at = datetime.now(UTC) + timedelta(seconds=self._issuer.refresh_token_ttl_seconds)
        device = client.device

        existing = await self._session_store.find_existing_session(
            db_session,
            user_id=user.id,
            browser=device.browser,
            os=device.os,
            device_type=device.device_type,
            ip_address=client.ip_address,
        )
        reused = False
        if existing is not None:
            reused = await self._session_store.update_session_token(
                db_session,
                session_id=existing.id,
                refresh_id=refresh.token_id,
                expires_at=expires_at,
            )
        if reused:
            session_id = existing.id
        else:
            session_id = await self._session_store.create_session(
                db_session,
                user_id=user.id,
                refresh_id=refresh.token_id,
                device_info=device,
                ip_address=client.ip_address,
                expires_at=expires_at,
            )

        session_event = AuthEventType.SESSION_REFRESHED if reused else AuthEventType.SESSION_CREATED
        self._record(user, session_event, True, client, provider, session_id=session_id)
        self._record(user, AuthEventType.LOGIN, True, client, provider, session_id=session_id)
        return IssuedCredentials(
            access_token=access_token,
            refresh_token=refresh.token,
            session_id=session_id,
            reused_session=reused,
        )

    async def refresh(
        self,
        db_session: AsyncSession,
        refresh_token: str,
        client: ClientMetadata,
    ) -> RefreshedAccess:
        """Exchange a refresh credential for a new access token.

        Raises InvalidToken when the token fails verification or its session is
        no longer active. A revoked or expired session yields a single failed
        audit event.
        """
        token_id = self._issuer.verify_refresh_token(refresh_token)
        session_row = await self._session_store.get_session_by_refresh_id(db_session, token_id)
        if session_row is None:
            logger.warning("refresh_rejected", reason="session_inactive")
            await self._record_failed_refresh(db_session, token_id, client)
            raise InvalidToken("Invalid refresh token.", "session_expired")

        user = await self._user_service.get_user_by_id(db_session, session_row.user_id)
        if user is None:
            logger.warning("refresh_rejected", reason="user_missing", session_id=session_row.id)
            raise InvalidToken("Invalid refresh token.", "invalid_token")

        await self._session_store.touch_activity(db_session, session_row.id)
        access_token = self._issuer.issue_access_token(user)
        self._record(
            user, AuthEventType.SESSION_REFRESHED, True, client, session_id=session_row.id
        )
        self._record(user, AuthEventType.TOKEN_REFRESH, True, client, session_id=session_row.id)
        return RefreshedAccess(access_token=access_token, user=user, session_id=session_row.id)

    async def resolve_session_id(
        self, db_session: AsyncSession, refresh_token: str | None
    ) -> str | None:
        """Return the active session id behind a refresh credential, if any."""
        if not refresh_token:
            return None
        try:
            token_id = self._issuer.verify_refresh_token(refresh_token)
        except InvalidToken:
            return None
        session_row = await self._session_store.get_session_by_refresh_id(db_session, token_id)
        return session_row.id if session_row is not None else None

    async def revoke_session(
        self,
        db_session: AsyncSession,
        user: User,
        session_id: str,
        client: ClientMetadata,
    ) -> bool:
        """Revoke one of the user's sessions and audit the revocation."""
        revoked = await self._session_store.revoke(db_session, session_id, user.id)
        if revoked:
            self._record(user, AuthEventType.SESSION_REVOKED, True, client, session_id=session_id)
        return revoked

    async def revoke_other_sessions(
        self,
        db_session: AsyncSession,
        user: User,
        keep_session_id: str,
        client: ClientMetadata,
    ) -> int:
        """Revoke every active session except ``keep_session_id``.

        A bulk revocation that touched at least one row is audited as a single
        ``SESSION_REVOKED`` event under the ``bulk-revocation`` session id.
        """
        revoked_count = await self._session_store.revoke_all_except(
            db_session, user.id, keep_session_id
        )
        if revoked_count > 0:
            self._record(
                user, AuthEventType.SESSION_REVOKED, True, client, session_id=BULK_REVOCATION_ID
            )
        return revoked_count

    async def logout(
        self,
        db_session: AsyncSession,
        refresh_token: str | None,
        client: ClientMetadata,
    ) -> bool:
        """Revoke the caller's session when the refresh credential still resolves."""
        if not refresh_token:
            return False
        try:
            token_id = self._issuer.verify_refresh_token(refresh_token)
        except InvalidToken:
            return False
        session_row = await self._session_store.get_session_by_refresh_id(db_session, token_id)
        if session_row is None:
            return False
        user = await self._user_service.get_user_by_id(db_session, session_row.user_id)
        revoked = await self._session_store.revoke(db_session, session_row.id, session_row.user_id)
        if revoked and user is not None:
            self._record(user, AuthEventType.LOGOUT, True, client, session_id=session_row.id)
            self._record(
                user, AuthEventType.SESSION_REVOKED, True, client, session_id=session_row.id
            )
        return revoked

    async def _record_failed_refresh(
        self, db_session: AsyncSession, token_id: str, client: ClientMetadata
    ) -> None:
        stale = await self._session_store.get_session_by_refresh_id(
            db_session, token_id, active_only=False
        )
        if stale is None:
            return
        user = await self._user_service.get_user_by_id(db_session, stale.user_id)
        if user is None:
            return
        self._record(
            user,
            AuthEventType.FAILED,
            False,
            client,
            session_id=stale.id,
            error_message="Refresh attempted on inactive session",
        )

    def _record(
        self,
        user: User,
        event_type: AuthEventType,
        success: bool,
        client: ClientMetadata,
        provider: AuthProvider = AuthProvider.GOOGLE,
        session_id: str | None = None,
        error_message: str | None = None,
    ) -> None:
        self._audit_sink.record(
            AuthEvent(
                user_id=user.id,
                email=user.email,
                event_type=event_type,
                success=success,
                provider=provider,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                device=client.device,
                session_id=session_id,
                error_message=error_message,
            )
        )


@lru_cache
def get_auth_service() -> AuthService:
    """Build and cache the auth orchestration service."""
    return AuthService(
        issuer=get_credential_issuer(),
        session_store=get_session_store(),
        audit_sink=get_audit_sink(),
        user_service=get_user_service(),
    )
