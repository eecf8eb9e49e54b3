"""OAuth service orchestration for Google sign-in."""

from __future__ import annotations

import json
from dataclasses import dataclass
from functools import lru_cache

import structlog
from redis.asyncio.client import Redis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.cache import get_redis_client
from app.core.context import ClientMetadata
from app.core.oauth import GoogleOAuthClient, OAuthProtocolError, get_google_oauth_client
from app.models.analytics import AuthProvider
from app.services.auth_service import AuthService, IssuedCredentials, get_auth_service
from app.services.user_service import ExternalProfile, UserService, get_user_service

logger = structlog.get_logger(__name__)

STATE_TTL_SECONDS = 600


@dataclass(frozen=True)
class OAuthStateRecord:
    """Serialized OAuth state payload stored in Redis."""

    nonce: str
    code_verifier: str


class OAuthServiceError(Exception):
    """Raised when OAuth flow orchestration fails."""

    def __init__(self, detail: str, code: str, status_code: int) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code


class OAuthService:
    """Coordinates OAuth state, callback exchange, user upsert, and session issuance."""

    def __init__(
        self,
        oauth_client: GoogleOAuthClient,
        redis_client: Redis,
        user_service: UserService,
        auth_service: AuthService,
    ) -> None:
        self._oauth_client = oauth_client
        self._redis = redis_client
        self._user_service = user_service
        self._auth_service = auth_service

    async def build_google_login_url(self) -> str:
        """Create the Google consent URL and persist one-time state in Redis."""
        state = self._oauth_client.generate_state()
        record = OAuthStateRecord(
            nonce=self._oauth_client.generate_nonce(),
            code_verifier=self._oauth_client.generate_code_verifier(),
        )
        await self._store_state(state=state, record=record)
        try:
            return await self._oauth_client.create_authorization_url(
                state=state,
                nonce=record.nonce,
                code_verifier=record.code_verifier,
            )
        except OAuthProtocolError as exc:
            raise OAuthServiceError(exc.detail, exc.code, exc.status_code) from exc

    async def complete_google_callback(
        self,
        db_session: AsyncSession,
        state: str,
        code: str,
        client: ClientMetadata,
    ) -> IssuedCredentials:
        """Complete the callback and issue a device-bound credential pair."""
        record = await self._consume_state(state=state)
        try:
            token_payload = await self._oauth_client.exchange_code(
                code=code, code_verifier=record.code_verifier
            )
            id_token = str(token_payload.get("id_token", ""))
            if not id_token:
                raise OAuthProtocolError("Invalid credentials.", "invalid_credentials", 401)
            profile = await self._oauth_client.verify_id_token(
                id_token=id_token, nonce=record.nonce
            )
        except OAuthProtocolError as exc:
            logger.warning("oauth_callback_failed", code=exc.code, ip_address=client.ip_address)
            raise OAuthServiceError(exc.detail, exc.code, exc.status_code) from exc

        user, _ = await self._user_service.upsert_google_user(
            db_session,
            ExternalProfile(
                provider_user_id=profile.subject,
                email=profile.email,
                full_name=profile.full_name,
                avatar_url=profile.avatar_url,
            ),
        )
        return await self._auth_service.issue_session_tokens(
            db_session, user, client, provider=AuthProvider.GOOGLE
        )

    async def _store_state(self, state: str, record: OAuthStateRecord) -> None:
        """Persist one-time OAuth state in Redis."""
        payload = json.dumps({"nonce": record.nonce, "code_verifier": record.code_verifier})
        try:
            await self._redis.setex(self._state_key(state), STATE_TTL_SECONDS, payload)
        except RedisError as exc:
            raise OAuthServiceError(
                "OAuth state unavailable.", "oauth_state_unavailable", 503
            ) from exc

    async def _consume_state(self, state: str) -> OAuthStateRecord:
        """Load and delete OAuth state payload (one-time use)."""
        try:
            raw_payload = await self._redis.getdel(self._state_key(state))
        except RedisError as exc:
            raise OAuthServiceError(
                "OAuth state unavailable.", "oauth_state_unavailable", 503
            ) from exc

        if raw_payload is None:
            raise OAuthServiceError("OAuth state mismatch.", "oauth_state_mismatch", 401)
        try:
            return OAuthStateRecord(**json.loads(raw_payload))
        except (TypeError, ValueError) as exc:
            raise OAuthServiceError("OAuth state mismatch.", "oauth_state_mismatch", 401) from exc

    @staticmethod
    def _state_key(state: str) -> str:
        return f"oauth_state:{state}"


@lru_cache
def get_oauth_service() -> OAuthService:
    """Build and cache OAuth service dependencies."""
    return OAuthService(
        oauth_client=get_google_oauth_client(),
        redis_client=get_redis_client(),
        user_service=get_user_service(),
        auth_service=get_auth_service(),
    )
