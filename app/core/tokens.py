"""Access and refresh credential issuance and verification."""

from __future__ import annotations

import hmac
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from functools import lru_cache
from typing import Any, Literal, Protocol
from uuid import uuid4

from jose import jwt
from jose.exceptions import ExpiredSignatureError, JWTError

from app.config import get_settings

TokenType = Literal["access", "refresh"]
JWT_ALGORITHM = "HS256"


class InvalidToken(Exception):
    """Raised when a credential is malformed, expired, or mis-signed."""

    status_code = 401

    def __init__(self, detail: str = "Invalid token.", code: str = "invalid_token") -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code


class TokenSubject(Protocol):
    """Profile fields embedded into access tokens."""

    id: int
    email: str
    full_name: str | None
    avatar_url: str | None


@dataclass(frozen=True)
class RefreshCredential:
    """Signed refresh token and the opaque identifier persisted with its session."""

    token: str
    token_id: str


class CredentialIssuer:
    """Mint and verify HS256 access and refresh tokens."""

    def __init__(
        self,
        access_secret: str,
        refresh_secret: str,
        access_token_ttl_seconds: int,
        refresh_token_ttl_seconds: int,
    ) -> None:
        self._access_secret = access_secret
        self._refresh_secret = refresh_secret
        self._access_token_ttl_seconds = access_token_ttl_seconds
        self._refresh_token_ttl_seconds = refresh_token_ttl_seconds

    @property
    def access_token_ttl_seconds(self) -> int:
        return self._access_token_ttl_seconds

    @property
    def refresh_token_ttl_seconds(self) -> int:
        return self._refresh_token_ttl_seconds

    def issue_access_token(self, user: TokenSubject) -> str:
        """Encode the user identity and profile snapshot into a short-lived token."""
        claims: dict[str, Any] = {
            "sub": str(user.id),
            "userId": user.id,
            "email": user.email,
            "fullName": user.full_name,
            "avatarUrl": user.avatar_url,
        }
        return self._encode(
            claims=claims,
            token_type="access",
            secret=self._access_secret,
            ttl_seconds=self._access_token_ttl_seconds,
        )

    def issue_refresh_token(self) -> RefreshCredential:
        """Generate an opaque identifier and sign a token carrying only that identifier."""
        token_id = str(uuid4())
        token = self._encode(
            claims={"tokenId": token_id},
            token_type="refresh",
            secret=self._refresh_secret,
            ttl_seconds=self._refresh_token_ttl_seconds,
        )
        return RefreshCredential(token=token, token_id=token_id)

    def verify_access_token(self, token: str) -> int:
        """Check signature and expiry, returning the embedded user id."""
        payload = self._decode(token=token, secret=self._access_secret, expected_type="access")
        user_id = payload.get("userId")
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise InvalidToken()
        return user_id

    def verify_refresh_token(self, token: str) -> str:
        """Check signature and expiry, returning the opaque session identifier.

        Session state is not consulted here; callers must confirm the identifier
        still resolves to an active session.
        """
        payload = self._decode(token=token, secret=self._refresh_secret, expected_type="refresh")
        token_id = payload.get("tokenId")
        if not isinstance(token_id, str) or not token_id.strip():
            raise InvalidToken()
        return token_id

    def _encode(
        self,
        claims: dict[str, Any],
        token_type: TokenType,
        secret: str,
        ttl_seconds: int,
    ) -> str:
        """Sign claims with issued-at, expiry, and token type."""
        issued_at = datetime.now(UTC)
        expires_at = issued_at + timedelta(seconds=ttl_seconds)
        payload = {
            **claims,
            "type": token_type,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        return jwt.encode(payload, secret, algorithm=JWT_ALGORITHM)

    def _decode(self, token: str, secret: str, expected_type: TokenType) -> dict[str, Any]:
        """Verify signature, expiry, and token type."""
        if not token:
            raise InvalidToken()
        try:
            payload = jwt.decode(
                token,
                secret,
                algorithms=[JWT_ALGORITHM],
                options={"verify_aud": False, "require_iat": True, "require_exp": True},
            )
        except ExpiredSignatureError as exc:
            raise InvalidToken("Token has expired.", "token_expired") from exc
        except JWTError as exc:
            raise InvalidToken() from exc

        token_type = str(payload.get("type", ""))
        if not hmac.compare_digest(token_type, expected_type):
            raise InvalidToken("Invalid token type.", "invalid_token")
        return payload


@lru_cache
def get_credential_issuer() -> CredentialIssuer:
    """Build and cache the credential issuer from application settings."""
    settings = get_settings()
    return CredentialIssuer(
        access_secret=settings.jwt.access_token_secret.get_secret_value(),
        refresh_secret=settings.jwt.refresh_token_secret.get_secret_value(),
        access_token_ttl_seconds=settings.jwt.access_token_ttl_seconds,
        refresh_token_ttl_seconds=settings.jwt.refresh_token_ttl_seconds,
    )
