"""Google OAuth/OIDC protocol operations via authlib."""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from authlib.integrations.httpx_client import AsyncOAuth2Client
from authlib.jose import JoseError, JsonWebKey, jwt

from app.config import get_settings

GOOGLE_DISCOVERY_URL = "https://accounts.google.com/.well-known/openid-configuration"
GOOGLE_ISSUERS = ("https://accounts.google.com", "accounts.google.com")


class OAuthProtocolError(Exception):
    """Raised when OAuth protocol operations fail."""

    def __init__(self, detail: str, code: str, status_code: int) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code


@dataclass(frozen=True)
class GoogleProfile:
    """Identity claims taken from a verified Google ID token."""

    subject: str
    email: str
    full_name: str | None
    avatar_url: str | None


class GoogleOAuthClient:
    """Authlib-backed Google OAuth/OIDC client."""

    def __init__(self, client_id: str, client_secret: str, redirect_uri: str) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._redirect_uri = redirect_uri
        self._metadata: dict[str, Any] | None = None

    @property
    def redirect_uri(self) -> str:
        return self._redirect_uri

    def generate_state(self) -> str:
        """Generate OAuth state token."""
        return secrets.token_urlsafe(32)

    def generate_nonce(self) -> str:
        """Generate OIDC nonce."""
        return secrets.token_urlsafe(32)

    def generate_code_verifier(self) -> str:
        """Generate PKCE code verifier."""
        return secrets.token_urlsafe(64)

    async def create_authorization_url(self, state: str, nonce: str, code_verifier: str) -> str:
        """Build the Google consent URL with PKCE parameters."""
        metadata = await self._get_provider_metadata()
        client = self._build_client()
        try:
            authorization_url, _ = client.create_authorization_url(
                metadata["authorization_endpoint"],
                state=state,
                nonce=nonce,
                code_verifier=code_verifier,
                prompt="select_account",
            )
        finally:
            await client.aclose()
        return authorization_url

    async def exchange_code(self, code: str, code_verifier: str) -> dict[str, Any]:
        """Exchange an authorization code for the provider token payload."""
        metadata = await self._get_provider_metadata()
        client = self._build_client()
        try:
            return await client.fetch_token(
                metadata["token_endpoint"],
                grant_type="authorization_code",
                code=code,
                code_verifier=code_verifier,
                redirect_uri=self._redirect_uri,
            )
        except Exception as exc:
            raise OAuthProtocolError(
                "OAuth token exchange failed.", "oauth_exchange_failed", 401
            ) from exc
        finally:
            await client.aclose()

    async def verify_id_token(self, id_token: str, nonce: str) -> GoogleProfile:
        """Verify the ID token signature and claims, returning the profile."""
        metadata = await self._get_provider_metadata()
        jwks = await self._fetch_jwks(metadata["jwks_uri"])
        key_set = JsonWebKey.import_key_set(jwks)
        claims_options = {
            "iss": {"essential": True, "values": [metadata["issuer"], *GOOGLE_ISSUERS]},
            "aud": {"essential": True, "value": self._client_id},
            "nonce": {"essential": True, "value": nonce},
            "exp": {"essential": True},
            "sub": {"essential": True},
            "email": {"essential": True},
        }
        try:
            claims = jwt.decode(id_token, key_set, claims_options=claims_options)
            claims.validate()
        except JoseError as exc:
            raise OAuthProtocolError("Invalid ID token.", "invalid_credentials", 401) from exc
        return profile_from_claims(dict(claims))

    async def _get_provider_metadata(self) -> dict[str, Any]:
        """Load and cache provider OpenID metadata."""
        if self._metadata is not None:
            return self._metadata
        self._metadata = await self._get_json(GOOGLE_DISCOVERY_URL)
        return self._metadata

    async def _fetch_jwks(self, jwks_uri: str) -> dict[str, Any]:
        return await self._get_json(jwks_uri)

    async def _get_json(self, url: str) -> dict[str, Any]:
        client = self._build_client()
        try:
            response = await client.get(url)
            response.raise_for_status()
            return dict(response.json())
        except Exception as exc:
            raise OAuthProtocolError(
                "OAuth provider unavailable.", "oauth_unavailable", 503
            ) from exc
        finally:
            await client.aclose()

    def _build_client(self) -> AsyncOAuth2Client:
        """Build authlib OAuth2 client for Google endpoints."""
        return AsyncOAuth2Client(
            client_id=self._client_id,
            client_secret=self._client_secret,
            scope="openid email profile",
            redirect_uri=self._redirect_uri,
            token_endpoint_auth_method="client_secret_post",
            timeout=10.0,
        )


def profile_from_claims(claims: dict[str, Any]) -> GoogleProfile:
    """Map OIDC claims to a profile, rejecting unverified or incomplete identities."""
    subject = str(claims.get("sub", "")).strip()
    email = str(claims.get("email", "")).strip()
    if not subject or not email or claims.get("email_verified") is False:
        raise OAuthProtocolError("Invalid credentials.", "invalid_credentials", 401)
    name = claims.get("name")
    picture = claims.get("picture")
    return GoogleProfile(
        subject=subject,
        email=email,
        full_name=str(name) if name else None,
        avatar_url=str(picture) if picture else None,
    )


@lru_cache
def get_google_oauth_client() -> GoogleOAuthClient:
    """Build and cache Google OAuth client from settings."""
    settings = get_settings()
    return GoogleOAuthClient(
        client_id=settings.oauth.google_client_id,
        client_secret=settings.oauth.google_client_secret.get_secret_value(),
        redirect_uri=str(settings.oauth.google_redirect_uri),
    )
