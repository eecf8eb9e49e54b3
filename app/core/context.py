"""Typed per-request identity and client metadata."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from fastapi import Request

from app.core.devices import DeviceInfo, extract_client_ip, parse_user_agent
from app.models.user import User

AuthMethod = Literal["bearer", "cookie", "api_key"]
REFRESH_PATH = "/auth/refresh-token"


class AuthenticationError(Exception):
    """Raised when no valid credential could be resolved to a user."""

    status_code = 401

    def __init__(
        self, detail: str = "Authentication required", code: str = "authentication_required"
    ) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code


class RefreshRequired(AuthenticationError):
    """Access cookie is unusable but a refresh cookie is present."""

    status_code = 303

    def __init__(self, location: str = REFRESH_PATH) -> None:
        super().__init__("Access token expired", "refresh_required")
        self.location = location


class AuthorizationError(Exception):
    """Raised when the resolved identity does not own the requested resource."""

    status_code = 403

    def __init__(self, detail: str = "Forbidden", code: str = "forbidden") -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code


@dataclass(frozen=True)
class ClientMetadata:
    """Network and device details of the calling client."""

    ip_address: str
    user_agent: str
    device: DeviceInfo

    @classmethod
    def from_request(cls, request: Request) -> ClientMetadata:
        """Derive client metadata from request headers."""
        user_agent = request.headers.get("user-agent", "")
        return cls(
            ip_address=extract_client_ip(request),
            user_agent=user_agent,
            device=parse_user_agent(user_agent),
        )


@dataclass(frozen=True)
class RequestContext:
    """Authenticated identity populated once by the auth dependencies."""

    user: User
    auth_method: AuthMethod
    client: ClientMetadata
    refresh_token: str | None = None

    @property
    def user_id(self) -> int:
        return self.user.id
