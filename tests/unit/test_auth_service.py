"""Unit tests for session-bound credential issuance, refresh, and logout."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from app.core.context import ClientMetadata
from app.core.devices import DeviceInfo
from app.core.tokens import CredentialIssuer, InvalidToken
from app.models.analytics import AuthEventType
from app.models.session import UserSession
from app.models.user import User
from app.services.auth_service import BULK_REVOCATION_ID, AuthService

CLIENT = ClientMetadata(
    ip_address="203.0.113.5",
    user_agent="ua",
    device=DeviceInfo("Windows Chrome", "Desktop", "Chrome", "Windows"),
)


class _AuditSinkStub:
    def __init__(self) -> None:
        self.events: list[Any] = []

    def record(self, event: Any) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[AuthEventType]:
        return [event.event_type for event in self.events]


class _SessionStoreStub:
    """In-memory session store keyed by refresh identifier."""

    def __init__(self) -> None:
        self.rows: dict[str, UserSession] = {}
        self.existing: UserSession | None = None
        self.touched: list[str] = []
        self.revoked: list[str] = []

    async def find_existing_session(self, db: Any, **kwargs: Any) -> UserSession | None:
        return self.existing

    async def update_session_token(
        self, db: Any, session_id: str, refresh_id: str, expires_at: datetime
    ) -> bool:
        row = self.existing
        assert row is not None and row.id == session_id
        row.refresh_token = refresh_id
        self.rows[refresh_id] = row
        return True

    async def create_session(self, db: Any, **kwargs: Any) -> str:
        row = _session("n" * 64, kwargs["refresh_id"])
        self.rows[kwargs["refresh_id"]] = row
        return row.id

    async def get_session_by_refresh_id(
        self, db: Any, refresh_id: str, active_only: bool = True
    ) -> UserSession | None:
        row = self.rows.get(refresh_id)
        if row is None:
            return None
        if active_only and not row.is_active(datetime.now(UTC)):
            return None
        return row

    async def touch_activity(self, db: Any, session_id: str) -> None:
        self.touched.append(session_id)

    async def revoke(self, db: Any, session_id: str, user_id: int) -> bool:
        for row in self.rows.values():
            if row.id == session_id and row.user_id == user_id and not row.is_revoked:
                row.is_revoked = True
                self.revoked.append(session_id)
                return True
        return False

    async def revoke_all_except(self, db: Any, user_id: int, keep_session_id: str) -> int:
        count = 0
        for row in self.rows.values():
            if row.user_id == user_id and row.id != keep_session_id and not row.is_revoked:
                row.is_revoked = True
                self.revoked.append(row.id)
                count += 1
        return count


class _UserServiceStub:
    def __init__(self, user: User | None) -> None:
        self.user = user

    async def get_user_by_id(self, db: Any, user_id: int) -> User | None:
        return self.user if self.user is not None and self.user.id == user_id else None


def _session(session_id: str, refresh_id: str, **overrides: Any) -> UserSession:
    now = datetime.now(UTC)
    values: dict[str, Any] = {
        "id": session_id,
        "user_id": 1,
        "refresh_token": refresh_id,
        "device_name": "Windows Chrome",
        "device_type": "Desktop",
        "browser": "Chrome",
        "os": "Windows",
        "ip_address": "203.0.113.5",
        "last_active": now,
        "expires_at": now + timedelta(days=30),
        "is_revoked": False,
        "created_at": now,
    }
    values.update(overrides)
    return UserSession(**values)


def _user() -> User:
    return User(id=1, google_id="g", email="dev@example.com", api_key="k" * 64)


def _build(user: User | None = None) -> tuple[AuthService, _SessionStoreStub, _AuditSinkStub]:
    issuer = CredentialIssuer(
        access_secret="access",
        refresh_secret="refresh",
        access_token_ttl_seconds=60,
        refresh_token_ttl_seconds=3600,
    )
    store = _SessionStoreStub()
    audit = _AuditSinkStub()
    service = AuthService(
        issuer=issuer,
        session_store=store,  # type: ignore[arg-type]
        audit_sink=audit,  # type: ignore[arg-type]
        user_service=_UserServiceStub(user or _user()),  # type: ignore[arg-type]
    )
    return service, store, audit


@pytest.mark.asyncio
async def test_issue_session_tokens_creates_new_session() -> None:
    service, store, audit = _build()

    issued = await service.issue_session_tokens(None, _user(), CLIENT)  # type: ignore[arg-type]

    assert issued.reused_session is False
    assert issued.session_id == "n" * 64
    assert audit.types == [AuthEventType.SESSION_CREATED, AuthEventType.LOGIN]
    assert all(event.session_id == issued.session_id for event in audit.events)
    assert len(store.rows) == 1


@pytest.mark.asyncio
async def test_issue_session_tokens_reuses_matching_device_session() -> None:
    """Signing in again from the same device rotates the existing session."""
    service, store, audit = _build()
    store.existing = _session("e" * 64, "old-refresh-id")

    issued = await service.issue_session_tokens(None, _user(), CLIENT)  # type: ignore[arg-type]

    assert issued.reused_session is True
    assert issued.session_id == "e" * 64
    assert store.existing.refresh_token != "old-refresh-id"
    assert audit.types == [AuthEventType.SESSION_REFRESHED, AuthEventType.LOGIN]


@pytest.mark.asyncio
async def test_refresh_issues_access_token_for_active_session() -> None:
    service, store, audit = _build()
    issued = await service.issue_session_tokens(None, _user(), CLIENT)  # type: ignore[arg-type]
    audit.events.clear()

    refreshed = await service.refresh(None, issued.refresh_token, CLIENT)  # type: ignore[arg-type]

    assert refreshed.user.api_key == "k" * 64
    assert refreshed.session_id == issued.session_id
    assert store.touched == [issued.session_id]
    assert audit.types == [AuthEventType.SESSION_REFRESHED, AuthEventType.TOKEN_REFRESH]


@pytest.mark.asyncio
async def test_refresh_on_revoked_session_records_only_a_failure() -> None:
    """A revoked session never mints a token and never logs a refresh."""
    service, store, audit = _build()
    issued = await service.issue_session_tokens(None, _user(), CLIENT)  # type: ignore[arg-type]
    await service.revoke_session(None, _user(), issued.session_id, CLIENT)  # type: ignore[arg-type]
    audit.events.clear()

    with pytest.raises(InvalidToken) as exc_info:
        await service.refresh(None, issued.refresh_token, CLIENT)  # type: ignore[arg-type]

    assert exc_info.value.status_code == 401
    assert audit.types == [AuthEventType.FAILED]
    assert audit.events[0].success is False
    assert store.touched == []


@pytest.mark.asyncio
async def test_refresh_with_unknown_session_records_nothing() -> None:
    service, _, audit = _build()
    orphan = service._issuer.issue_refresh_token()

    with pytest.raises(InvalidToken):
        await service.refresh(None, orphan.token, CLIENT)  # type: ignore[arg-type]
    assert audit.events == []


@pytest.mark.asyncio
async def test_refresh_with_tampered_token_fails_verification() -> None:
    service, _, audit = _build()

    with pytest.raises(InvalidToken):
        await service.refresh(None, "not-a-token", CLIENT)  # type: ignore[arg-type]
    assert audit.events == []


@pytest.mark.asyncio
async def test_logout_revokes_and_records_logout() -> None:
    service, store, audit = _build()
    issued = await service.issue_session_tokens(None, _user(), CLIENT)  # type: ignore[arg-type]
    audit.events.clear()

    assert await service.logout(None, issued.refresh_token, CLIENT) is True  # type: ignore[arg-type]
    assert store.revoked == [issued.session_id]
    assert audit.types == [AuthEventType.LOGOUT, AuthEventType.SESSION_REVOKED]


@pytest.mark.asyncio
async def test_logout_without_resolvable_session_is_a_no_op() -> None:
    service, store, audit = _build()

    assert await service.logout(None, None, CLIENT) is False  # type: ignore[arg-type]
    assert await service.logout(None, "garbage", CLIENT) is False  # type: ignore[arg-type]
    assert store.revoked == []
    assert audit.events == []


@pytest.mark.asyncio
async def test_resolve_session_id_only_for_active_sessions() -> None:
    service, _, _ = _build()
    issued = await service.issue_session_tokens(None, _user(), CLIENT)  # type: ignore[arg-type]

    assert await service.resolve_session_id(None, issued.refresh_token) == issued.session_id  # type: ignore[arg-type]
    await service.revoke_session(None, _user(), issued.session_id, CLIENT)  # type: ignore[arg-type]
    assert await service.resolve_session_id(None, issued.refresh_token) is None  # type: ignore[arg-type]


@pytest.mark.asyncio
async def test_revoke_other_sessions_records_one_bulk_event() -> None:
    service, store, audit = _build()
    store.rows["r-keep"] = _session("k" * 64, "r-keep")
    store.rows["r-a"] = _session("a" * 64, "r-a")
    store.rows["r-b"] = _session("b" * 64, "r-b")
    store.rows["r-other-user"] = _session("o" * 64, "r-other-user", user_id=2)

    revoked_count = await service.revoke_other_sessions(None, _user(), "k" * 64, CLIENT)  # type: ignore[arg-type]

    assert revoked_count == 2
    assert sorted(store.revoked) == ["a" * 64, "b" * 64]
    assert audit.types == [AuthEventType.SESSION_REVOKED]
    assert audit.events[0].session_id == BULK_REVOCATION_ID
    assert audit.events[0].success is True


@pytest.mark.asyncio
async def test_revoke_other_sessions_with_nothing_to_revoke_records_nothing() -> None:
    service, store, audit = _build()
    store.rows["r-keep"] = _session("k" * 64, "r-keep")

    revoked_count = await service.revoke_other_sessions(None, _user(), "k" * 64, CLIENT)  # type: ignore[arg-type]

    assert revoked_count == 0
    assert store.revoked == []
    assert audit.events == []
