"""Integration tests for device session routes with real DB/Redis."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from app.core.sessions import SessionStore
from app.models import AuthLog, UserSession
from app.models.analytics import AuthEventType

_CHROME_WINDOWS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/126.0.0.0 Safari/537.36"
)
_FIREFOX_LINUX = "Mozilla/5.0 (X11; Linux x86_64; rv:128.0) Gecko/20100101 Firefox/128.0"
_SAFARI_IPHONE = (
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_5 like Mac OS X) AppleWebKit/605.1.15 "
    "(KHTML, like Gecko) Version/17.5 Mobile/15E148 Safari/604.1"
)


def _client(app: FastAPI, issued) -> AsyncClient:
    return AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://testserver",
        cookies={"access_token": issued.access_token, "refresh_token": issued.refresh_token},
    )


@pytest.mark.asyncio
async def test_list_flags_current_session(app_factory, user_factory, login) -> None:
    user = await user_factory("sessions@example.com")
    desktop = await login(user, user_agent=_CHROME_WINDOWS, ip_address="10.0.0.1")
    laptop = await login(user, user_agent=_FIREFOX_LINUX, ip_address="10.0.0.2")
    app: FastAPI = app_factory()

    async with _client(app, desktop) as client:
        response = await client.get("/sessions")

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["currentSession"] == desktop.session_id
    by_id = {item["id"]: item for item in data["sessions"]}
    assert set(by_id) == {desktop.session_id, laptop.session_id}
    assert by_id[desktop.session_id]["isCurrent"] is True
    assert by_id[desktop.session_id]["browser"] == "Chrome"
    assert by_id[desktop.session_id]["os"] == "Windows"
    assert by_id[laptop.session_id]["isCurrent"] is False


@pytest.mark.asyncio
async def test_second_login_from_same_device_reuses_session(user_factory, login) -> None:
    user = await user_factory("reuse@example.com")
    first = await login(user, user_agent=_CHROME_WINDOWS)
    second = await login(user, user_agent=_CHROME_WINDOWS)

    assert second.reused_session is True
    assert second.session_id == first.session_id
    assert second.refresh_token != first.refresh_token


@pytest.mark.asyncio
async def test_revoke_other_session(app_factory, user_factory, login, db_session_factory) -> None:
    user = await user_factory("revoke@example.com")
    desktop = await login(user, user_agent=_CHROME_WINDOWS)
    phone = await login(user, user_agent=_SAFARI_IPHONE)
    app: FastAPI = app_factory()

    async with _client(app, desktop) as client:
        response = await client.delete(f"/sessions/{phone.session_id}")
        listing = await client.get("/sessions")

    assert response.status_code == 200
    assert response.json()["message"] == "Session revoked successfully"
    assert [item["id"] for item in listing.json()["data"]["sessions"]] == [desktop.session_id]

    async with db_session_factory() as session:
        row = await session.get(UserSession, phone.session_id)
    assert row.is_revoked is True


@pytest.mark.asyncio
async def test_revoking_current_session_is_refused(app_factory, user_factory, login) -> None:
    user = await user_factory("current@example.com")
    desktop = await login(user)
    app: FastAPI = app_factory()

    async with _client(app, desktop) as client:
        response = await client.delete(f"/sessions/{desktop.session_id}")

    assert response.status_code == 400
    assert response.json()["code"] == "current_session"


@pytest.mark.asyncio
async def test_cannot_revoke_another_users_session(app_factory, user_factory, login) -> None:
    owner = await user_factory("owner@example.com")
    intruder = await user_factory("intruder@example.com")
    owner_issued = await login(owner)
    intruder_issued = await login(intruder)
    app: FastAPI = app_factory()

    async with _client(app, intruder_issued) as client:
        response = await client.delete(f"/sessions/{owner_issued.session_id}")

    assert response.status_code == 404
    assert response.json()["error"] == "Session not found or not owned by you"


@pytest.mark.asyncio
async def test_revoke_all_keeps_current_session(app_factory, user_factory, login) -> None:
    user = await user_factory("all@example.com")
    desktop = await login(user, user_agent=_CHROME_WINDOWS)
    await login(user, user_agent=_FIREFOX_LINUX)
    await login(user, user_agent=_SAFARI_IPHONE)
    app: FastAPI = app_factory()

    async with _client(app, desktop) as client:
        response = await client.delete("/sessions")
        listing = await client.get("/sessions")

    assert response.status_code == 200
    assert response.json()["data"] == {"revokedCount": 2}
    assert response.json()["message"] == "2 sessions revoked successfully"
    assert [item["id"] for item in listing.json()["data"]["sessions"]] == [desktop.session_id]


@pytest.mark.asyncio
async def test_session_stats_and_recent_events(app_factory, user_factory, login, flush_audit) -> None:
    user = await user_factory("session-stats@example.com")
    desktop = await login(user, user_agent=_CHROME_WINDOWS)
    await login(user, user_agent=_FIREFOX_LINUX)
    await flush_audit()
    app: FastAPI = app_factory()

    async with _client(app, desktop) as client:
        stats = await client.get("/sessions/stats")
        recent = await client.get("/sessions/recent", params={"limit": 5})

    assert stats.status_code == 200
    assert stats.json()["data"]["totals"]["session_created"] == 2
    assert recent.status_code == 200
    events = recent.json()["data"]["events"]
    assert len(events) == 2
    assert {event["eventType"] for event in events} == {"session_created"}


@pytest.mark.asyncio
async def test_sessions_require_authentication(app_factory) -> None:
    app: FastAPI = app_factory()

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        response = await client.get("/sessions")

    assert response.status_code == 401


async def _revocation_states(db_session_factory, user_id: int) -> dict[str, bool]:
    async with db_session_factory() as session:
        rows = (
            await session.execute(select(UserSession).where(UserSession.user_id == user_id))
        ).scalars().all()
    return {row.id: row.is_revoked for row in rows}


async def _revoked_events(db_session_factory, user_id: int) -> list[str]:
    async with db_session_factory() as session:
        return list(
            (
                await session.execute(
                    select(AuthLog.session_id).where(
                        AuthLog.user_id == user_id,
                        AuthLog.event_type == AuthEventType.SESSION_REVOKED,
                    )
                )
            ).scalars()
        )


@pytest.mark.asyncio
async def test_revoke_all_records_bulk_revocation_event(
    app_factory, user_factory, login, flush_audit, db_session_factory
) -> None:
    user = await user_factory("bulk-audit@example.com")
    desktop = await login(user, user_agent=_CHROME_WINDOWS)
    await login(user, user_agent=_FIREFOX_LINUX)
    app: FastAPI = app_factory()

    async with _client(app, desktop) as client:
        response = await client.delete("/sessions")

    assert response.json()["data"] == {"revokedCount": 1}
    await flush_audit()
    assert await _revoked_events(db_session_factory, user.id) == ["bulk-revocation"]


@pytest.mark.asyncio
async def test_revoke_all_with_only_current_session_changes_nothing(
    app_factory, user_factory, login, flush_audit, db_session_factory
) -> None:
    user = await user_factory("solo@example.com")
    desktop = await login(user, user_agent=_CHROME_WINDOWS)
    before = await _revocation_states(db_session_factory, user.id)
    app: FastAPI = app_factory()

    async with _client(app, desktop) as client:
        response = await client.delete("/sessions")

    assert response.status_code == 200
    assert response.json()["data"] == {"revokedCount": 0}
    assert await _revocation_states(db_session_factory, user.id) == before == {
        desktop.session_id: False
    }
    await flush_audit()
    assert await _revoked_events(db_session_factory, user.id) == []


@pytest.mark.asyncio
async def test_revoke_all_leaves_other_users_sessions_alone(
    app_factory, user_factory, login, db_session_factory
) -> None:
    user = await user_factory("mine@example.com")
    neighbour = await user_factory("neighbour@example.com")
    desktop = await login(user, user_agent=_CHROME_WINDOWS)
    await login(user, user_agent=_SAFARI_IPHONE)
    neighbour_desktop = await login(neighbour, user_agent=_CHROME_WINDOWS)
    neighbour_laptop = await login(neighbour, user_agent=_FIREFOX_LINUX)
    app: FastAPI = app_factory()

    async with _client(app, desktop) as client:
        response = await client.delete("/sessions")

    assert response.json()["data"] == {"revokedCount": 1}
    assert await _revocation_states(db_session_factory, neighbour.id) == {
        neighbour_desktop.session_id: False,
        neighbour_laptop.session_id: False,
    }


@pytest.mark.asyncio
async def test_sweep_expired_revokes_only_expired_rows_and_is_idempotent(
    user_factory, db_session_factory
) -> None:
    user = await user_factory("sweep@example.com")
    now = datetime.now(UTC)
    expiries = {
        "a" * 64: now - timedelta(days=1),
        "b" * 64: now - timedelta(seconds=1),
        "c" * 64: now + timedelta(days=1),
    }
    async with db_session_factory() as session:
        for session_id, expires_at in expiries.items():
            session.add(
                UserSession(
                    id=session_id,
                    user_id=user.id,
                    refresh_token=f"refresh-{session_id[0]}",
                    expires_at=expires_at,
                )
            )
        await session.commit()

    store = SessionStore(now=lambda: now)
    async with db_session_factory() as session:
        first = await store.sweep_expired(session)
    async with db_session_factory() as session:
        second = await store.sweep_expired(session)

    assert first == 2
    assert second == 0
    assert await _revocation_states(db_session_factory, user.id) == {
        "a" * 64: True,
        "b" * 64: True,
        "c" * 64: False,
    }
