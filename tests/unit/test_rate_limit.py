"""Unit tests for the in-memory sliding-window rate limiter."""

from __future__ import annotations

import time
from types import SimpleNamespace

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.config import get_settings
from app.middleware.rate_limit import (
    RateLimitMiddleware,
    SlidingWindowCounter,
    get_rate_limit_counter,
    limit_for_path,
)
from app.routers import rate_limit


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_counter_rejects_after_limit_and_recovers_after_window() -> None:
    clock = _Clock()
    counter = SlidingWindowCounter(window_seconds=60, clock=clock)

    assert counter.hit("k", limit=2)
    assert counter.hit("k", limit=2)
    assert not counter.hit("k", limit=2)

    clock.now += 61
    assert counter.hit("k", limit=2)


def test_counter_window_slides_per_hit() -> None:
    """Only hits inside the trailing window count toward the limit."""
    clock = _Clock()
    counter = SlidingWindowCounter(window_seconds=60, clock=clock)

    assert counter.hit("k", limit=2)
    clock.now += 30
    assert counter.hit("k", limit=2)
    clock.now += 31
    assert counter.hit("k", limit=2)
    assert not counter.hit("k", limit=2)


def test_counter_prune_forgets_idle_keys() -> None:
    clock = _Clock()
    counter = SlidingWindowCounter(window_seconds=60, clock=clock)
    counter.hit("a", limit=5)
    clock.now += 30
    counter.hit("b", limit=5)
    clock.now += 31

    counter.prune()

    assert len(counter) == 1


def _app(counter: SlidingWindowCounter) -> FastAPI:
    app = FastAPI()
    app.add_middleware(
        RateLimitMiddleware,
        counter=counter,
        default_requests_per_minute=3,
        auth_requests_per_minute=1,
        sync_requests_per_minute=2,
    )

    @app.get("/stats/projects")
    async def projects() -> dict[str, bool]:
        return {"ok": True}

    @app.get("/auth/me")
    async def me() -> dict[str, bool]:
        return {"ok": True}

    return app


@pytest.mark.asyncio
async def test_middleware_returns_429_envelope_for_auth_paths() -> None:
    """Auth routes use the stricter limit and answer with the error envelope."""
    app = _app(SlidingWindowCounter())

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        first = await client.get("/auth/me")
        second = await client.get("/auth/me")
        other = await client.get("/stats/projects")

    assert first.status_code == 200
    assert second.status_code == 429
    assert second.json() == {
        "success": False,
        "error": "Rate limit exceeded",
        "code": "rate_limited",
    }
    assert other.status_code == 200


@pytest.mark.asyncio
async def test_middleware_counts_clients_separately() -> None:
    app = _app(SlidingWindowCounter())

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        alice = await client.get("/auth/me", headers={"x-forwarded-for": "203.0.113.1"})
        bob = await client.get("/auth/me", headers={"x-forwarded-for": "203.0.113.2"})

    assert alice.status_code == 200
    assert bob.status_code == 200


def test_counter_status_reports_usage_without_counting() -> None:
    clock = _Clock()
    counter = SlidingWindowCounter(window_seconds=60, clock=clock)
    counter.hit("k", limit=3)
    clock.now += 20.5
    counter.hit("k", limit=3)

    status = counter.status("k", limit=3)
    again = counter.status("k", limit=3)

    assert (status.limit, status.remaining, status.reset_after_seconds) == (3, 1, 40)
    assert again == status


def test_counter_status_for_unknown_or_aged_out_key() -> None:
    clock = _Clock()
    counter = SlidingWindowCounter(window_seconds=60, clock=clock)
    counter.hit("k", limit=3)
    clock.now += 61

    assert counter.status("k", limit=3).remaining == 3
    assert counter.status("k", limit=3).reset_after_seconds == 60
    assert counter.status("never-seen", limit=5).remaining == 5


def test_limit_for_path_picks_auth_and_sync_overrides() -> None:
    assert limit_for_path("/auth/me", 10, 1, 2) == 1
    assert limit_for_path("/sync", 10, 1, 2) == 2
    assert limit_for_path("/sync/batch", 10, 1, 2) == 2
    assert limit_for_path("/synchronize", 10, 1, 2) == 10
    assert limit_for_path("/stats/projects", 10, 1, 2) == 10


def test_shared_counter_is_a_process_singleton() -> None:
    get_rate_limit_counter.cache_clear()
    try:
        assert get_rate_limit_counter() is get_rate_limit_counter()
    finally:
        get_rate_limit_counter.cache_clear()


def _status_app(counter: SlidingWindowCounter) -> FastAPI:
    app = _app(counter)
    app.include_router(rate_limit.router)
    limits = SimpleNamespace(
        default_requests_per_minute=3, auth_requests_per_minute=1, sync_requests_per_minute=2
    )
    app.dependency_overrides[get_settings] = lambda: SimpleNamespace(rate_limit=limits)
    app.dependency_overrides[get_rate_limit_counter] = lambda: counter
    return app


@pytest.mark.asyncio
async def test_status_route_reads_the_middleware_window() -> None:
    """An empty shared counter handed to the middleware is the one the route reads."""
    counter = SlidingWindowCounter()
    app = _status_app(counter)
    headers = {"x-forwarded-for": "203.0.113.9"}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        await client.get("/auth/me", headers=headers)
        first = await client.get("/rate-limit", headers=headers)
        second = await client.get("/rate-limit", headers=headers)
        auth = await client.get("/rate-limit", params={"path": "/auth/me"}, headers=headers)

    assert first.status_code == 200
    data = second.json()["data"]
    assert data["limit"] == 3
    assert data["remaining"] == 1
    assert data["identifier"] == "ip:203.0.113.9"
    assert data["path"] == "/rate-limit"
    assert data["reset"] >= int(time.time())
    assert auth.json()["data"]["limit"] == 1
    assert auth.json()["data"]["remaining"] == 0
