"""Integration tests for health endpoints with stubbed backend checks."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from app.error_handlers import register_exception_handlers
from app.routers.health import check_postgres_ready, check_redis_ready, router


def _build_health_app(postgres_ready: bool, redis_ready: bool) -> FastAPI:
    """Build app with health router and fixed readiness checks."""
    app = FastAPI()
    register_exception_handlers(app, environment="production")
    app.include_router(router)

    async def _postgres_override() -> bool:
        return postgres_ready

    async def _redis_override() -> bool:
        return redis_ready

    app.dependency_overrides[check_postgres_ready] = _postgres_override
    app.dependency_overrides[check_redis_ready] = _redis_override
    return app


@pytest.mark.asyncio
async def test_live_ignores_backend_state() -> None:
    app = _build_health_app(postgres_ready=False, redis_ready=False)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        response = await client.get("/health/live")

    assert response.status_code == 200
    assert response.json() == {"status": "live"}


@pytest.mark.asyncio
async def test_ready_when_both_stores_respond() -> None:
    app = _build_health_app(postgres_ready=True, redis_ready=True)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        response = await client.get("/health/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready"}


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("postgres_ready", "redis_ready"),
    [(False, True), (True, False), (False, False)],
)
async def test_not_ready_uses_error_envelope(postgres_ready: bool, redis_ready: bool) -> None:
    """Any unreachable store turns readiness into a 503 envelope."""
    app = _build_health_app(postgres_ready=postgres_ready, redis_ready=redis_ready)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        response = await client.get("/health/ready")

    assert response.status_code == 503
    body = response.json()
    assert body["success"] is False
    assert body["code"] == "not_ready"
