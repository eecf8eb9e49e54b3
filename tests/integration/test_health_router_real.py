"""Integration tests for health and banner routes against real Postgres/Redis."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient


@pytest.mark.asyncio
async def test_ready_with_real_backends(app_factory) -> None:
    app: FastAPI = app_factory()

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        response = await client.get("/health/ready")

    assert response.status_code == 200
    assert response.json() == {"status": "ready"}


@pytest.mark.asyncio
async def test_root_banner_uses_envelope(app_factory) -> None:
    app: FastAPI = app_factory()

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://testserver"
    ) as client:
        response = await client.get("/")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["data"] == {"service": "pulse-tracker", "environment": "development"}
    assert response.headers.get("x-correlation-id")
