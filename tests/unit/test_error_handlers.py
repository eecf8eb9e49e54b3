"""Unit tests for the global response envelope handlers."""

from __future__ import annotations

from typing import Any

import pytest
from fastapi import FastAPI, HTTPException, Query
from httpx import ASGITransport, AsyncClient

from app import error_handlers as error_handlers_module
from app.error_handlers import register_exception_handlers
from app.services.api_key_service import APIKeyServiceError
from app.services.sync_service import SyncServiceError


class _CaptureLogger:
    def __init__(self) -> None:
        self.calls: list[tuple[str, str, dict[str, Any]]] = []

    def info(self, event: str, **kwargs: Any) -> None:
        self.calls.append(("info", event, kwargs))

    def warning(self, event: str, **kwargs: Any) -> None:
        self.calls.append(("warning", event, kwargs))

    def error(self, event: str, **kwargs: Any) -> None:
        self.calls.append(("error", event, kwargs))


def _app(environment: str = "production") -> FastAPI:
    app = FastAPI()
    register_exception_handlers(app, environment)

    @app.get("/conflict")
    async def conflict() -> None:
        raise APIKeyServiceError("API key already exists.", "api_key_exists", 409)

    @app.get("/sync-failed")
    async def sync_failed() -> None:
        raise SyncServiceError("database exploded at host db-1", "sync_failed", 500)

    @app.get("/http")
    async def http_error() -> None:
        raise HTTPException(status_code=404, detail={"detail": "Session not found", "code": "not_found"})

    @app.get("/boom")
    async def boom() -> None:
        raise RuntimeError("secret internals")

    @app.get("/validated")
    async def validated(limit: int = Query(ge=1, le=100)) -> dict[str, int]:
        return {"limit": limit}

    return app


async def _get(app: FastAPI, path: str):
    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False),
        base_url="http://testserver",
    ) as client:
        return await client.get(path)


@pytest.mark.asyncio
async def test_domain_errors_use_their_status_and_code() -> None:
    response = await _get(_app(), "/conflict")

    assert response.status_code == 409
    assert response.json() == {
        "success": False,
        "error": "API key already exists.",
        "code": "api_key_exists",
    }


@pytest.mark.asyncio
async def test_server_side_domain_errors_are_masked_outside_development() -> None:
    response = await _get(_app(), "/sync-failed")

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"


@pytest.mark.asyncio
async def test_http_exception_detail_dict_is_unwrapped() -> None:
    response = await _get(_app(), "/http")

    assert response.status_code == 404
    assert response.json() == {"success": False, "error": "Session not found", "code": "not_found"}


@pytest.mark.asyncio
async def test_unexpected_errors_are_logged_and_masked(monkeypatch) -> None:
    capture = _CaptureLogger()
    monkeypatch.setattr(error_handlers_module, "logger", capture)

    response = await _get(_app(), "/boom")

    assert response.status_code == 500
    assert response.json() == {
        "success": False,
        "error": "Internal server error",
        "code": "internal_error",
    }
    assert capture.calls[-1][1] == "unhandled_exception"


@pytest.mark.asyncio
async def test_unexpected_errors_show_detail_in_development() -> None:
    response = await _get(_app("development"), "/boom")
    assert response.json()["error"] == "secret internals"


@pytest.mark.asyncio
async def test_validation_errors_become_readable_400() -> None:
    response = await _get(_app(), "/validated?limit=500")

    assert response.status_code == 400
    body = response.json()
    assert body["code"] == "validation_error"
    assert body["error"].startswith("Invalid request: limit:")
