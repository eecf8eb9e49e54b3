"""JSON envelope helpers shared by every route."""

from __future__ import annotations

from typing import Any

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse


def success_response(
    data: Any = None, message: str | None = None, status_code: int = 200
) -> JSONResponse:
    """Build a ``{success: true, data?, message?}`` response."""
    content: dict[str, Any] = {"success": True}
    if data is not None:
        content["data"] = jsonable_encoder(data)
    if message is not None:
        content["message"] = message
    return JSONResponse(status_code=status_code, content=content)


def error_response(
    status_code: int,
    error: str,
    code: str | None = None,
    data: Any = None,
) -> JSONResponse:
    """Build a ``{success: false, error, code?}`` response."""
    content: dict[str, Any] = {"success": False, "error": error}
    if code is not None:
        content["code"] = code
    if data is not None:
        content["data"] = jsonable_encoder(data)
    return JSONResponse(status_code=status_code, content=content)
