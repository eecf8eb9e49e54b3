"""In-memory sliding-window rate limiting middleware."""

from __future__ import annotations

import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.config import get_settings
from app.core.devices import extract_client_ip
from app.responses import error_response

logger = structlog.get_logger(__name__)
WINDOW_SECONDS = 60.0
AUTH_PREFIX = "/auth/"
SYNC_PATH = "/sync"


@dataclass(frozen=True)
class WindowStatus:
    """Usage of one key in the current window."""

    limit: int
    remaining: int
    reset_after_seconds: int


def limit_for_path(path: str, default_limit: int, auth_limit: int, sync_limit: int) -> int:
    """Pick the per-minute limit that applies to ``path``."""
    if path.startswith(AUTH_PREFIX):
        return auth_limit
    if path == SYNC_PATH or path.startswith(f"{SYNC_PATH}/"):
        return sync_limit
    return default_limit


def rate_limit_key(path: str, client_ip: str) -> str:
    return f"{path}:{client_ip}"


class SlidingWindowCounter:
    """Per-key request timestamps kept for one rolling window.

    State is per process; instances behind a load balancer each count on their own.
    """

    def __init__(
        self,
        window_seconds: float = WINDOW_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}

    def hit(self, key: str, limit: int) -> bool:
        """Record a request for ``key`` and return False once ``limit`` is exceeded."""
        now = self._clock()
        hits = self._hits.setdefault(key, deque())
        while hits and hits[0] <= now - self._window_seconds:
            hits.popleft()
        if len(hits) >= limit:
            return False
        hits.append(now)
        return True

    def status(self, key: str, limit: int) -> WindowStatus:
        """Report usage of ``key`` without recording a hit.

        ``reset_after_seconds`` is when the oldest counted hit leaves the window, or a
        full window when nothing is counted.
        """
        now = self._clock()
        live = [stamp for stamp in self._hits.get(key, ()) if stamp > now - self._window_seconds]
        reset_after = live[0] + self._window_seconds - now if live else self._window_seconds
        return WindowStatus(
            limit=limit,
            remaining=max(0, limit - len(live)),
            reset_after_seconds=math.ceil(reset_after),
        )

    def prune(self) -> None:
        """Forget keys whose hits have all aged out."""
        cutoff = self._clock() - self._window_seconds
        for key in [key for key, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[key]

    def __len__(self) -> int:
        return len(self._hits)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Apply per-path, per-client sliding-window request limits."""

    def __init__(
        self,
        app,
        counter: SlidingWindowCounter | None = None,
        default_requests_per_minute: int | None = None,
        auth_requests_per_minute: int | None = None,
        sync_requests_per_minute: int | None = None,
    ) -> None:
        """Initialize middleware with optional explicit limits for testability."""
        super().__init__(app)
        limits = None
        if None in (default_requests_per_minute, auth_requests_per_minute, sync_requests_per_minute):
            limits = get_settings().rate_limit
        self._counter = counter if counter is not None else SlidingWindowCounter()
        self._default_limit = default_requests_per_minute or limits.default_requests_per_minute
        self._auth_limit = auth_requests_per_minute or limits.auth_requests_per_minute
        self._sync_limit = sync_requests_per_minute or limits.sync_requests_per_minute
        self._requests_since_prune = 0

    async def dispatch(self, request: Request, call_next) -> Response:
        """Reject requests exceeding the configured per-minute threshold."""
        path = request.url.path
        client_ip = extract_client_ip(request)
        if not self._counter.hit(rate_limit_key(path, client_ip), self._resolve_limit(path)):
            logger.warning("rate_limited", path=path, client_ip=client_ip)
            return error_response(
                status_code=429,
                error="Rate limit exceeded",
                code="rate_limited",
            )
        self._requests_since_prune += 1
        if self._requests_since_prune >= 1000:
            self._requests_since_prune = 0
            self._counter.prune()
        return await call_next(request)

    def _resolve_limit(self, path: str) -> int:
        """Resolve path-specific limit override."""
        return limit_for_path(path, self._default_limit, self._auth_limit, self._sync_limit)


@lru_cache
def get_rate_limit_counter() -> SlidingWindowCounter:
    """Process-wide counter shared by the middleware and the status route."""
    return SlidingWindowCounter()
