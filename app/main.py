"""FastAPI application factory."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI

from app.config import configure_structlog, get_settings
from app.core.sessions import build_session_sweeper
from app.db.session import dispose_engine
from app.error_handlers import register_exception_handlers
from app.middleware import (
    CorrelationIdMiddleware,
    LoggingMiddleware,
    RateLimitMiddleware,
    SecurityHeadersMiddleware,
)
from app.middleware.rate_limit import get_rate_limit_counter
from app.responses import success_response
from app.routers import (
    api_key_stats,
    api_keys,
    auth,
    auth_stats,
    dashboard,
    health,
    rate_limit,
    sessions,
    stats,
    sync,
    users,
)
from app.services.audit_sink import get_audit_sink

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Run the audit sink and session sweeper for the lifetime of the process."""
    audit_sink = get_audit_sink()
    sweeper = build_session_sweeper()
    audit_sink.start()
    sweeper.start()
    logger.info("application_started")
    try:
        yield
    finally:
        await sweeper.stop()
        await audit_sink.stop()
        await dispose_engine()
        logger.info("application_stopped")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_structlog(settings)

    app = FastAPI(title=settings.app.service, lifespan=lifespan)
    register_exception_handlers(app, settings.app.environment)

    app.add_middleware(RateLimitMiddleware, counter=get_rate_limit_counter())
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(SecurityHeadersMiddleware, enable_hsts=settings.app.cookie_secure)
    app.add_middleware(CorrelationIdMiddleware)

    @app.get("/", include_in_schema=False)
    async def root():
        return success_response(
            data={"service": settings.app.service, "environment": settings.app.environment},
            message="Pulse tracker API is running",
        )

    app.include_router(health.router)
    app.include_router(auth.router)
    app.include_router(sessions.router)
    app.include_router(auth_stats.router)
    app.include_router(api_keys.router)
    app.include_router(api_key_stats.router)
    app.include_router(sync.router)
    app.include_router(stats.router)
    app.include_router(users.router)
    app.include_router(dashboard.router)
    app.include_router(rate_limit.router)
    return app


app = create_app()
