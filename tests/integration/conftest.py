"""Shared integration-test fixtures using Postgres and Redis testcontainers."""

from __future__ import annotations

import os
from collections.abc import Callable, Iterator
from typing import Any

import pytest
from alembic import command
from alembic.config import Config
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from testcontainers.postgres import PostgresContainer
from testcontainers.redis import RedisContainer

from docker.errors import DockerException


def _clear_dependency_caches() -> None:
    """Clear all relevant singleton/lru-cache dependencies between test phases."""
    from app.config import get_settings
    from app.core.cache import get_redis_client
    from app.core.oauth import get_google_oauth_client
    from app.core.sessions import get_session_store
    from app.core.tokens import get_credential_issuer
    from app.db.session import (
        get_analytics_engine,
        get_analytics_session_factory,
        get_engine,
        get_session_factory,
    )
    from app.middleware.rate_limit import get_rate_limit_counter
    from app.services.api_key_service import get_api_key_service
    from app.services.audit_sink import get_audit_sink
    from app.services.auth_service import get_auth_service
    from app.services.oauth_service import get_oauth_service
    from app.services.stats_service import get_stats_service
    from app.services.sync_service import get_sync_service
    from app.services.user_service import get_user_service
    from app.services.widgets_service import get_widgets_service

    get_settings.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()
    get_analytics_engine.cache_clear()
    get_analytics_session_factory.cache_clear()
    get_redis_client.cache_clear()
    get_credential_issuer.cache_clear()
    get_session_store.cache_clear()
    get_google_oauth_client.cache_clear()
    get_audit_sink.cache_clear()
    get_user_service.cache_clear()
    get_auth_service.cache_clear()
    get_api_key_service.cache_clear()
    get_oauth_service.cache_clear()
    get_sync_service.cache_clear()
    get_stats_service.cache_clear()
    get_widgets_service.cache_clear()
    get_rate_limit_counter.cache_clear()


async def _dispose_async_singletons() -> None:
    """Dispose loop-bound async resources before changing event loops."""
    from app.core.cache import get_redis_client
    from app.db.session import dispose_engine, get_engine

    if get_redis_client.cache_info().currsize:
        await get_redis_client().aclose()
    if get_engine.cache_info().currsize:
        await dispose_engine()


def _redis_connection_url(redis: RedisContainer) -> str:
    """Return a redis:// URL across testcontainers versions."""
    host = redis.get_container_host_ip()
    port = redis.get_exposed_port(6379)
    return f"redis://{host}:{port}/0"


def _postgres_async_url(postgres: PostgresContainer) -> str:
    """Return a postgresql+asyncpg URL across testcontainers versions."""
    try:
        # testcontainers>=4 supports explicitly disabling default psycopg2 driver.
        postgres_url = postgres.get_connection_url(driver=None)
    except TypeError:
        postgres_url = postgres.get_connection_url()

    if postgres_url.startswith("postgresql+"):
        postgres_url = "postgresql://" + postgres_url.split("://", 1)[1]

    return postgres_url.replace("postgresql://", "postgresql+asyncpg://", 1)


def _set_env_values(env_values: dict[str, str]) -> Callable[[], None]:
    """Apply env vars and return a restore callback."""
    original = {key: os.environ.get(key) for key in env_values}
    os.environ.update(env_values)

    def _restore() -> None:
        for key, value in original.items():
            if value is None:
                os.environ.pop(key, None)
            else:
                os.environ[key] = value

    return _restore


@pytest.fixture(scope="session")
def integration_env() -> Iterator[dict[str, str]]:
    """Start Postgres/Redis containers and configure app settings for integration tests."""
    try:
        postgres = PostgresContainer("postgres:16")
        redis = RedisContainer("redis:7")
        postgres.start()
        redis.start()
    except DockerException as exc:
        if os.environ.get("CI", "").lower() in {"1", "true", "yes"}:
            pytest.fail(
                f"Docker daemon unavailable in CI for testcontainers-backed integration tests: {exc}"
            )
        pytest.skip(f"Docker daemon unavailable for testcontainers-backed integration tests: {exc}")

    database_url = _postgres_async_url(postgres)
    redis_url = _redis_connection_url(redis)

    env_values = {
        "APP__ENVIRONMENT": "development",
        "APP__SERVICE": "pulse-tracker",
        "APP__LOG_LEVEL": "WARNING",
        "APP__FRONTEND_URL": "http://frontend.test",
        "DATABASE__URL": database_url,
        "REDIS__URL": redis_url,
        "JWT__ACCESS_TOKEN_SECRET": "integration-access-secret",
        "JWT__REFRESH_TOKEN_SECRET": "integration-refresh-secret",
        "OAUTH__GOOGLE_CLIENT_ID": "integration-google-client-id",
        "OAUTH__GOOGLE_CLIENT_SECRET": "integration-google-client-secret",
        "OAUTH__GOOGLE_REDIRECT_URI": "http://localhost:8000/auth/google/callback",
        "RATE_LIMIT__DEFAULT_REQUESTS_PER_MINUTE": "10000",
        "RATE_LIMIT__AUTH_REQUESTS_PER_MINUTE": "10000",
        "RATE_LIMIT__SYNC_REQUESTS_PER_MINUTE": "10000",
    }

    restore_env = _set_env_values(env_values)
    _clear_dependency_caches()

    alembic_cfg = Config("alembic.ini")
    alembic_cfg.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(alembic_cfg, "head")

    try:
        yield {"database_url": database_url, "redis_url": redis_url}
    finally:
        try:
            _clear_dependency_caches()
        finally:
            restore_env()
            postgres.stop()
            redis.stop()


@pytest.fixture(scope="function", autouse=True)
async def reset_state(
    integration_env: dict[str, str],
) -> Iterator[None]:
    """Clear DB tables and flush Redis; isolate async singletons per event loop."""
    del integration_env
    from app.core.cache import get_redis_client
    from app.db.session import get_session_factory
    from app.models import (
        AggregatedPulse,
        ApiKeyEventLog,
        AuthLog,
        SyncEventLog,
        User,
        UserSession,
        UserWidget,
    )

    await _dispose_async_singletons()
    _clear_dependency_caches()

    session_factory = get_session_factory()
    async with session_factory() as session:
        for model in (
            AuthLog,
            ApiKeyEventLog,
            AggregatedPulse,
            SyncEventLog,
            UserWidget,
            UserSession,
            User,
        ):
            await session.execute(delete(model))
        await session.commit()

    await get_redis_client().flushdb()
    try:
        yield
    finally:
        await _dispose_async_singletons()
        _clear_dependency_caches()


@pytest.fixture(scope="function")
async def db_session_factory(
    integration_env: dict[str, str],
    reset_state: None,
) -> async_sessionmaker[AsyncSession]:
    """Expose async session factory bound to integration Postgres."""
    del integration_env, reset_state
    from app.db.session import get_session_factory

    return get_session_factory()


@pytest.fixture(scope="function")
async def db_session(
    db_session_factory: async_sessionmaker[AsyncSession],
) -> Iterator[AsyncSession]:
    """Yield a write-capable async DB session for test seeding and assertions."""
    async with db_session_factory() as session:
        yield session


@pytest.fixture(scope="function")
def app_factory(integration_env: dict[str, str]) -> Callable[[], Any]:
    """Build isolated FastAPI app instances for integration tests."""
    del integration_env
    from app.main import create_app

    def _factory() -> Any:
        return create_app()

    return _factory


@pytest.fixture(scope="function")
async def user_factory(db_session: AsyncSession) -> Callable[..., Any]:
    """Create user rows as a first Google sign-in would."""
    from app.models.user import User

    async def _create(email: str, api_key: str | None = None) -> User:
        user = User(
            google_id=f"google-{email}",
            email=email,
            full_name=email.split("@")[0].title(),
            api_key=api_key,
        )
        db_session.add(user)
        await db_session.commit()
        await db_session.refresh(user)
        return user

    return _create


@pytest.fixture(scope="function")
async def login(db_session: AsyncSession) -> Callable[..., Any]:
    """Issue real session-bound credentials for a user, as the OAuth callback does."""
    from app.core.context import ClientMetadata
    from app.core.devices import parse_user_agent
    from app.services.auth_service import get_auth_service

    async def _login(user: Any, user_agent: str = "pytest-agent", ip_address: str = "127.0.0.1"):
        client = ClientMetadata(
            ip_address=ip_address,
            user_agent=user_agent,
            device=parse_user_agent(user_agent),
        )
        return await get_auth_service().issue_session_tokens(db_session, user, client)

    return _login


@pytest.fixture(scope="function")
def flush_audit() -> Callable[[], Any]:
    """Drain the in-process audit queue so tests can query the analytical tables."""
    from app.services.audit_sink import get_audit_sink

    async def _flush() -> None:
        audit_sink = get_audit_sink()
        while audit_sink.pending:
            await audit_sink.flush()

    return _flush

