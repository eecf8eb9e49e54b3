"""Async SQLAlchemy engines and session factories for both stores."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from functools import lru_cache

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import get_settings


@lru_cache
def get_engine() -> AsyncEngine:
    """Build and cache the relational store engine."""
    settings = get_settings()
    return create_async_engine(settings.database.url, pool_pre_ping=True)


@lru_cache
def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Build and cache the relational session factory."""
    return async_sessionmaker(bind=get_engine(), autoflush=False, expire_on_commit=False)


@lru_cache
def get_analytics_engine() -> AsyncEngine:
    """Build and cache the analytical store engine, sharing the pool when URLs match."""
    settings = get_settings()
    if settings.analytics_url == settings.database.url:
        return get_engine()
    return create_async_engine(settings.analytics_url, pool_pre_ping=True)


@lru_cache
def get_analytics_session_factory() -> async_sessionmaker[AsyncSession]:
    """Build and cache the analytical session factory."""
    return async_sessionmaker(
        bind=get_analytics_engine(), autoflush=False, expire_on_commit=False
    )


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield a relational session for request-scoped use."""
    session_factory = get_session_factory()
    async with session_factory() as session:
        yield session


async def get_analytics_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Yield an analytical session for request-scoped reads and writes."""
    session_factory = get_analytics_session_factory()
    async with session_factory() as session:
        yield session


async def dispose_engine() -> None:
    """Dispose both engines and close pooled connections."""
    analytics_engine = get_analytics_engine()
    engine = get_engine()
    if analytics_engine is not engine:
        await analytics_engine.dispose()
    await engine.dispose()
