"""Device session persistence and lifecycle management."""

from __future__ import annotations

import asyncio
import secrets
from collections.abc import Callable
from datetime import UTC, datetime
from functools import lru_cache

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from app.config import get_settings
from app.core.devices import UNKNOWN, UNKNOWN_DEVICE, DeviceInfo
from app.db.session import get_session_factory
from app.models.session import UserSession

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(UTC)


def _family(value: str) -> str:
    """Return the leading token of a browser or OS label."""
    stripped = value.strip()
    return stripped.split(" ")[0] if stripped else stripped


class SessionStore:
    """Relational store for per-device sessions.

    Every mutation is a single statement followed by a commit. On failure the
    transaction is rolled back and the error propagates to the caller.
    """

    def __init__(self, now: Callable[[], datetime] | None = None) -> None:
        self._now = now or _now

    @staticmethod
    def generate_session_id() -> str:
        """Generate a unique 64-character hex session identifier."""
        return secrets.token_hex(32)

    async def create_session(
        self,
        db: AsyncSession,
        user_id: int,
        refresh_id: str,
        device_info: DeviceInfo,
        ip_address: str,
        expires_at: datetime,
    ) -> str:
        """Insert a new active session row and return its id."""
        now = self._now()
        row = UserSession(
            id=self.generate_session_id(),
            user_id=user_id,
            refresh_token=refresh_id,
            device_name=device_info.device_name or UNKNOWN_DEVICE,
            device_type=device_info.device_type or UNKNOWN,
            browser=device_info.browser or UNKNOWN,
            os=device_info.os or UNKNOWN,
            ip_address=ip_address or "unknown",
            last_active=now,
            expires_at=expires_at,
            is_revoked=False,
            created_at=now,
        )
        try:
            db.add(row)
            await db.flush()
        except Exception:
            await db.rollback()
            raise
        await db.commit()
        logger.info("session_created", user_id=user_id, session_id=row.id)
        return row.id

    async def find_existing_session(
        self,
        db: AsyncSession,
        user_id: int,
        browser: str,
        os: str,
        device_type: str,
        ip_address: str,
    ) -> UserSession | None:
        """Find an active session for the same device, exact match first."""
        exact = (
            self._active_statement()
            .where(
                UserSession.user_id == user_id,
                UserSession.browser == browser,
                UserSession.os == os,
                UserSession.device_type == device_type,
                UserSession.ip_address == ip_address,
            )
            .order_by(UserSession.last_active.desc())
            .limit(1)
        )
        result = await db.execute(exact)
        session_row = result.scalars().first()
        if session_row is not None:
            return session_row

        # Tolerates user-agent version drift; ignores IP.
        loose = (
            self._active_statement()
            .where(
                UserSession.user_id == user_id,
                UserSession.device_type == device_type,
                UserSession.browser.startswith(_family(browser), autoescape=True),
                UserSession.os.startswith(_family(os), autoescape=True),
            )
            .order_by(UserSession.last_active.desc())
            .limit(1)
        )
        result = await db.execute(loose)
        return result.scalars().first()

    async def update_session_token(
        self,
        db: AsyncSession,
        session_id: str,
        refresh_id: str,
        expires_at: datetime,
    ) -> bool:
        """Rotate the refresh identifier of a reused session in place."""
        statement = (
            update(UserSession)
            .where(UserSession.id == session_id, UserSession.is_revoked.is_(False))
            .values(refresh_token=refresh_id, expires_at=expires_at, last_active=self._now())
        )
        return await self._execute_update(db, statement) > 0

    async def get_session_by_id(self, db: AsyncSession, session_id: str) -> UserSession | None:
        """Return the session when it exists and is active."""
        result = await db.execute(self._active_statement().where(UserSession.id == session_id))
        return result.scalar_one_or_none()

    async def get_session_by_refresh_id(
        self, db: AsyncSession, refresh_id: str, active_only: bool = True
    ) -> UserSession | None:
        """Return the session bound to an opaque refresh identifier."""
        statement = self._active_statement() if active_only else select(UserSession)
        result = await db.execute(statement.where(UserSession.refresh_token == refresh_id))
        return result.scalars().first()

    async def list_active_sessions(self, db: AsyncSession, user_id: int) -> list[UserSession]:
        """List a user's active sessions, most recently active first."""
        result = await db.execute(
            self._active_statement()
            .where(UserSession.user_id == user_id)
            .order_by(UserSession.last_active.desc())
        )
        return list(result.scalars().all())

    async def touch_activity(self, db: AsyncSession, session_id: str) -> None:
        """Bump last_active to now."""
        statement = (
            update(UserSession)
            .where(UserSession.id == session_id)
            .values(last_active=self._now())
        )
        await self._execute_update(db, statement)

    async def revoke(self, db: AsyncSession, session_id: str, user_id: int) -> bool:
        """Revoke a session only when it belongs to the given user."""
        statement = (
            update(UserSession)
            .where(
                UserSession.id == session_id,
                UserSession.user_id == user_id,
                UserSession.is_revoked.is_(False),
            )
            .values(is_revoked=True)
        )
        revoked = await self._execute_update(db, statement) > 0
        if revoked:
            logger.info("session_revoked", user_id=user_id, session_id=session_id)
        return revoked

    async def revoke_all_except(
        self, db: AsyncSession, user_id: int, keep_session_id: str
    ) -> int:
        """Revoke every other active session of the user."""
        statement = (
            update(UserSession)
            .where(
                UserSession.user_id == user_id,
                UserSession.id != keep_session_id,
                UserSession.is_revoked.is_(False),
                UserSession.expires_at > self._now(),
            )
            .values(is_revoked=True)
        )
        count = await self._execute_update(db, statement)
        logger.info("sessions_revoked", user_id=user_id, revoked_count=count)
        return count

    async def sweep_expired(self, db: AsyncSession) -> int:
        """Mark every session past its expiry as revoked."""
        statement = (
            update(UserSession)
            .where(UserSession.expires_at <= self._now(), UserSession.is_revoked.is_(False))
            .values(is_revoked=True)
        )
        count = await self._execute_update(db, statement)
        logger.info("sessions_swept", revoked_count=count)
        return count

    def _active_statement(self):
        """Select sessions that are neither revoked nor expired."""
        return select(UserSession).where(
            UserSession.is_revoked.is_(False),
            UserSession.expires_at > self._now(),
        )

    async def _execute_update(self, db: AsyncSession, statement) -> int:
        """Run an UPDATE, commit, and return the affected row count."""
        try:
            result = await db.execute(statement.execution_options(synchronize_session=False))
        except Exception:
            await db.rollback()
            raise
        await db.commit()
        return int(result.rowcount or 0)


class SessionSweeper:
    """Periodically revoke expired sessions in the background."""

    def __init__(
        self,
        session_store: SessionStore,
        session_factory: async_sessionmaker[AsyncSession],
        interval_seconds: float,
    ) -> None:
        self._session_store = session_store
        self._session_factory = session_factory
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Schedule the sweep loop on the running event loop."""
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the sweep loop and wait for it to exit."""
        if self._task is None:
            return
        self._stopping.set()
        await self._task
        self._task = None

    async def sweep_once(self) -> int:
        """Run one sweep in a fresh database session."""
        async with self._session_factory() as db:
            return await self._session_store.sweep_expired(db)

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.sweep_once()
            except Exception as exc:
                logger.error("session_sweep_failed", error=str(exc))
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval_seconds)
            except TimeoutError:
                continue


@lru_cache
def get_session_store() -> SessionStore:
    """Create and cache the session store."""
    return SessionStore()


def build_session_sweeper() -> SessionSweeper:
    """Create a sweeper bound to the relational session factory."""
    settings = get_settings()
    return SessionSweeper(
        session_store=get_session_store(),
        session_factory=get_session_factory(),
        interval_seconds=settings.sessions.sweep_interval_seconds,
    )
