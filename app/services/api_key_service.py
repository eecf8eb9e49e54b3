"""API key lifecycle and validation service."""

from __future__ import annotations

from datetime import UTC, datetime
from functools import lru_cache

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.api_keys import APIKeyCore
from app.core.context import ClientMetadata
from app.models.analytics import ApiKeyEventType
from app.models.user import User
from app.services.audit_sink import ApiKeyEvent, AuditSink, get_audit_sink

logger = structlog.get_logger(__name__)


class APIKeyServiceError(Exception):
    """Raised for API key service failures."""

    def __init__(self, detail: str, code: str, status_code: int) -> None:
        super().__init__(detail)
        self.detail = detail
        self.code = code
        self.status_code = status_code


class APIKeyService:
    """Issue, rotate, and validate the single per-user API key.

    Keys are stored as-is so they stay retrievable from the dashboard.
    """

    def __init__(self, core: APIKeyCore, audit_sink: AuditSink) -> None:
        self._core = core
        self._audit_sink = audit_sink

    async def get_api_key(self, db_session: AsyncSession, user_id: int) -> str | None:
        """Return the user's current API key, if any."""
        result = await db_session.execute(select(User.api_key).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def create_api_key(
        self, db_session: AsyncSession, user_id: int, client: ClientMetadata
    ) -> str:
        """Create a key for a user that does not have one yet."""
        existing = await self.get_api_key(db_session, user_id)
        if existing:
            raise APIKeyServiceError("API key already exists.", "api_key_exists", 409)
        raw_key = await self._store_key(db_session, user_id)
        self._record(user_id, ApiKeyEventType.CREATED, client)
        return raw_key

    async def regenerate_api_key(
        self, db_session: AsyncSession, user_id: int, client: ClientMetadata
    ) -> str:
        """Replace the user's key, invalidating the previous one immediately."""
        had_key = bool(await self.get_api_key(db_session, user_id))
        raw_key = await self._store_key(db_session, user_id)
        if had_key:
            self._record(user_id, ApiKeyEventType.REVOKED, client)
            self._record(user_id, ApiKeyEventType.REGENERATED, client)
        self._record(user_id, ApiKeyEventType.CREATED, client)
        return raw_key

    async def validate_api_key(self, db_session: AsyncSession, raw_key: str) -> User | None:
        """Resolve a presented key to its owner and stamp its last use."""
        if not self._core.is_valid_format(raw_key):
            return None
        result = await db_session.execute(select(User).where(User.api_key == raw_key))
        user = result.scalar_one_or_none()
        if user is None or not self._core.matches(user.api_key, raw_key):
            return None
        now = datetime.now(UTC)
        try:
            await db_session.execute(
                update(User).where(User.id == user.id).values(api_key_last_used_at=now)
            )
        except Exception:
            await db_session.rollback()
            raise
        await db_session.commit()
        return user

    async def _store_key(self, db_session: AsyncSession, user_id: int) -> str:
        raw_key = self._core.generate_raw_key()
        try:
            result = await db_session.execute(
                update(User)
                .where(User.id == user_id)
                .values(api_key=raw_key, api_key_created_at=datetime.now(UTC))
            )
        except Exception:
            await db_session.rollback()
            raise
        if not result.rowcount:
            await db_session.rollback()
            raise APIKeyServiceError("User not found.", "not_found", 404)
        await db_session.commit()
        logger.info("api_key_issued", user_id=user_id)
        return raw_key

    def _record(
        self, user_id: int, event_type: ApiKeyEventType, client: ClientMetadata
    ) -> None:
        self._audit_sink.record_api_key_event(
            ApiKeyEvent(
                user_id=user_id,
                event_type=event_type,
                ip_address=client.ip_address,
                user_agent=client.user_agent,
                device=client.device,
            )
        )


@lru_cache
def get_api_key_service() -> APIKeyService:
    """Create and cache API key service."""
    return APIKeyService(core=APIKeyCore(), audit_sink=get_audit_sink())
