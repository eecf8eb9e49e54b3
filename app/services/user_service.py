"""User lookup and identity-provider upsert services."""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ExternalProfile:
    """Profile returned by an external identity provider."""

    provider_user_id: str
    email: str
    full_name: str | None = None
    avatar_url: str | None = None


class UserService:
    """Service responsible for user retrieval and sign-in upserts."""

    async def get_user_by_id(self, db_session: AsyncSession, user_id: int) -> User | None:
        """Fetch a user by numeric id."""
        result = await db_session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_google_id(
        self, db_session: AsyncSession, google_id: str
    ) -> User | None:
        """Fetch a user by Google subject identifier."""
        result = await db_session.execute(select(User).where(User.google_id == google_id))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, db_session: AsyncSession, email: str) -> User | None:
        """Fetch a user by case-insensitive email."""
        result = await db_session.execute(
            select(User).where(func.lower(User.email) == email.lower())
        )
        return result.scalar_one_or_none()

    async def upsert_google_user(
        self, db_session: AsyncSession, profile: ExternalProfile
    ) -> tuple[User, bool]:
        """Create the user on first sign-in, otherwise refresh profile fields."""
        try:
            user = await self.get_user_by_google_id(db_session, profile.provider_user_id)
            if user is None:
                user = await self.get_user_by_email(db_session, profile.email)
            created = user is None
            if user is None:
                user = User(
                    google_id=profile.provider_user_id,
                    email=profile.email,
                    full_name=profile.full_name,
                    avatar_url=profile.avatar_url,
                )
                db_session.add(user)
            else:
                user.google_id = profile.provider_user_id
                user.email = profile.email
                user.full_name = profile.full_name
                user.avatar_url = profile.avatar_url
            await db_session.flush()
        except Exception:
            await db_session.rollback()
            raise
        await db_session.commit()
        logger.info("user_signed_in", user_id=user.id, created=created)
        return user, created


@lru_cache
def get_user_service() -> UserService:
    """Create and cache user service dependency."""
    return UserService()
