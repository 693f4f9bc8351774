"""Database-backed login session store.

Only persistence lives here: cookie handling belongs to whatever HTTP layer
sits on top.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import UserSession
from .security import generate_token

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _aware(value: datetime) -> datetime:
    # SQLite hands back naive datetimes even for timezone-aware columns
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


class SessionStore:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        ttl: timedelta = timedelta(days=1),
    ):
        self._session_factory = session_factory
        self.ttl = ttl

    async def create(self, user_id: int, ttl: timedelta | None = None) -> str:
        token = generate_token()
        now = _utcnow()
        async with self._session_factory() as db:
            db.add(
                UserSession(
                    user_id=user_id,
                    token=token,
                    created_at=now,
                    expires_at=now + (ttl or self.ttl),
                )
            )
            await db.commit()
        logger.debug("[Sessions] Created session for user %s", user_id)
        return token

    async def get_user_id(self, token: str) -> int | None:
        """User id for a live session token, or None if unknown/expired/revoked."""
        async with self._session_factory() as db:
            row = (
                await db.scalars(select(UserSession).where(UserSession.token == token))
            ).first()
        if row is None or row.revoked_at is not None:
            return None
        if _aware(row.expires_at) <= _utcnow():
            return None
        return row.user_id

    async def revoke(self, token: str) -> None:
        async with self._session_factory() as db:
            row = (
                await db.scalars(select(UserSession).where(UserSession.token == token))
            ).first()
            if row is None:
                return
            row.revoked_at = _utcnow()
            await db.commit()

    async def purge_expired(self) -> int:
        async with self._session_factory() as db:
            result = await db.execute(
                delete(UserSession).where(
                    or_(
                        UserSession.expires_at <= _utcnow(),
                        UserSession.revoked_at.is_not(None),
                    )
                )
            )
            await db.commit()
        logger.info("[Sessions] Purged %s stale sessions", result.rowcount)
        return result.rowcount
