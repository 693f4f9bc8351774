"""
User persistence and the admin approval workflow.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import desc, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .exceptions import UserNotFoundError
from .models import User
from .schemas import UserCreate
from .security import hash_password

logger = logging.getLogger(__name__)

# Columns an admin (or the profile page) may change through update_user
UPDATABLE_FIELDS = frozenset(
    {"username", "email", "password_hash", "is_admin", "is_approved", "approval_feedback"}
)


class UserRepository:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def _first(self, stmt: Any, what: str) -> User | None:
        try:
            return (await self.db.scalars(stmt)).first()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("[Users] Error getting user by %s: %s", what, e)
            return None

    async def get_user(self, user_id: int) -> User | None:
        return await self._first(select(User).where(User.id == user_id), "id")

    async def get_user_by_username(self, username: str) -> User | None:
        return await self._first(
            select(User).where(User.username == username), "username"
        )

    async def get_user_by_email(self, email: str) -> User | None:
        return await self._first(select(User).where(User.email == email), "email")

    async def _has_users(self) -> bool:
        return await self.db.scalar(select(User.id).limit(1)) is not None

    async def create_user(self, payload: UserCreate) -> User:
        """Register a user. The very first account becomes an approved admin.

        The bootstrap flag is unique, so if two registrations both see an empty
        table only one insert keeps it; the loser is stored as a regular user.
        """
        if not await self._has_users():
            try:
                return await self._insert(payload, bootstrap=True)
            except IntegrityError:
                # Either another bootstrap admin won, or username/email is
                # taken; the regular insert below tells the two apart.
                logger.warning(
                    "[Users] Lost first-user race for %s; registering as regular user",
                    payload.username,
                )
        return await self._insert(payload, bootstrap=False)

    async def _insert(self, payload: UserCreate, bootstrap: bool) -> User:
        user = User(
            username=payload.username,
            email=payload.email,
            password_hash=hash_password(payload.password),
            is_admin=bootstrap,
            is_approved=bootstrap,
            bootstrap_admin=True if bootstrap else None,
            registration_date=datetime.now(timezone.utc),
        )
        self.db.add(user)
        await self._commit()
        await self.db.refresh(user)
        if bootstrap:
            logger.info("[Users] First user %s registered as admin", user.username)
        else:
            logger.info("[Users] Registered user %s (pending approval)", user.username)
        return user

    async def _get_for_write(self, user_id: int) -> User:
        user = await self.db.get(User, user_id, populate_existing=True)
        if user is None:
            logger.error("[Users] User %s not found", user_id)
            raise UserNotFoundError(user_id)
        return user

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def update_user(self, user_id: int, **updates: Any) -> User:
        unknown = set(updates) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update user fields: {', '.join(sorted(unknown))}")

        user = await self._get_for_write(user_id)
        for field, value in updates.items():
            setattr(user, field, value)
        await self._commit()
        return user

    async def get_pending(self) -> list[User]:
        """Users awaiting approval, oldest registration first."""
        stmt = (
            select(User)
            .where(User.is_approved == False)  # noqa: E712
            .order_by(User.registration_date, User.id)
        )
        return await self._list(stmt, "pending")

    async def get_approved(self) -> list[User]:
        stmt = (
            select(User)
            .where(User.is_approved == True)  # noqa: E712
            .order_by(desc(User.registration_date), desc(User.id))
        )
        return await self._list(stmt, "approved")

    async def _list(self, stmt: Any, what: str) -> list[User]:
        try:
            return list((await self.db.scalars(stmt)).all())
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("[Users] Error listing %s users: %s", what, e)
            return []

    async def approve(self, user_id: int) -> User:
        user = await self._get_for_write(user_id)
        user.is_approved = True
        await self._commit()
        logger.info("[Users] Approved user %s", user.username)
        return user

    async def reject(self, user_id: int, feedback: str) -> User:
        """Mark a user unapproved with feedback. The account is kept for review."""
        user = await self._get_for_write(user_id)
        user.is_approved = False
        user.approval_feedback = feedback
        await self._commit()
        logger.info("[Users] Rejected user %s", user.username)
        return user

    async def remove(self, user_id: int) -> None:
        user = await self._get_for_write(user_id)
        await self.db.delete(user)
        await self._commit()
        logger.info("[Users] Removed user %s", user_id)
