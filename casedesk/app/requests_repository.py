"""
Case and extension request repositories.
Handles creation (including resubmissions), per-user and admin listings,
status lifecycle, per-user hiding, archiving and deletion.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Generic, TypeVar

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .diffing import changes_or_none, compute_diff
from .exceptions import (
    InvalidStatusTransitionError,
    RequestNotFoundError,
    StatusConflictError,
)
from .models import (
    CaseRequest,
    CaseStatus,
    ExtensionRequest,
    ExtensionStatus,
    RequestKind,
)
from .schemas import CaseRequestCreate, ExtensionRequestCreate
from .transitions import parse_status, validate

logger = logging.getLogger(__name__)

RequestT = TypeVar("RequestT", CaseRequest, ExtensionRequest)

PENDING = CaseStatus.PENDING.value
COMPLETE = CaseStatus.COMPLETE.value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _RequestRepository(Generic[RequestT]):
    model: type[RequestT]
    kind: RequestKind

    def __init__(self, db: AsyncSession):
        self.db = db

    # -- reads: store errors are logged and reported as "nothing found" --

    async def get(self, request_id: int) -> RequestT | None:
        try:
            return await self.db.get(self.model, request_id)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "[Requests] Error getting %s request %s: %s",
                self.kind.value,
                request_id,
                e,
            )
            return None

    async def get_by_user(self, user_id: int) -> list[RequestT]:
        """Requests owned by ``user_id`` that are neither archived nor hidden by them."""
        stmt = (
            select(self.model)
            .where(
                self.model.user_id == user_id,
                self.model.is_archived == False,  # noqa: E712
            )
            .order_by(self.model.created_at.desc(), self.model.id.desc())
        )
        try:
            rows = list((await self.db.scalars(stmt)).all())
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "[Requests] Error getting %s requests for user %s: %s",
                self.kind.value,
                user_id,
                e,
            )
            return []

        # hidden_by is a JSON list; membership is checked here so the query
        # stays portable across JSON dialects
        visible = [row for row in rows if user_id not in (row.hidden_by or [])]
        logger.debug(
            "[Requests] Found %s %s requests for user %s",
            len(visible),
            self.kind.value,
            user_id,
        )
        return visible

    async def get_all(self) -> list[RequestT]:
        stmt = (
            select(self.model)
            .where(self.model.is_archived == False)  # noqa: E712
            .order_by(self.model.created_at.desc(), self.model.id.desc())
        )
        try:
            return list((await self.db.scalars(stmt)).all())
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "[Requests] Error listing %s requests: %s", self.kind.value, e
            )
            return []

    # -- writes: every failure propagates --

    async def _commit(self) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def _insert(self, request: RequestT) -> RequestT:
        self.db.add(request)
        await self._commit()
        await self.db.refresh(request)
        logger.info(
            "[Requests] Created %s request %s with status %s",
            self.kind.value,
            request.id,
            request.status.value,
        )
        return request

    async def _get_for_write(self, request_id: int) -> RequestT:
        stmt = (
            select(self.model)
            .where(self.model.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        request = (await self.db.scalars(stmt)).first()
        if request is None:
            await self.db.rollback()
            logger.error(
                "[Requests] %s request %s not found", self.kind.value, request_id
            )
            raise RequestNotFoundError(self.kind, request_id)
        return request

    async def update_status(
        self, request_id: int, new_status: Any, feedback: str | None = None
    ) -> RequestT:
        """Move a request to ``new_status`` if the lifecycle allows it.

        The row is locked for the read and the write only applies while the
        status is still the one that was validated, so two admins acting at
        once cannot both win.
        """
        logger.info(
            "[Requests] Attempting to update %s request %s to status: %s",
            self.kind.value,
            request_id,
            new_status,
        )
        request = await self._get_for_write(request_id)
        current = request.status

        target = parse_status(self.kind, new_status)
        if target is None or not validate(self.kind, current, target):
            await self.db.rollback()
            error = InvalidStatusTransitionError(current, new_status)
            logger.error("[Requests] %s", error)
            raise error

        now = _utcnow()
        values: dict[str, Any] = {"status": target, "updated_at": now}
        if feedback is not None:
            values["admin_feedback"] = feedback
        if target.value == PENDING:
            values["received_at"] = now
        elif target.value == COMPLETE:
            values["completed_at"] = now

        try:
            result = await self.db.execute(
                update(self.model)
                .where(self.model.id == request_id, self.model.status == current)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
        except SQLAlchemyError:
            await self.db.rollback()
            raise

        if result.rowcount != 1:
            await self.db.rollback()
            logger.error(
                "[Requests] %s request %s changed status concurrently",
                self.kind.value,
                request_id,
            )
            raise StatusConflictError(request_id, current)

        await self._commit()
        await self.db.refresh(request)
        logger.info(
            "[Requests] Successfully updated %s request %s to status: %s",
            self.kind.value,
            request_id,
            target.value,
        )
        return request

    async def hide(self, request_id: int, user_id: int) -> None:
        """Hide a request from ``user_id``'s own list. Idempotent."""
        request = await self._get_for_write(request_id)
        hidden_by = list(request.hidden_by or [])
        if user_id in hidden_by:
            await self.db.rollback()
            return
        request.hidden_by = [*hidden_by, user_id]
        await self._commit()
        logger.info(
            "[Requests] User %s hid %s request %s",
            user_id,
            self.kind.value,
            request_id,
        )

    async def archive(self, request_id: int) -> None:
        request = await self._get_for_write(request_id)
        request.is_archived = True
        await self._commit()
        logger.info("[Requests] Archived %s request %s", self.kind.value, request_id)

    async def delete(self, request_id: int) -> None:
        request = await self._get_for_write(request_id)
        await self.db.delete(request)
        await self._commit()
        logger.info("[Requests] Deleted %s request %s", self.kind.value, request_id)


class CaseRequestRepository(_RequestRepository[CaseRequest]):
    model = CaseRequest
    kind = RequestKind.CASE

    async def create(
        self,
        payload: CaseRequestCreate,
        user_id: int,
        original_request_id: int | None = None,
    ) -> CaseRequest:
        """Insert a new case request, or a resubmission of an earlier one.

        A resubmission records which tracked fields changed relative to the
        original. If the original cannot be found the request is still stored
        as a resubmission, just without a diff.
        """
        now = _utcnow()
        is_resubmission = original_request_id is not None
        changes = None

        if is_resubmission:
            original = await self.get(original_request_id)
            if original is None:
                logger.warning(
                    "[Requests] Original case request %s not found; storing resubmission without changes",
                    original_request_id,
                )
            else:
                changes = changes_or_none(compute_diff(original, payload))

        request = CaseRequest(
            **payload.model_dump(),
            user_id=user_id,
            status=CaseStatus.RESUBMITTED if is_resubmission else CaseStatus.SUBMITTED,
            is_resubmission=is_resubmission,
            original_request_id=original_request_id,
            changes=changes,
            hidden_by=[],
            is_archived=False,
            created_at=now,
            updated_at=now,
        )
        return await self._insert(request)


class ExtensionRequestRepository(_RequestRepository[ExtensionRequest]):
    model = ExtensionRequest
    kind = RequestKind.EXTENSION

    async def create(
        self,
        payload: ExtensionRequestCreate,
        user_id: int,
        original_request_id: int | None = None,
    ) -> ExtensionRequest:
        if original_request_id is not None:
            # ExtensionStatus has no resubmitted state to start from
            raise ValueError("Extension requests cannot be resubmitted")

        now = _utcnow()
        request = ExtensionRequest(
            **payload.model_dump(),
            user_id=user_id,
            status=ExtensionStatus.SUBMITTED,
            is_resubmission=False,
            hidden_by=[],
            is_archived=False,
            created_at=now,
            updated_at=now,
        )
        return await self._insert(request)
