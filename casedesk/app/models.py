from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    String,
    Date,
    DateTime,
    Text,
    JSON,
    Enum,
    Integer,
    ForeignKey,
    Boolean,
    Index,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import Mapped, mapped_column
from enum import Enum as PyEnum
from .db import Base


class RequestKind(str, PyEnum):
    CASE = "case"
    EXTENSION = "extension"


class CaseStatus(str, PyEnum):
    SUBMITTED = "submitted"
    PENDING = "pending"
    RESUBMITTED = "resubmitted"
    REJECTED = "rejected"
    COMPLETE = "complete"


class ExtensionStatus(str, PyEnum):
    """Extension requests cannot be resubmitted, so there is no RESUBMITTED."""

    SUBMITTED = "submitted"
    PENDING = "pending"
    REJECTED = "rejected"
    COMPLETE = "complete"


def _enum_values(enum_cls: type[PyEnum]) -> list[str]:
    return [member.value for member in enum_cls]


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(
        String(150), unique=True, nullable=False, index=True
    )
    email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_approved: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    approval_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    registration_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    # True only on the bootstrap admin row, NULL everywhere else. The unique
    # constraint lets at most one registration win the first-user race.
    bootstrap_admin: Mapped[bool | None] = mapped_column(
        Boolean, unique=True, nullable=True
    )


class UserSession(Base):
    __tablename__ = "user_sessions"
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    token: Mapped[str] = mapped_column(
        String(255), nullable=False, unique=True, index=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    revoked_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class RequestMixin:
    """Columns shared by case and extension requests."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Owner id without an FK: removing a user keeps their request history
    user_id: Mapped[int] = mapped_column(Integer, nullable=False)

    declarant_company: Mapped[str] = mapped_column(String(255), nullable=False)
    declarant_name: Mapped[str] = mapped_column(String(255), nullable=False)
    document_holder: Mapped[str] = mapped_column(String(255), nullable=False)
    document_holder_phone: Mapped[str | None] = mapped_column(
        String(64), nullable=True
    )
    sad_number: Mapped[str] = mapped_column(String(64), nullable=False)
    sad_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)

    admin_feedback: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_resubmission: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    # Weak back-reference to the request this one resubmits (no FK, no cascade)
    original_request_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    changes: Mapped[list[dict[str, str]] | None] = mapped_column(JSON, nullable=True)
    hidden_by: Mapped[list[int]] = mapped_column(JSON, nullable=False, default=list)
    is_archived: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    received_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class CaseRequest(RequestMixin, Base):
    __tablename__ = "case_requests"
    kind = RequestKind.CASE

    status: Mapped[CaseStatus] = mapped_column(
        Enum(
            CaseStatus,
            native_enum=False,
            length=32,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=CaseStatus.SUBMITTED,
    )
    corrections: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (
        Index("idx_case_requests_user_created", "user_id", "created_at"),
    )


class ExtensionRequest(RequestMixin, Base):
    __tablename__ = "extension_requests"
    kind = RequestKind.EXTENSION

    status: Mapped[ExtensionStatus] = mapped_column(
        Enum(
            ExtensionStatus,
            native_enum=False,
            length=32,
            values_callable=_enum_values,
            validate_strings=True,
        ),
        nullable=False,
        default=ExtensionStatus.SUBMITTED,
    )
    requested_deadline: Mapped[date | None] = mapped_column(Date, nullable=True)

    __table_args__ = (
        Index("idx_extension_requests_user_created", "user_id", "created_at"),
    )
