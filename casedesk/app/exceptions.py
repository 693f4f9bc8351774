"""Errors raised by the repositories and the storage layer."""

from __future__ import annotations

from enum import Enum


def _status_text(status: object) -> str:
    return status.value if isinstance(status, Enum) else str(status)


class CasedeskError(Exception):
    """Base class for all casedesk errors."""


class RequestNotFoundError(CasedeskError):
    def __init__(self, kind: object, request_id: int):
        self.kind = kind
        self.request_id = request_id
        super().__init__(f"Request with ID {request_id} not found")


class InvalidStatusTransitionError(CasedeskError):
    def __init__(self, current: object, requested: object):
        self.current = _status_text(current)
        self.requested = _status_text(requested)
        super().__init__(
            f"Invalid status transition from {self.current} to {self.requested}"
        )


class StatusConflictError(CasedeskError):
    """The request status changed between read and write."""

    def __init__(self, request_id: int, expected: object):
        self.request_id = request_id
        self.expected = _status_text(expected)
        super().__init__(
            f"Request with ID {request_id} is no longer in status {self.expected}"
        )


class UserNotFoundError(CasedeskError):
    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User with ID {user_id} not found")


class StorageInitializationError(CasedeskError):
    """Credential setup or backend construction failed."""
