"""Status lifecycle for case and extension requests.

Both kinds share the same happy path (submitted -> pending -> complete, with
rejection possible before completion). Case requests can also start life as
``resubmitted``. ``rejected`` and ``complete`` are terminal.
"""

from __future__ import annotations

from enum import Enum

from .models import CaseStatus, ExtensionStatus, RequestKind

CASE_TRANSITIONS: dict[CaseStatus, frozenset[CaseStatus]] = {
    CaseStatus.SUBMITTED: frozenset({CaseStatus.PENDING, CaseStatus.REJECTED}),
    CaseStatus.PENDING: frozenset({CaseStatus.COMPLETE, CaseStatus.REJECTED}),
    CaseStatus.RESUBMITTED: frozenset({CaseStatus.PENDING, CaseStatus.REJECTED}),
    CaseStatus.REJECTED: frozenset(),
    CaseStatus.COMPLETE: frozenset(),
}

EXTENSION_TRANSITIONS: dict[ExtensionStatus, frozenset[ExtensionStatus]] = {
    ExtensionStatus.SUBMITTED: frozenset(
        {ExtensionStatus.PENDING, ExtensionStatus.REJECTED}
    ),
    ExtensionStatus.PENDING: frozenset(
        {ExtensionStatus.COMPLETE, ExtensionStatus.REJECTED}
    ),
    ExtensionStatus.REJECTED: frozenset(),
    ExtensionStatus.COMPLETE: frozenset(),
}

_TABLES: dict[RequestKind, tuple[type[Enum], dict]] = {
    RequestKind.CASE: (CaseStatus, CASE_TRANSITIONS),
    RequestKind.EXTENSION: (ExtensionStatus, EXTENSION_TRANSITIONS),
}


def parse_status(kind: RequestKind | str, status: object) -> Enum | None:
    """Return the status enum member for ``kind``, or None if unknown."""
    status_enum, _ = _TABLES[RequestKind(kind)]
    if isinstance(status, status_enum):
        return status
    raw = status.value if isinstance(status, Enum) else status
    try:
        return status_enum(raw)
    except ValueError:
        return None


def allowed_transitions(kind: RequestKind | str, current: object) -> frozenset:
    _, table = _TABLES[RequestKind(kind)]
    parsed = parse_status(kind, current)
    if parsed is None:
        return frozenset()
    return table[parsed]


def is_terminal(kind: RequestKind | str, status: object) -> bool:
    parsed = parse_status(kind, status)
    return parsed is not None and not allowed_transitions(kind, parsed)


def validate(kind: RequestKind | str, current: object, requested: object) -> bool:
    """True iff ``current -> requested`` is an edge in the table for ``kind``.

    Unknown statuses on either side, and self-transitions, are denied.
    """
    target = parse_status(kind, requested)
    if target is None:
        return False
    return target in allowed_transitions(kind, current)
