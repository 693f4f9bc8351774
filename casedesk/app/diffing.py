"""Field-level audit diff between an original request and its resubmission."""

from __future__ import annotations

import json
from datetime import date, datetime
from typing import Any, NamedTuple, Protocol, TypedDict

FieldChange = TypedDict("FieldChange", {"field": str, "from": str, "to": str})


class CaseFields(Protocol):
    """Anything carrying the tracked case attributes (ORM row or payload)."""

    declarant_company: str
    declarant_name: str
    document_holder: str
    document_holder_phone: str | None
    sad_number: str
    sad_date: date
    reason: str
    corrections: list[Any] | None


class TrackedFields(NamedTuple):
    declarant_company: Any
    declarant_name: Any
    document_holder: Any
    document_holder_phone: Any
    sad_number: Any
    sad_date: Any
    reason: Any
    corrections: str


def _canonical_json(value: Any) -> str:
    return json.dumps(value or [], sort_keys=True, default=str, ensure_ascii=False)


def snapshot(record: CaseFields) -> TrackedFields:
    # corrections are compared structurally through their canonical JSON form
    return TrackedFields(
        declarant_company=record.declarant_company,
        declarant_name=record.declarant_name,
        document_holder=record.document_holder,
        document_holder_phone=record.document_holder_phone,
        sad_number=record.sad_number,
        sad_date=record.sad_date,
        reason=record.reason,
        corrections=_canonical_json(record.corrections),
    )


def as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    return str(value)


def compute_diff(original: CaseFields, resubmission: CaseFields) -> list[FieldChange]:
    """Return one ``{field, from, to}`` entry per tracked field that differs.

    Entries follow the declaration order of ``TrackedFields``, with
    ``corrections`` always last. Equal inputs give an empty list.
    """
    before = snapshot(original)
    after = snapshot(resubmission)
    changes: list[FieldChange] = []
    for field, old, new in zip(TrackedFields._fields, before, after):
        if old != new:
            changes.append({"field": field, "from": as_text(old), "to": as_text(new)})
    return changes


def changes_or_none(changes: list[FieldChange]) -> list[FieldChange] | None:
    """Storage form: no differences is recorded as NULL, not ``[]``."""
    return changes or None
