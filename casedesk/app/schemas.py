from datetime import date
from typing import Any

from pydantic import BaseModel, EmailStr, Field


class UserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=150)
    email: EmailStr
    password: str = Field(min_length=8)


class RequestPayload(BaseModel):
    """Declarant and SAD details common to every request kind."""

    declarant_company: str
    declarant_name: str
    document_holder: str
    document_holder_phone: str | None = None
    sad_number: str
    sad_date: date
    reason: str


class CaseRequestCreate(RequestPayload):
    corrections: list[Any] = Field(default_factory=list)


class ExtensionRequestCreate(RequestPayload):
    requested_deadline: date | None = None
