"""Shared fixtures: in-memory async SQLite and request payload builders."""
import os
import pathlib
import sys
import tempfile
from datetime import date

# Add project root to Python path
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Configure test environment BEFORE any app imports
_TMP = tempfile.mkdtemp(prefix="casedesk-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP}/casedesk.db")
os.environ.setdefault("USE_LOCAL_STORAGE", "true")
os.environ.setdefault("LOCAL_STORAGE_DIR", f"{_TMP}/uploads")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from sqlalchemy import event  # noqa: E402
from sqlalchemy.ext.asyncio import create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from casedesk.app import models  # noqa: E402,F401
from casedesk.app.db import Base, make_session_factory  # noqa: E402
from casedesk.app.schemas import (  # noqa: E402
    CaseRequestCreate,
    ExtensionRequestCreate,
)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def fk_engine():
    """Like ``engine`` but with foreign keys enforced, as on PostgreSQL."""
    engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)

    @event.listens_for(engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return make_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


def _case_fields(**overrides):
    fields = {
        "declarant_company": "Northwind Freight",
        "declarant_name": "Ana Petrova",
        "document_holder": "Ivan Horvat",
        "document_holder_phone": "+385 1 555 0100",
        "sad_number": "HR-2024-000123",
        "sad_date": date(2024, 3, 14),
        "reason": "x",
    }
    fields.update(overrides)
    return fields


@pytest.fixture
def case_payload():
    def build(**overrides) -> CaseRequestCreate:
        overrides.setdefault("corrections", [{"box": "33", "value": "8471.30"}])
        return CaseRequestCreate(**_case_fields(**overrides))

    return build


@pytest.fixture
def extension_payload():
    def build(**overrides) -> ExtensionRequestCreate:
        overrides.setdefault("requested_deadline", date(2024, 4, 30))
        return ExtensionRequestCreate(**_case_fields(**overrides))

    return build
