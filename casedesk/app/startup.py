"""Application startup logic (DB bootstrap, storage selection, session store).

Runs once per process from the FastAPI lifespan; the resulting context is
what request handlers receive instead of module-level singletons.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from .config import Settings
from .db import engine as default_engine, init_db, make_session_factory
from .logging_utils import configure_logging
from .sessions import SessionStore
from .storage import StorageBackend, init_storage

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AppContext:
    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    storage: StorageBackend
    sessions: SessionStore


async def bootstrap(settings: Settings, engine: AsyncEngine | None = None) -> AppContext:
    configure_logging(settings.LOG_LEVEL)
    target = engine or default_engine

    await init_db(target)
    logger.info("Database tables ensured")

    storage = init_storage(settings)
    logger.info("Attachment storage backend: %s", storage.name)

    session_factory = make_session_factory(target)
    sessions = SessionStore(
        session_factory, ttl=timedelta(minutes=settings.SESSION_TTL_MINUTES)
    )
    logger.info("Note: the first registered account will be made an admin automatically.")
    return AppContext(
        engine=target,
        session_factory=session_factory,
        storage=storage,
        sessions=sessions,
    )


async def shutdown(context: AppContext) -> None:
    context.storage.close()
    await context.engine.dispose()
