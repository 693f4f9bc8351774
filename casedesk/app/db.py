from typing import Any
import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from .config import settings

logger = logging.getLogger(__name__)

Base: Any = declarative_base()


def make_engine(database_url: str | None = None, **overrides: Any) -> AsyncEngine:
    """Create the async engine; pool sizing only applies to server databases."""
    url = database_url or settings.DATABASE_URL
    options: dict[str, Any] = {"echo": settings.DB_ECHO, "future": True}
    if not url.startswith("sqlite"):
        options.update(
            pool_pre_ping=True,  # Verify connections before using
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=30,
            pool_recycle=1800,
        )
    options.update(overrides)
    try:
        return create_async_engine(url, **options)
    except Exception as e:
        logger.error("Failed to create database engine: %s", e)
        raise


def make_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


engine = make_engine()


async def init_db(target: AsyncEngine | None = None) -> None:
    """Create all tables that do not exist yet."""
    # models must be imported so their tables are registered on Base.metadata
    from . import models  # noqa: F401

    async with (target or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
