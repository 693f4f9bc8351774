import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from .config import Settings, settings as default_settings
from .exceptions import (
    InvalidStatusTransitionError,
    RequestNotFoundError,
    StatusConflictError,
    UserNotFoundError,
)
from .requests_repository import CaseRequestRepository, ExtensionRequestRepository
from .sessions import SessionStore
from .startup import AppContext, bootstrap, shutdown
from .storage import StorageBackend
from .users_repository import UserRepository

logger = logging.getLogger(__name__)


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


def create_app(app_settings: Settings | None = None) -> FastAPI:
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        context = await bootstrap(app_settings)
        app.state.context = context
        try:
            yield
        finally:
            await shutdown(context)

    app = FastAPI(title="casedesk", lifespan=lifespan)

    @app.exception_handler(RequestNotFoundError)
    @app.exception_handler(UserNotFoundError)
    async def not_found_handler(request: Request, exc: Exception) -> JSONResponse:
        return _error_response(404, exc)

    @app.exception_handler(InvalidStatusTransitionError)
    @app.exception_handler(StatusConflictError)
    async def conflict_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.warning("Rejected status change on %s: %s", request.url.path, exc)
        return _error_response(409, exc)

    @app.get("/api/health")
    async def health(request: Request) -> dict[str, str]:
        return {"status": "ok", "storage": get_context(request).storage.name}

    return app


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def get_storage(request: Request) -> StorageBackend:
    """FastAPI dependency for the attachment backend chosen at startup."""
    return get_context(request).storage


def get_session_store(request: Request) -> SessionStore:
    return get_context(request).sessions


async def get_db(request: Request) -> AsyncIterator[AsyncSession]:
    """Database dependency for FastAPI"""
    async with get_context(request).session_factory() as db:
        yield db


DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_user_repository(db: DbSession) -> UserRepository:
    return UserRepository(db)


def get_case_request_repository(db: DbSession) -> CaseRequestRepository:
    return CaseRequestRepository(db)


def get_extension_request_repository(db: DbSession) -> ExtensionRequestRepository:
    return ExtensionRequestRepository(db)


app = create_app()
