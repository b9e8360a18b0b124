"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from ingestrag import __version__
from ingestrag.api.routes import router
from ingestrag.api.schemas import LockConflictResponse, LockHolder
from ingestrag.core.exceptions import LockConflictError, LockStoreUnavailableError
from ingestrag.core.logging_config import get_logger
from ingestrag.pipeline import PipelineRegistry

logger = get_logger(__name__)


def create_app(registry: PipelineRegistry) -> FastAPI:
    """Build the HTTP application around an already constructed registry.

    The registry is initialized on startup and closed on shutdown.
    """

    @asynccontextmanager
    async def lifespan(application: FastAPI) -> AsyncIterator[None]:
        await registry.initialize()
        logger.info("app_startup", version=__version__, pipelines=list(registry))
        yield
        await registry.close()
        logger.info("app_shutdown")

    application = FastAPI(title="ingestrag API", version=__version__, lifespan=lifespan)
    application.state.registry = registry

    @application.exception_handler(LockConflictError)
    async def lock_conflict_handler(request: Request, exc: LockConflictError) -> JSONResponse:
        body = LockConflictResponse(
            holder=LockHolder.from_lock(exc.holder) if exc.holder else None,
            message=str(exc),
            elapsed_minutes=exc.elapsed_minutes,
        )
        return JSONResponse(status_code=409, content=body.model_dump(by_alias=True, mode="json"))

    @application.exception_handler(LockStoreUnavailableError)
    async def lock_store_handler(request: Request, exc: LockStoreUnavailableError) -> JSONResponse:
        logger.error("lock_store_unavailable", path=request.url.path, error=str(exc))
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    application.include_router(router)
    return application
