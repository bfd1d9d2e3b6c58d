from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from photocloud.api.v1 import get_api_router
from photocloud.api.v1.schemas import ErrorResponse
from photocloud.core.config import get_settings
from photocloud.core.db import create_engine, create_schema, create_session_factory
from photocloud.core.errors import (
    DuplicateDetected,
    MediaError,
    NotFound,
    ProcessingFailure,
    ProcessingInterrupted,
    StorageFailure,
    ValidationFailure,
)
from photocloud.core.logging import configure_logging, get_logger
from photocloud.core.storage import get_path_resolver
from photocloud.media.derivatives import DerivativeGenerator
from photocloud.media.runner import CommandRunner
from photocloud.media.scheduler import ProcessingScheduler
from photocloud.media.tokens import PublicTokenIssuer

logger = get_logger(component="api")


def error_status(exc: MediaError) -> tuple[int, str]:
    if isinstance(exc, ValidationFailure):
        if exc.too_large:
            return status.HTTP_413_REQUEST_ENTITY_TOO_LARGE, "file_too_large"
        return status.HTTP_400_BAD_REQUEST, "validation_failed"
    if isinstance(exc, NotFound):
        return status.HTTP_404_NOT_FOUND, "not_found"
    if isinstance(exc, ProcessingFailure) and exc.fatal:
        return status.HTTP_422_UNPROCESSABLE_ENTITY, f"{exc.operation}_failed"
    if isinstance(exc, ProcessingInterrupted):
        return status.HTTP_503_SERVICE_UNAVAILABLE, "processing_interrupted"
    if isinstance(exc, DuplicateDetected):
        return status.HTTP_409_CONFLICT, "duplicate"
    if isinstance(exc, StorageFailure):
        return status.HTTP_500_INTERNAL_SERVER_ERROR, "storage_failure"
    return status.HTTP_500_INTERNAL_SERVER_ERROR, "media_error"


async def media_error_handler(request: Request, exc: MediaError) -> JSONResponse:
    status_code, code = error_status(exc)
    log = logger.warning if status_code < 500 else logger.error
    log("request_failed", path=request.url.path, error=code, status_code=status_code, detail=str(exc))
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=code, detail=str(exc)).model_dump())


def create_app(*, runner: Optional[CommandRunner] = None) -> FastAPI:
    settings = get_settings()
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)
    configure_logging(level=log_level)
    engine = create_engine(settings)
    session_factory = create_session_factory(engine)
    command_runner = runner or CommandRunner(default_timeout_s=settings.command_timeout_s)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolver = get_path_resolver(settings)
        app.state.settings = settings
        app.state.engine = engine
        app.state.session_factory = session_factory
        app.state.resolver = resolver
        app.state.runner = command_runner
        app.state.generator = DerivativeGenerator.from_settings(settings, resolver, command_runner)
        app.state.scheduler = ProcessingScheduler(settings.max_concurrent_processing)
        app.state.tokens = PublicTokenIssuer(settings.secrets.public_token_secret)
        if settings.create_schema_on_startup:
            await create_schema(engine)
        logger.info(
            "app_started",
            environment=settings.environment,
            upload_root=str(resolver.root),
            max_concurrent_processing=settings.max_concurrent_processing,
        )
        try:
            yield
        finally:
            await engine.dispose()

    app = FastAPI(
        title=settings.app_name,
        version=settings.version,
        lifespan=lifespan,
        openapi_url="/openapi.json",
        docs_url="/docs",
    )

    app.add_exception_handler(MediaError, media_error_handler)
    app.include_router(get_api_router())
    return app


app = create_app()


__all__ = ["app", "create_app", "error_status"]
