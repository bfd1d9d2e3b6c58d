from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Annotated

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from photocloud.core.auth import AuthContext, get_auth_context
from photocloud.core.config import Settings, get_settings
from photocloud.db.repository import SqlMetadataStore
from photocloud.services.ingest_service import IngestionPipeline


async def get_session(request: Request) -> AsyncIterator[AsyncSession]:
    session_factory = request.app.state.session_factory
    if not isinstance(session_factory, async_sessionmaker):  # pragma: no cover
        raise RuntimeError("session_factory_not_configured")
    async with session_factory() as session:
        yield session


def get_app_settings() -> Settings:
    return get_settings()


async def get_pipeline(
    request: Request,
    session: AsyncSession = Depends(get_session),
    settings: Settings = Depends(get_app_settings),
) -> AsyncIterator[IngestionPipeline]:
    state = request.app.state
    store = SqlMetadataStore(session, state.tokens)
    yield IngestionPipeline(
        store,
        state.resolver,
        state.generator,
        state.scheduler,
        max_file_size_bytes=settings.max_file_size_bytes,
    )


PipelineDependency = Annotated[IngestionPipeline, Depends(get_pipeline)]
AuthDependency = Annotated[AuthContext, Depends(get_auth_context)]


__all__ = [
    "get_session",
    "get_app_settings",
    "get_pipeline",
    "PipelineDependency",
    "AuthDependency",
]
