from __future__ import annotations

import asyncio
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from photocloud.core.config import get_settings
from photocloud.core.db import create_engine, create_session_factory
from photocloud.core.logging import configure_logging, get_logger
from photocloud.core.storage import get_path_resolver
from photocloud.db.repository import SqlMetadataStore
from photocloud.media.derivatives import DerivativeGenerator
from photocloud.media.scheduler import ProcessingScheduler
from photocloud.media.tokens import PublicTokenIssuer
from photocloud.services.ingest_service import IngestionPipeline

BACKFILL_DERIVATIVES = "backfill_derivatives"


async def run_job_async(
    task: str,
    payload: dict[str, Any],
    *,
    scheduler: Optional[ProcessingScheduler] = None,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    generator: Optional[DerivativeGenerator] = None,
) -> dict[str, Any]:
    """Run ``task`` on the current event loop.

    Inside the API process the caller passes the application's scheduler so
    backfill work shares the one permit pool with uploads.
    """
    if task != BACKFILL_DERIVATIVES:
        raise ValueError(f"Unsupported task: {task}")

    settings = get_settings()
    logger = get_logger(component="worker", task=task)
    if generator is None:
        generator = DerivativeGenerator.from_settings(settings, get_path_resolver(settings))
    if scheduler is None:
        scheduler = ProcessingScheduler(settings.max_concurrent_processing)
    tokens = PublicTokenIssuer(settings.secrets.public_token_secret)

    engine = None
    if session_factory is None:
        engine = create_engine(settings)
        session_factory = create_session_factory(engine)
    try:
        async with session_factory() as session:
            pipeline = IngestionPipeline(
                SqlMetadataStore(session, tokens),
                generator.resolver,
                generator,
                scheduler,
                max_file_size_bytes=settings.max_file_size_bytes,
            )
            report = await pipeline.backfill_derivatives(overwrite=bool(payload.get("overwrite")))
    finally:
        if engine is not None:
            await engine.dispose()

    result = report.as_dict()
    logger.info("job_finished", **result)
    return result


def run_job(task: str, payload: dict[str, Any]) -> dict[str, Any]:
    """Entry-point executed by the RQ worker."""

    configure_logging()
    return asyncio.run(run_job_async(task, payload))


__all__ = ["run_job", "run_job_async", "BACKFILL_DERIVATIVES"]
