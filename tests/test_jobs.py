from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from pathlib import Path

import pytest

from photocloud.core.db import create_engine, create_schema, create_session_factory
from photocloud.core.storage import PathResolver
from photocloud.db.repository import SqlMetadataStore
from photocloud.media.checksum import DedupScope
from photocloud.media.derivatives import DerivativeGenerator
from photocloud.media.scheduler import ProcessingScheduler
from photocloud.media.tokens import PublicTokenIssuer
from photocloud.services.ingest_service import IngestionPipeline
from photocloud.workers.tasks import BACKFILL_DERIVATIVES, run_job_async

from tests.conftest import image_bytes

SCOPE = DedupScope("user-1", "album-1")


def _recording(scheduler: ProcessingScheduler, labels: list[str]) -> None:
    original = scheduler.permit

    @asynccontextmanager
    async def permit(label=None):
        async with original(label=label):
            labels.append(label)
            yield

    scheduler.permit = permit


def test_backfill_shares_scheduler_with_uploads(settings, fake_runner, tmp_path: Path):
    payloads = [image_bytes(tmp_path, 40 + step * 8, 40) for step in range(4)]
    scheduler = ProcessingScheduler(1)
    labels: list[str] = []

    async def main():
        engine = create_engine(settings)
        await create_schema(engine)
        session_factory = create_session_factory(engine)
        generator = DerivativeGenerator.from_settings(settings, PathResolver(settings.upload_root), fake_runner)
        try:
            async with session_factory() as session:
                pipeline = IngestionPipeline(
                    SqlMetadataStore(session, PublicTokenIssuer(settings.secrets.public_token_secret)),
                    generator.resolver,
                    generator,
                    scheduler,
                    max_file_size_bytes=settings.max_file_size_bytes,
                )
                existing = [
                    await pipeline.ingest(payload, f"old-{index}.jpg", "image/jpeg", SCOPE)
                    for index, payload in enumerate(payloads[:3])
                ]
                _recording(scheduler, labels)
                report, fresh = await asyncio.gather(
                    run_job_async(
                        BACKFILL_DERIVATIVES,
                        {"overwrite": True},
                        scheduler=scheduler,
                        session_factory=session_factory,
                        generator=generator,
                    ),
                    pipeline.ingest(payloads[3], "new.jpg", "image/jpeg", SCOPE),
                )
                return existing, report, fresh
        finally:
            await engine.dispose()

    existing, report, fresh = asyncio.run(main())

    assert report["succeeded"] >= 3
    assert report["failed"] == 0
    assert scheduler.peak <= 1
    assert scheduler.active == 0
    assert {asset.stored_filename for asset in existing} <= set(labels)
    assert fresh.stored_filename in labels


def test_unknown_task_is_rejected(settings):
    with pytest.raises(ValueError):
        asyncio.run(run_job_async("reindex", {}))
