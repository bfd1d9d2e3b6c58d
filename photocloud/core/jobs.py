from __future__ import annotations

from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any
from uuid import uuid4

from redis import Redis
from rq import Queue

from .config import get_settings
from .logging import get_logger

QUEUE_NAME = "photocloud-jobs"

logger = get_logger(component="job_backend")


class BaseJobBackend(ABC):
    @abstractmethod
    async def enqueue(self, task: str, payload: dict[str, Any], **resources: Any) -> str:
        """Schedule ``task``; ``resources`` are in-process objects a backend may reuse."""


class ImmediateJobBackend(BaseJobBackend):
    async def enqueue(self, task: str, payload: dict[str, Any], **resources: Any) -> str:
        from photocloud.workers.tasks import run_job_async

        job_id = uuid4().hex
        logger.info("job_running_inline", job_id=job_id, task=task)
        await run_job_async(task, payload, **resources)
        return job_id


class RQJobBackend(BaseJobBackend):
    def __init__(self, queue: Queue):
        self.queue = queue

    async def enqueue(self, task: str, payload: dict[str, Any], **resources: Any) -> str:  # pragma: no cover - exercised via worker
        # The worker process builds its own resources.
        from photocloud.workers.tasks import run_job

        job = self.queue.enqueue(run_job, task, payload)
        logger.info("job_enqueued", job_id=job.id, task=task, queue=self.queue.name)
        return job.id


@lru_cache()
def get_job_backend() -> BaseJobBackend:
    settings = get_settings()
    backend = settings.normalized_job_backend
    if backend == "immediate":
        return ImmediateJobBackend()
    if backend == "rq":  # pragma: no cover - requires redis
        connection = Redis.from_url(settings.redis_url)
        return RQJobBackend(Queue(QUEUE_NAME, connection=connection))
    raise ValueError(f"Unsupported job backend: {settings.job_queue_backend}")


__all__ = ["BaseJobBackend", "ImmediateJobBackend", "RQJobBackend", "get_job_backend"]
