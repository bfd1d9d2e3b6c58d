from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from photocloud.core.errors import ProcessingInterrupted
from photocloud.core.logging import get_logger


class ProcessingScheduler:
    """Global counting permit pool bounding concurrent derivative work.

    ``permit()`` is the only way in; a permit is released exactly once on every
    exit path of the ``async with`` block, including exceptions and cancellation.
    """

    def __init__(self, limit: int):
        if limit < 1:
            raise ValueError("processing limit must be at least 1")
        self.limit = limit
        self._semaphore = asyncio.Semaphore(limit)
        self._active = 0
        self._peak = 0
        self.logger = get_logger(component="processing_scheduler")

    @property
    def active(self) -> int:
        return self._active

    @property
    def peak(self) -> int:
        return self._peak

    @asynccontextmanager
    async def permit(self, label: Optional[str] = None) -> AsyncIterator[None]:
        waiting = self._semaphore.locked()
        if waiting:
            self.logger.debug("permit_waiting", label=label, active=self._active, limit=self.limit)
        try:
            await self._semaphore.acquire()
        except asyncio.CancelledError as exc:
            self.logger.warning("permit_wait_cancelled", label=label)
            raise ProcessingInterrupted(f"cancelled while waiting for a processing permit ({label or 'work'})") from exc

        self._active += 1
        self._peak = max(self._peak, self._active)
        self.logger.debug("permit_acquired", label=label, active=self._active)
        try:
            yield
        finally:
            self._active -= 1
            self._semaphore.release()
            self.logger.debug("permit_released", label=label, active=self._active)


__all__ = ["ProcessingScheduler"]
