from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, Optional

from photocloud.core.errors import NotFound
from photocloud.core.logging import get_logger

CHUNK_SIZE = 64 * 1024
IMMUTABLE_CACHE_CONTROL = "public, max-age=31536000, immutable"

_RANGE_PATTERN = re.compile(r"^bytes=(\d*)-(\d*)$")

logger = get_logger(component="range_server")


class RangeStatus(enum.IntEnum):
    full = 200
    partial = 206
    not_satisfiable = 416


@dataclass(frozen=True, slots=True)
class RangeDecision:
    """Outcome of matching a ``Range`` header against a resource of ``total_length`` bytes.

    ``start`` and ``end`` are inclusive and only meaningful when satisfiable.
    """

    status: RangeStatus
    total_length: int
    start: int = 0
    end: int = -1

    @property
    def satisfiable(self) -> bool:
        return self.status is not RangeStatus.not_satisfiable

    @property
    def length(self) -> int:
        return self.end - self.start + 1 if self.satisfiable else 0

    @property
    def content_range(self) -> str:
        if not self.satisfiable:
            return f"bytes */{self.total_length}"
        return f"bytes {self.start}-{self.end}/{self.total_length}"


def evaluate_range(range_header: Optional[str], total_length: int) -> RangeDecision:
    """Decide how to answer ``range_header`` for a resource of ``total_length`` bytes.

    Accepts a single ``bytes=A-B``, ``bytes=A-`` or ``bytes=-N`` range. Multiple
    ranges, other units and malformed values are reported as not satisfiable.
    A missing header (``None``) selects the whole resource.
    """
    if range_header is None:
        return RangeDecision(RangeStatus.full, total_length, 0, total_length - 1)

    unsatisfiable = RangeDecision(RangeStatus.not_satisfiable, total_length)
    match = _RANGE_PATTERN.match(range_header.strip())
    if not match:
        return unsatisfiable

    first, last = match.groups()
    if not first and not last:
        return unsatisfiable

    if not first:
        suffix = int(last)
        if suffix <= 0 or total_length <= 0:
            return unsatisfiable
        return RangeDecision(RangeStatus.partial, total_length, max(0, total_length - suffix), total_length - 1)

    start = int(first)
    end = int(last) if last else total_length - 1
    end = min(end, total_length - 1)
    if start > end or start >= total_length:
        return unsatisfiable
    return RangeDecision(RangeStatus.partial, total_length, start, end)


def iter_file_range(path: Path, start: int, length: int, chunk_size: int = CHUNK_SIZE) -> Iterator[bytes]:
    """Yield exactly ``length`` bytes of ``path`` beginning at ``start``."""
    remaining = length
    with path.open("rb") as handle:
        handle.seek(start)
        while remaining > 0:
            chunk = handle.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk


@dataclass(slots=True)
class RangeResponse:
    """Status, headers and body iterator for one range-served resource.

    Framework-neutral; the HTTP layer wraps it in a streaming response.
    """

    status_code: int
    headers: dict[str, str]
    media_type: Optional[str] = None
    body: Iterator[bytes] = field(default_factory=lambda: iter(()))

    def read_all(self) -> bytes:
        return b"".join(self.body)


def content_disposition(filename: str) -> str:
    safe = filename.replace("\\", "_").replace('"', "_").replace("\r", "").replace("\n", "")
    return f'inline; filename="{safe}"'


def serve_range(path: Path, range_header: Optional[str], mime_type: str, filename: str) -> RangeResponse:
    """Build the response for a byte-range request on ``path``."""
    try:
        total_length = path.stat().st_size
    except FileNotFoundError as exc:
        raise NotFound(f"{filename} is missing on disk") from exc

    decision = evaluate_range(range_header, total_length)
    if not decision.satisfiable:
        logger.info("range_not_satisfiable", filename=filename, range=range_header, total_length=total_length)
        return RangeResponse(
            status_code=int(RangeStatus.not_satisfiable),
            headers={"Content-Range": decision.content_range},
        )

    headers = {
        "Content-Type": mime_type,
        "Content-Length": str(decision.length),
        "Content-Encoding": "identity",
        "Accept-Ranges": "bytes",
        "Cache-Control": IMMUTABLE_CACHE_CONTROL,
        "Content-Disposition": content_disposition(filename),
    }
    if decision.status is RangeStatus.partial:
        headers["Content-Range"] = decision.content_range

    body = iter_file_range(path, decision.start, decision.length) if decision.length > 0 else iter(())
    return RangeResponse(
        status_code=int(decision.status),
        headers=headers,
        media_type=mime_type,
        body=body,
    )


__all__ = [
    "CHUNK_SIZE",
    "RangeStatus",
    "RangeDecision",
    "RangeResponse",
    "evaluate_range",
    "serve_range",
    "iter_file_range",
]
