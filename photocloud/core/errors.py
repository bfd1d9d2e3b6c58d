from __future__ import annotations

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:  # pragma: no cover
    from photocloud.media.runner import CommandResult


class MediaError(Exception):
    """Base class for failures raised by the media core."""


class ValidationFailure(MediaError):
    """Client-correctable input problem (type, size, path)."""

    def __init__(self, message: str, *, too_large: bool = False) -> None:
        super().__init__(message)
        self.too_large = too_large


class PathTraversalError(ValidationFailure):
    """A stored or requested path would resolve outside the upload root."""


class DuplicateDetected(MediaError):
    """Raised by the metadata store when the dedup constraint rejects a row.

    Not an error from the caller's point of view: the pipeline turns it into a
    short-circuit success returning the already stored asset.
    """

    def __init__(self, checksum: str, album_id: str) -> None:
        super().__init__(f"duplicate checksum {checksum} in album {album_id}")
        self.checksum = checksum
        self.album_id = album_id


class StorageFailure(MediaError):
    """Server-side I/O fault."""


class ProcessingFailure(MediaError):
    """An external codec or in-process transform did not produce usable output."""

    def __init__(
        self,
        operation: str,
        message: str,
        *,
        fatal: bool,
        result: Optional["CommandResult"] = None,
    ) -> None:
        super().__init__(message)
        self.operation = operation
        self.fatal = fatal
        self.result = result


class ProcessingInterrupted(MediaError):
    """Work was cancelled while waiting for a permit or an external process."""


class NotFound(MediaError):
    """Unknown public token, asset id or missing file on disk."""


__all__ = [
    "MediaError",
    "ValidationFailure",
    "PathTraversalError",
    "DuplicateDetected",
    "StorageFailure",
    "ProcessingFailure",
    "ProcessingInterrupted",
    "NotFound",
]
