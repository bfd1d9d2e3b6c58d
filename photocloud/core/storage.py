from __future__ import annotations

import os
import re
import secrets
import time
from pathlib import Path, PurePosixPath
from typing import Optional

from .config import Settings
from .errors import PathTraversalError, StorageFailure
from .logging import get_logger

RECORDINGS_SUBDIR = "recordings"
MAX_NAME_ATTEMPTS = 5
MAX_STEM_LENGTH = 80

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]+")


def split_extension(filename: str) -> tuple[str, str]:
    """Split ``name.ext`` into ``("name", "ext")``; dotfiles and bare names have no extension."""
    if "." not in filename or (filename.startswith(".") and filename.count(".") == 1):
        return filename, ""
    stem, _, extension = filename.rpartition(".")
    return stem, extension


class PathResolver:
    """Maps stored relative paths to locations under a single upload root.

    Every path handed out by this class is guaranteed to live below ``root``;
    anything that would resolve elsewhere raises :class:`PathTraversalError`.
    """

    def __init__(self, root: Path):
        self.root = root.expanduser().resolve()
        self.root.mkdir(parents=True, exist_ok=True)
        self.recordings_dir = self.root / RECORDINGS_SUBDIR
        self.recordings_dir.mkdir(parents=True, exist_ok=True)
        self.logger = get_logger(component="path_resolver")

    def to_absolute(self, relative: Optional[str]) -> Optional[Path]:
        if relative is None:
            return None
        if "\x00" in relative:
            raise PathTraversalError("path contains a NUL byte")
        candidate = PurePosixPath(relative.replace("\\", "/"))
        if candidate.is_absolute() or ".." in candidate.parts or not candidate.parts:
            raise PathTraversalError(f"refusing path outside upload root: {relative!r}")
        resolved = (self.root / candidate).resolve()
        if not resolved.is_relative_to(self.root) or resolved == self.root:
            raise PathTraversalError(f"refusing path outside upload root: {relative!r}")
        return resolved

    def to_relative(self, absolute: Optional[Path]) -> Optional[str]:
        if absolute is None:
            return None
        resolved = Path(absolute).resolve()
        try:
            relative = resolved.relative_to(self.root)
        except ValueError as exc:
            raise PathTraversalError(f"{absolute} is not under the upload root") from exc
        if not relative.parts:
            raise PathTraversalError("the upload root itself is not a stored path")
        return relative.as_posix()

    def generate_unique_name(self, original_name: Optional[str]) -> str:
        base = PurePosixPath((original_name or "").replace("\\", "/")).name
        stem, extension = split_extension(base)
        safe_stem = _UNSAFE_CHARS.sub("_", stem).strip("._")[:MAX_STEM_LENGTH] or "file"
        safe_extension = _UNSAFE_CHARS.sub("", extension).lower()[:10]
        suffix = f"{int(time.time() * 1000)}-{secrets.token_hex(5)[:9]}"
        if safe_extension:
            return f"{safe_stem}-{suffix}.{safe_extension}"
        return f"{safe_stem}-{suffix}"

    def derivative_path(self, stored: Path, prefix: str, extension: Optional[str] = None) -> Path:
        """Sibling of ``stored`` named ``{prefix}{stem}{extension}`` (extension kept when omitted)."""
        suffix = stored.suffix if extension is None else extension
        return stored.with_name(f"{prefix}{stored.stem}{suffix}")

    def write_new(self, payload: bytes, original_name: Optional[str], *, subdir: Optional[str] = None) -> Path:
        """Write ``payload`` under a freshly generated name, never overwriting an existing file."""
        directory = self.root / subdir if subdir else self.root
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageFailure(f"could not create {directory}: {exc}") from exc

        for attempt in range(1, MAX_NAME_ATTEMPTS + 1):
            target = directory / self.generate_unique_name(original_name)
            try:
                fd = os.open(target, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            except FileExistsError:
                self.logger.warning("unique_name_collision", path=str(target), attempt=attempt)
                continue
            except OSError as exc:
                raise StorageFailure(f"could not create {target.name}: {exc}") from exc

            try:
                with os.fdopen(fd, "wb") as handle:
                    handle.write(payload)
            except OSError as exc:
                self.delete_quietly(target)
                raise StorageFailure(f"could not write {target.name}: {exc}") from exc
            return target

        raise StorageFailure(f"no free filename for {original_name!r} after {MAX_NAME_ATTEMPTS} attempts")

    def delete_quietly(self, *paths: Optional[Path]) -> None:
        for path in paths:
            if path is None:
                continue
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                self.logger.warning("delete_failed", path=str(path), error=str(exc))


def get_path_resolver(settings: Settings) -> PathResolver:
    return PathResolver(settings.upload_root)


__all__ = [
    "PathResolver",
    "RECORDINGS_SUBDIR",
    "split_extension",
    "get_path_resolver",
]
