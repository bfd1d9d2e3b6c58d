from __future__ import annotations

from dataclasses import dataclass
from hashlib import sha256
from pathlib import Path
from typing import Optional, Sequence

from photocloud.core.logging import get_logger
from photocloud.db.models import MediaAsset
from photocloud.db.repository import MetadataStore

__all__ = [
    "DedupScope",
    "ChecksumIndex",
    "compute_checksum",
    "compute_file_checksum",
]


@dataclass(frozen=True, slots=True)
class DedupScope:
    """Owner and album an upload is filed under."""

    owner_id: str
    album_id: str


def compute_checksum(payload: bytes) -> str:
    """Return the hexadecimal SHA256 digest of ``payload``."""
    return sha256(payload).hexdigest()


def compute_file_checksum(path: Path, *, chunk_size: int = 8 * 1024 * 1024) -> str:
    """Return a hexadecimal SHA256 digest for the file.

    Args:
        path: The path to the file.
        chunk_size: The chunk size to use when reading the file.

    Returns:
        The hexadecimal SHA256 digest.
    """
    digest = sha256()
    with path.open("rb") as handle:
        while chunk := handle.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()


class ChecksumIndex:
    """Resolves duplicate-upload queries against the metadata store."""

    def __init__(self, store: MetadataStore):
        self.store = store
        self.logger = get_logger(component="checksum_index")

    async def find_duplicate(
        self,
        *,
        checksum: str,
        scope: DedupScope,
        content_id: Optional[str] = None,
    ) -> Optional[MediaAsset]:
        """Return the asset an upload duplicates, or ``None``.

        A stable content id from the client wins over byte equality: the same
        library item re-exported as different bytes (HEIC re-encodes) is still
        the same photo. Then an identical file in the target album, then an
        identical file anywhere.
        """
        if content_id and content_id.strip():
            matches = await self.store.find_by_content_id(content_id, scope.owner_id)
            if matches:
                return self._pick(matches, reason="content_id", key=content_id)

        matches = await self.store.find_by_checksum_in_album(checksum, scope.album_id)
        if matches:
            return self._pick(matches, reason="checksum_in_album", key=checksum)

        matches = await self.store.find_by_checksum(checksum)
        if matches:
            return self._pick(matches, reason="checksum_global", key=checksum)
        return None

    def _pick(self, matches: Sequence[MediaAsset], *, reason: str, key: str) -> MediaAsset:
        chosen = min(matches, key=lambda asset: asset.id)
        if len(matches) > 1:
            self.logger.warning("multiple_duplicates_found", reason=reason, key=key, count=len(matches), chosen=chosen.id)
        self.logger.info(
            "duplicate_detected",
            reason=reason,
            asset_id=chosen.id,
            album_id=chosen.album_id,
            original_name=chosen.original_name,
        )
        return chosen
