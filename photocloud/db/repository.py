from __future__ import annotations

from typing import Optional, Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from photocloud.core.errors import DuplicateDetected, StorageFailure
from photocloud.core.logging import get_logger
from photocloud.media.tokens import PublicTokenIssuer

from .models import MediaAsset, Recording

DEDUP_CONSTRAINT = "uq_media_assets_checksum_album"


class MetadataStore(Protocol):
    """Narrow keyed repository the media core reads and writes through."""

    async def get(self, asset_id: int) -> Optional[MediaAsset]: ...

    async def get_owned(self, asset_id: int, owner_id: str) -> Optional[MediaAsset]: ...

    async def find_by_checksum(self, checksum: str) -> Sequence[MediaAsset]: ...

    async def find_by_checksum_in_album(self, checksum: str, album_id: str) -> Sequence[MediaAsset]: ...

    async def find_by_content_id(self, content_id: str, owner_id: str) -> Sequence[MediaAsset]: ...

    async def find_by_public_token(self, token: str) -> Optional[MediaAsset]: ...

    async def max_display_order_in_scope(self, album_id: str, owner_id: str) -> Optional[int]: ...

    async def list_assets(self) -> Sequence[MediaAsset]: ...

    async def save(self, asset: MediaAsset) -> MediaAsset: ...

    async def update(self, asset: MediaAsset, *, reissue_token: bool = False) -> MediaAsset: ...

    async def delete(self, asset: MediaAsset) -> None: ...

    async def save_recording(self, recording: Recording) -> Recording: ...

    async def find_recording_by_public_token(self, token: str) -> Optional[Recording]: ...


class SqlMetadataStore:
    """SQLAlchemy implementation of :class:`MetadataStore` bound to one session."""

    def __init__(self, session: AsyncSession, tokens: PublicTokenIssuer):
        self.session = session
        self.tokens = tokens
        self.logger = get_logger(component="metadata_store")

    async def get(self, asset_id: int) -> Optional[MediaAsset]:
        return await self.session.get(MediaAsset, asset_id)

    async def get_owned(self, asset_id: int, owner_id: str) -> Optional[MediaAsset]:
        stmt = select(MediaAsset).where(MediaAsset.id == asset_id, MediaAsset.owner_id == owner_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def find_by_checksum(self, checksum: str) -> Sequence[MediaAsset]:
        stmt = select(MediaAsset).where(MediaAsset.checksum == checksum).order_by(MediaAsset.id)
        return (await self.session.execute(stmt)).scalars().all()

    async def find_by_checksum_in_album(self, checksum: str, album_id: str) -> Sequence[MediaAsset]:
        stmt = (
            select(MediaAsset)
            .where(MediaAsset.checksum == checksum, MediaAsset.album_id == album_id)
            .order_by(MediaAsset.id)
        )
        return (await self.session.execute(stmt)).scalars().all()

    async def find_by_content_id(self, content_id: str, owner_id: str) -> Sequence[MediaAsset]:
        stmt = (
            select(MediaAsset)
            .where(MediaAsset.content_id == content_id, MediaAsset.owner_id == owner_id)
            .order_by(MediaAsset.id)
        )
        return (await self.session.execute(stmt)).scalars().all()

    async def find_by_public_token(self, token: str) -> Optional[MediaAsset]:
        stmt = select(MediaAsset).where(MediaAsset.public_token == token)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def max_display_order_in_scope(self, album_id: str, owner_id: str) -> Optional[int]:
        stmt = select(func.max(MediaAsset.display_order)).where(
            MediaAsset.album_id == album_id,
            MediaAsset.owner_id == owner_id,
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def list_assets(self) -> Sequence[MediaAsset]:
        stmt = select(MediaAsset).order_by(MediaAsset.id)
        return (await self.session.execute(stmt)).scalars().all()

    async def save(self, asset: MediaAsset) -> MediaAsset:
        self.session.add(asset)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            if _is_dedup_violation(exc):
                raise DuplicateDetected(asset.checksum, asset.album_id) from exc
            raise StorageFailure(f"could not save asset metadata: {exc.orig}") from exc
        asset.public_token = self.tokens.issue(asset.id, asset.content_generation)
        await self._commit()
        self.logger.info("asset_saved", asset_id=asset.id, album_id=asset.album_id, checksum=asset.checksum)
        return asset

    async def update(self, asset: MediaAsset, *, reissue_token: bool = False) -> MediaAsset:
        if reissue_token:
            asset.public_token = self.tokens.issue(asset.id, asset.content_generation)
        await self._commit()
        return asset

    async def delete(self, asset: MediaAsset) -> None:
        await self.session.delete(asset)
        await self._commit()

    async def save_recording(self, recording: Recording) -> Recording:
        self.session.add(recording)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            await self.session.rollback()
            raise StorageFailure(f"could not save recording metadata: {exc.orig}") from exc
        recording.public_token = self.tokens.issue(recording.id, kind="recording")
        await self._commit()
        return recording

    async def find_recording_by_public_token(self, token: str) -> Optional[Recording]:
        stmt = select(Recording).where(Recording.public_token == token)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise StorageFailure(f"metadata commit failed: {exc}") from exc


def _is_dedup_violation(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    if DEDUP_CONSTRAINT in message:
        return True
    # SQLite reports the columns rather than the constraint name.
    return "media_assets.checksum" in message and "media_assets.album_id" in message


__all__ = ["MetadataStore", "SqlMetadataStore", "DEDUP_CONSTRAINT"]
