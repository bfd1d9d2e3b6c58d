from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import BigInteger, DateTime, Index, Integer, String, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column

from photocloud.core.db import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True, slots=True)
class DerivativeSet:
    """Relative paths of the variants generated for one asset; ``None`` means absent."""

    thumbnail: Optional[str] = None
    medium: Optional[str] = None
    large: Optional[str] = None
    transcoded_video: Optional[str] = None

    def paths(self) -> list[str]:
        return [p for p in (self.thumbnail, self.medium, self.large, self.transcoded_video) if p]


class MediaAsset(Base):
    __tablename__ = "media_assets"
    __table_args__ = (
        UniqueConstraint("checksum", "album_id", name="uq_media_assets_checksum_album"),
        Index("ix_media_assets_owner_content_id", "owner_id", "content_id"),
        Index("ix_media_assets_album_display_order", "album_id", "display_order"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    album_id: Mapped[str] = mapped_column(String(64), nullable=False)
    original_name: Mapped[str] = mapped_column(String(512), nullable=False)
    stored_filename: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    stored_relative_path: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    checksum: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    content_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    uploaded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    exif_taken_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    width: Mapped[int | None] = mapped_column(Integer, nullable=True)
    height: Mapped[int | None] = mapped_column(Integer, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    rotation: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    content_generation: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    public_token: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)

    thumbnail_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    medium_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    large_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    transcoded_video_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")

    @property
    def is_video(self) -> bool:
        return self.mime_type.startswith("video/")

    @property
    def derivatives(self) -> DerivativeSet:
        return DerivativeSet(
            thumbnail=self.thumbnail_path,
            medium=self.medium_path,
            large=self.large_path,
            transcoded_video=self.transcoded_video_path,
        )

    def set_image_derivatives(self, thumbnail: str | None, medium: str | None, large: str | None) -> None:
        self.thumbnail_path = thumbnail
        self.medium_path = medium
        self.large_path = large

    def clear_derivatives(self) -> None:
        self.set_image_derivatives(None, None, None)
        self.transcoded_video_path = None


class Recording(Base):
    __tablename__ = "recordings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[str] = mapped_column(String(128), nullable=False)
    album_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    original_name: Mapped[str] = mapped_column(String(512), nullable=False)
    audio_relative_path: Mapped[str] = mapped_column(String(1024), nullable=False, unique=True)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    size_bytes: Mapped[int] = mapped_column(BigInteger, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        server_default=func.now(),
        nullable=False,
    )
    public_token: Mapped[str | None] = mapped_column(String(64), nullable=True, unique=True)


__all__ = [
    "DerivativeSet",
    "MediaAsset",
    "Recording",
]
