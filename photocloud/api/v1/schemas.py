from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, Field

from photocloud.db.models import MediaAsset, Recording


class HealthResponse(BaseModel):
    status: str = Field(default="ok", description="Health status indicator.")
    time: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    version: str
    processing_active: int = Field(description="Derivative jobs currently holding a permit.")
    processing_limit: int


class EnvCheckResponse(BaseModel):
    ffmpeg: bool
    ffprobe: bool
    imagemagick: bool


class DerivativeAvailability(BaseModel):
    thumbnail: bool
    medium: bool
    large: bool
    transcoded_video: bool


class FileInfo(BaseModel):
    id: int
    album_id: str
    original_name: str
    mime_type: str
    size_bytes: int
    checksum: str
    content_id: Optional[str] = None
    uploaded_at: datetime
    exif_taken_at: Optional[datetime] = None
    width: Optional[int] = None
    height: Optional[int] = None
    duration_ms: Optional[int] = None
    rotation: int
    display_order: int
    public_token: str = Field(description="Opaque address of the current content; changes when the bytes change.")
    url: str
    derivatives: DerivativeAvailability

    @classmethod
    def from_asset(cls, asset: MediaAsset) -> "FileInfo":
        derivatives = asset.derivatives
        return cls(
            id=asset.id,
            album_id=asset.album_id,
            original_name=asset.original_name,
            mime_type=asset.mime_type,
            size_bytes=asset.size_bytes,
            checksum=asset.checksum,
            content_id=asset.content_id,
            uploaded_at=asset.uploaded_at,
            exif_taken_at=asset.exif_taken_at,
            width=asset.width,
            height=asset.height,
            duration_ms=asset.duration_ms,
            rotation=asset.rotation,
            display_order=asset.display_order,
            public_token=asset.public_token or "",
            url=f"/v1/i/{asset.public_token}",
            derivatives=DerivativeAvailability(
                thumbnail=derivatives.thumbnail is not None,
                medium=derivatives.medium is not None,
                large=derivatives.large is not None,
                transcoded_video=derivatives.transcoded_video is not None,
            ),
        )


class RecordingInfo(BaseModel):
    id: int
    album_id: str
    original_name: str
    mime_type: str
    size_bytes: int
    created_at: datetime
    public_token: str
    url: str

    @classmethod
    def from_recording(cls, recording: Recording) -> "RecordingInfo":
        return cls(
            id=recording.id,
            album_id=recording.album_id,
            original_name=recording.original_name,
            mime_type=recording.mime_type,
            size_bytes=recording.size_bytes,
            created_at=recording.created_at,
            public_token=recording.public_token or "",
            url=f"/v1/recordings/{recording.public_token}/audio",
        )


class BackfillResponse(BaseModel):
    job_id: str
    task: str
    overwrite: bool


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[Any] = None


__all__ = [
    "HealthResponse",
    "EnvCheckResponse",
    "DerivativeAvailability",
    "FileInfo",
    "RecordingInfo",
    "BackfillResponse",
    "ErrorResponse",
]
