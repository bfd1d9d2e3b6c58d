from __future__ import annotations

import asyncio
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from photocloud.core.errors import (
    DuplicateDetected,
    MediaError,
    NotFound,
    StorageFailure,
    ValidationFailure,
)
from photocloud.core.logging import format_bytes, get_logger
from photocloud.core.storage import RECORDINGS_SUBDIR, PathResolver, split_extension
from photocloud.db.models import MediaAsset, Recording
from photocloud.db.repository import MetadataStore
from photocloud.media.checksum import ChecksumIndex, DedupScope, compute_checksum
from photocloud.media.derivatives import (
    PROFILES,
    TRANSCODED_PREFIX,
    VIDEO_THUMB_PREFIX,
    Derivative,
    DerivativeGenerator,
    derivative_extension,
)
from photocloud.media.orientation import read_capture_time
from photocloud.media.scheduler import ProcessingScheduler

IMAGE_MIME_TYPES = frozenset(
    {
        "image/jpeg",
        "image/jpg",
        "image/png",
        "image/gif",
        "image/heic",
        "image/heif",
        "image/webp",
        "image/tiff",
        "image/bmp",
    }
)
VIDEO_MIME_TYPES = frozenset(
    {
        "video/mp4",
        "video/quicktime",
        "video/x-msvideo",
        "video/x-ms-wmv",
        "video/x-flv",
        "video/x-matroska",
        "video/webm",
        "video/x-m4v",
    }
)
EXTENSION_MIME_TYPES = {
    "jpeg": "image/jpeg",
    "jpg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "heic": "image/heic",
    "heif": "image/heif",
    "webp": "image/webp",
    "tiff": "image/tiff",
    "bmp": "image/bmp",
    "mp4": "video/mp4",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "wmv": "video/x-ms-wmv",
    "flv": "video/x-flv",
    "mkv": "video/x-matroska",
    "webm": "video/webm",
    "m4v": "video/x-m4v",
}
HEIC_MIME_TYPES = frozenset({"image/heic", "image/heif"})

AUDIO_EXTENSION_MIME_TYPES = {
    "webm": "audio/webm",
    "ogg": "audio/ogg",
    "opus": "audio/ogg",
}

DERIVATIVE_MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}

SIZE_VARIANTS = {
    "thumb": "thumbnail",
    "thumbnail": "thumbnail",
    "medium": "medium",
    "large": "large",
    "original": "original",
}


@dataclass(frozen=True, slots=True)
class ServeTarget:
    absolute_path: Path
    mime_type: str
    filename: str
    checksum: Optional[str] = None
    uploaded_at: Optional[datetime] = None
    generation: int = 0

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


@dataclass(slots=True)
class BackfillReport:
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def normalise_mime(mime_type: Optional[str]) -> str:
    if not mime_type:
        return ""
    return mime_type.split(";", 1)[0].strip().lower()


def extension_of(filename: Optional[str]) -> str:
    _, extension = split_extension(Path(filename or "").name)
    return extension.lower()


class IngestionPipeline:
    """Orchestrates upload, derivative generation and retrieval of gallery media.

    One instance is bound to a metadata store (and through it a database
    session); the resolver, generator and scheduler are shared process-wide.
    Files written by a failed attempt are removed before the error propagates.
    """

    def __init__(
        self,
        store: MetadataStore,
        resolver: PathResolver,
        generator: DerivativeGenerator,
        scheduler: ProcessingScheduler,
        *,
        max_file_size_bytes: int,
    ):
        self.store = store
        self.resolver = resolver
        self.generator = generator
        self.scheduler = scheduler
        self.max_file_size_bytes = max_file_size_bytes
        self.checksums = ChecksumIndex(store)
        self.logger = get_logger(component="ingestion_pipeline")

    # Upload

    async def ingest(
        self,
        payload: bytes,
        original_name: Optional[str],
        mime_type: Optional[str],
        scope: DedupScope,
        content_id: Optional[str] = None,
    ) -> MediaAsset:
        original_name = Path(original_name or "").name or "upload"
        content_id = content_id.strip() if content_id and content_id.strip() else None
        mime = self.validate_media(payload, original_name, mime_type)
        checksum = await asyncio.to_thread(compute_checksum, payload)
        log = self.logger.bind(album_id=scope.album_id, original_name=original_name, checksum=checksum)

        existing = await self.checksums.find_duplicate(checksum=checksum, scope=scope, content_id=content_id)
        if existing is not None:
            log.info("ingest_deduplicated", asset_id=existing.id)
            return existing

        written: list[Path] = []
        stored: Optional[Path] = None
        committed = False
        try:
            stored = await asyncio.to_thread(self.resolver.write_new, payload, original_name)
            written.append(stored)
            log.info("original_stored", path=stored.name, size=format_bytes(len(payload)))

            if mime in HEIC_MIME_TYPES or extension_of(original_name) in ("heic", "heif"):
                converted = await self.generator.convert_heic_to_jpeg(stored)
                if converted != stored:
                    written.append(converted)
                    self.resolver.delete_quietly(stored)
                    written.remove(stored)
                    stored = converted
                mime = "image/jpeg"

            asset = MediaAsset(
                owner_id=scope.owner_id,
                album_id=scope.album_id,
                original_name=original_name,
                stored_filename=stored.name,
                stored_relative_path=self.resolver.to_relative(stored),
                size_bytes=stored.stat().st_size,
                mime_type=mime,
                checksum=checksum,
                content_id=content_id,
                rotation=0,
                content_generation=0,
            )

            if asset.is_image:
                await self._generate_image_metadata(asset, stored)
            else:
                await self._generate_video_metadata(asset, stored)

            highest = await self.store.max_display_order_in_scope(scope.album_id, scope.owner_id)
            asset.display_order = 0 if highest is None else highest + 1

            try:
                saved = await self.store.save(asset)
            except DuplicateDetected:
                winners = await self.store.find_by_checksum_in_album(checksum, scope.album_id)
                if not winners:
                    raise StorageFailure(f"duplicate reported for {checksum} but no stored asset found")
                winner = min(winners, key=lambda item: item.id)
                log.info("ingest_lost_duplicate_race", asset_id=winner.id)
                return winner
            committed = True
            log.info("ingest_completed", asset_id=saved.id, mime_type=saved.mime_type)
            return saved
        except OSError as exc:
            raise StorageFailure(f"could not store {original_name}: {exc}") from exc
        finally:
            if not committed:
                self._discard(written, stored)

    def validate_media(self, payload: bytes, original_name: str, mime_type: Optional[str]) -> str:
        """Check an upload against the size ceiling and type whitelist; return its effective MIME type."""
        self._validate_size(payload, original_name)
        mime = normalise_mime(mime_type)
        extension = extension_of(original_name)
        if mime in IMAGE_MIME_TYPES or mime in VIDEO_MIME_TYPES:
            return "image/jpeg" if mime == "image/jpg" else mime
        if extension in EXTENSION_MIME_TYPES:
            return EXTENSION_MIME_TYPES[extension]
        raise ValidationFailure(f"unsupported file type {mime or 'unknown'} for {original_name}")

    def _validate_size(self, payload: bytes, original_name: str) -> None:
        if not payload:
            raise ValidationFailure(f"{original_name} is empty")
        if len(payload) > self.max_file_size_bytes:
            raise ValidationFailure(
                f"{original_name} is {format_bytes(len(payload))}, limit is {format_bytes(self.max_file_size_bytes)}",
                too_large=True,
            )

    async def _generate_image_metadata(self, asset: MediaAsset, stored: Path) -> None:
        async with self.scheduler.permit(label=stored.name):
            images = await self.generator.generate_image_set(stored)
            dimensions = await self.generator.image_dimensions(stored)
            taken_at = await asyncio.to_thread(read_capture_time, stored)
        self._apply_image_set(asset, images)
        if dimensions:
            asset.width, asset.height = dimensions
        asset.exif_taken_at = taken_at

    async def _generate_video_metadata(self, asset: MediaAsset, stored: Path) -> None:
        probe = await self.generator.probe_video(stored)
        if probe is not None:
            asset.width = probe.width
            asset.height = probe.height
            asset.duration_ms = probe.duration_ms
        async with self.scheduler.permit(label=stored.name):
            transcoded = await self.generator.transcode_video(stored)
            thumbnail = await self.generator.video_thumbnail(stored)
        asset.transcoded_video_path = self.resolver.to_relative(transcoded)
        asset.thumbnail_path = self.resolver.to_relative(thumbnail)

    def _apply_image_set(self, asset: MediaAsset, images: dict[str, Optional[Derivative]]) -> None:
        def relative(name: str) -> Optional[str]:
            derivative = images.get(name)
            return self.resolver.to_relative(derivative.path) if derivative else None

        asset.set_image_derivatives(relative("thumbnail"), relative("medium"), relative("large"))

    def _derivative_candidates(self, stored: Path) -> list[Path]:
        extension = derivative_extension(stored)
        candidates = [self.resolver.derivative_path(stored, profile.prefix, extension) for profile in PROFILES]
        candidates.append(stored.with_name(f"{TRANSCODED_PREFIX}{stored.stem}.mp4"))
        candidates.append(stored.with_name(f"{VIDEO_THUMB_PREFIX}{stored.stem}.jpg"))
        return candidates

    def _discard(self, written: Iterable[Path], stored: Optional[Path]) -> None:
        paths = list(written)
        if stored is not None:
            paths.extend(self._derivative_candidates(stored))
        if paths:
            self.logger.info("ingest_cleanup", paths=[path.name for path in paths if path.exists()])
        self.resolver.delete_quietly(*paths)

    # Mutation

    async def get_asset(self, asset_id: int, owner_id: str) -> MediaAsset:
        asset = await self.store.get_owned(asset_id, owner_id)
        if asset is None:
            raise NotFound(f"asset {asset_id} not found")
        return asset

    async def rotate_left(self, asset_id: int, owner_id: str) -> MediaAsset:
        asset = await self.get_asset(asset_id, owner_id)
        if not asset.is_image:
            raise ValidationFailure("only images can be rotated")
        original = self._existing_path(asset.stored_relative_path)
        if original is None:
            raise NotFound(f"original of asset {asset_id} is missing on disk")

        async with self.scheduler.permit(label=original.name):
            await self.generator.rotate_left(original)
            self.resolver.delete_quietly(*self._absolute_paths(asset.derivatives.paths()))
            images = await self.generator.generate_image_set(original)

        self._apply_image_set(asset, images)
        if asset.width is not None and asset.height is not None:
            asset.width, asset.height = asset.height, asset.width
        asset.rotation = (asset.rotation + 90) % 360
        asset.size_bytes = original.stat().st_size
        asset.content_generation += 1
        await self.store.update(asset, reissue_token=True)
        self.logger.info(
            "asset_rotated",
            asset_id=asset.id,
            rotation=asset.rotation,
            content_generation=asset.content_generation,
        )
        return asset

    async def delete_asset(self, asset_id: int, owner_id: str) -> None:
        asset = await self.get_asset(asset_id, owner_id)
        paths = self._absolute_paths([asset.stored_relative_path, *asset.derivatives.paths()])
        self.resolver.delete_quietly(*paths)
        await self.store.delete(asset)
        self.logger.info("asset_deleted", asset_id=asset_id, files=len(paths))

    async def backfill_derivatives(self, *, overwrite: bool = False) -> BackfillReport:
        report = BackfillReport()
        for asset in await self.store.list_assets():
            report.processed += 1
            try:
                outcome = await self._backfill_one(asset, overwrite=overwrite)
            except MediaError as exc:
                self.logger.warning("backfill_asset_failed", asset_id=asset.id, error=str(exc))
                outcome = "failed"
            setattr(report, outcome, getattr(report, outcome) + 1)
        self.logger.info("backfill_completed", overwrite=overwrite, **report.as_dict())
        return report

    async def _backfill_one(self, asset: MediaAsset, *, overwrite: bool) -> str:
        original = self._existing_path(asset.stored_relative_path)
        if asset.is_image:
            present = [self._existing_path(path) for path in (asset.thumbnail_path, asset.medium_path, asset.large_path)]
            if not overwrite and all(present):
                return "skipped"
            if original is None:
                return "failed"
            async with self.scheduler.permit(label=original.name):
                images = await self.generator.generate_image_set(original)
                dimensions = await self.generator.image_dimensions(original)
            self._apply_image_set(asset, images)
            if dimensions and asset.width is None:
                asset.width, asset.height = dimensions
            await self.store.update(asset)
            return "succeeded" if all(images.values()) else "failed"

        if not overwrite and self._existing_path(asset.thumbnail_path):
            return "skipped"
        if original is None:
            return "failed"
        async with self.scheduler.permit(label=original.name):
            thumbnail = await self.generator.video_thumbnail(original)
        if thumbnail is None:
            return "failed"
        asset.thumbnail_path = self.resolver.to_relative(thumbnail)
        await self.store.update(asset)
        return "succeeded"

    # Retrieval

    async def resolve_for_serving(self, public_token: str, size_variant: Optional[str] = None) -> ServeTarget:
        asset = await self.store.find_by_public_token(public_token)
        if asset is None:
            raise NotFound("unknown content token")

        variant = (size_variant or "").strip().lower()
        if variant and variant not in SIZE_VARIANTS:
            raise ValidationFailure(f"unknown size variant {size_variant!r}")
        variant = SIZE_VARIANTS.get(variant, "")

        if asset.is_video:
            target = self._resolve_video(asset, variant)
        else:
            target = self._resolve_image(asset, variant)
        if target is not None:
            return target

        original = self._existing_path(asset.stored_relative_path)
        if original is None:
            raise NotFound(f"original of asset {asset.id} is missing on disk")
        return ServeTarget(
            absolute_path=original,
            mime_type=asset.mime_type,
            filename=asset.original_name,
            checksum=asset.checksum,
            uploaded_at=asset.uploaded_at,
            generation=asset.content_generation,
        )

    def _resolve_video(self, asset: MediaAsset, variant: str) -> Optional[ServeTarget]:
        if variant == "thumbnail":
            thumbnail = self._existing_path(asset.thumbnail_path)
            if thumbnail is not None:
                return self._derivative_target(asset, thumbnail, "image/jpeg")
            return None
        if variant == "original":
            return None
        transcoded = self._existing_path(asset.transcoded_video_path)
        if transcoded is not None:
            return self._derivative_target(asset, transcoded, "video/mp4")
        return None

    def _resolve_image(self, asset: MediaAsset, variant: str) -> Optional[ServeTarget]:
        relative = {
            "thumbnail": asset.thumbnail_path,
            "medium": asset.medium_path,
            "large": asset.large_path,
        }.get(variant)
        path = self._existing_path(relative)
        if path is None:
            return None
        mime = DERIVATIVE_MIME_TYPES.get(path.suffix.lower(), asset.mime_type)
        return self._derivative_target(asset, path, mime)

    def _derivative_target(self, asset: MediaAsset, path: Path, mime_type: str) -> ServeTarget:
        stem, _ = split_extension(asset.original_name)
        return ServeTarget(
            absolute_path=path,
            mime_type=mime_type,
            filename=f"{stem}{path.suffix}",
            checksum=asset.checksum,
            uploaded_at=asset.uploaded_at,
            generation=asset.content_generation,
        )

    def _existing_path(self, relative: Optional[str]) -> Optional[Path]:
        path = self.resolver.to_absolute(relative)
        if path is None or not path.is_file():
            return None
        return path

    def _absolute_paths(self, relatives: Iterable[Optional[str]]) -> list[Path]:
        paths: list[Path] = []
        for relative in relatives:
            path = self.resolver.to_absolute(relative)
            if path is not None:
                paths.append(path)
        return paths

    # Recordings

    async def ingest_recording(
        self,
        payload: bytes,
        original_name: Optional[str],
        mime_type: Optional[str],
        scope: DedupScope,
    ) -> Recording:
        original_name = Path(original_name or "").name or "recording.webm"
        self._validate_size(payload, original_name)
        extension = extension_of(original_name)
        mime = normalise_mime(mime_type)
        if extension not in AUDIO_EXTENSION_MIME_TYPES:
            if mime not in AUDIO_EXTENSION_MIME_TYPES.values():
                raise ValidationFailure(f"unsupported audio type {mime or 'unknown'} for {original_name}")
            extension = "ogg" if mime == "audio/ogg" else "webm"
            original_name = f"{split_extension(original_name)[0]}.{extension}"

        stored: Optional[Path] = None
        committed = False
        try:
            stored = await asyncio.to_thread(
                self.resolver.write_new, payload, original_name, subdir=RECORDINGS_SUBDIR
            )
            async with self.scheduler.permit(label=stored.name):
                await self.generator.reencode_audio(stored)

            recording = Recording(
                owner_id=scope.owner_id,
                album_id=scope.album_id,
                original_name=original_name,
                audio_relative_path=self.resolver.to_relative(stored),
                mime_type=AUDIO_EXTENSION_MIME_TYPES[extension],
                size_bytes=stored.stat().st_size,
            )
            saved = await self.store.save_recording(recording)
            committed = True
            self.logger.info("recording_stored", recording_id=saved.id, album_id=scope.album_id)
            return saved
        except OSError as exc:
            raise StorageFailure(f"could not store recording {original_name}: {exc}") from exc
        finally:
            if not committed and stored is not None:
                self.resolver.delete_quietly(stored)

    async def resolve_recording(self, public_token: str) -> ServeTarget:
        recording = await self.store.find_recording_by_public_token(public_token)
        if recording is None:
            raise NotFound("unknown recording token")
        path = self._existing_path(recording.audio_relative_path)
        if path is None:
            raise NotFound(f"audio of recording {recording.id} is missing on disk")
        return ServeTarget(
            absolute_path=path,
            mime_type=recording.mime_type,
            filename=recording.original_name,
            uploaded_at=recording.created_at,
        )


__all__ = [
    "IngestionPipeline",
    "ServeTarget",
    "BackfillReport",
    "IMAGE_MIME_TYPES",
    "VIDEO_MIME_TYPES",
    "EXTENSION_MIME_TYPES",
]
