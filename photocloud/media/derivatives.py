from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

import cv2  # type: ignore
import numpy as np
from PIL import Image, UnidentifiedImageError

from photocloud.core.config import Settings
from photocloud.core.errors import ProcessingFailure
from photocloud.core.logging import format_bytes, get_logger
from photocloud.core.storage import PathResolver

from .orientation import load_upright, read_orientation
from .probe import VideoProbe, ffprobe_command, parse_probe_output
from .runner import CommandResult, CommandRunner

HEIC_QUALITY = 95
VIDEO_THUMB_WIDTH = 600
TRANSCODED_PREFIX = "web_"
VIDEO_THUMB_PREFIX = "thumb_"


@dataclass(frozen=True, slots=True)
class SizeProfile:
    name: str
    max_width: int
    max_height: int
    quality: int
    prefix: str


THUMBNAIL = SizeProfile("thumbnail", 600, 600, 60, "thumb_")
MEDIUM = SizeProfile("medium", 1200, 1200, 95, "medium_")
LARGE = SizeProfile("large", 2400, 2400, 95, "large_")

PROFILES: Tuple[SizeProfile, ...] = (THUMBNAIL, MEDIUM, LARGE)


@dataclass(frozen=True, slots=True)
class Derivative:
    profile: str
    path: Path
    width: int
    height: int


def derivative_extension(source: Path) -> str:
    """PNG and WebP keep their container; everything else becomes JPEG."""
    suffix = source.suffix.lower()
    if suffix in (".png", ".webp"):
        return suffix
    return ".jpg"


def scale_ratio(width: int, height: int, profile: SizeProfile) -> float:
    """Fit ``width x height`` inside the profile box, never upscaling."""
    if width <= 0 or height <= 0:
        raise ValueError(f"invalid image size {width}x{height}")
    return min(profile.max_width / width, profile.max_height / height, 1.0)


def temp_sibling(target: Path) -> Path:
    return target.with_name(f"{target.stem}_tmp{target.suffix}")


def _encode_params(extension: str, quality: int) -> list[int]:
    if extension == ".png":
        return [cv2.IMWRITE_PNG_COMPRESSION, 6]
    if extension == ".webp":
        return [cv2.IMWRITE_WEBP_QUALITY, quality]
    return [cv2.IMWRITE_JPEG_QUALITY, quality]


def _render_profile(pixels: np.ndarray, target: Path, profile: SizeProfile) -> Derivative:
    height, width = pixels.shape[:2]
    ratio = scale_ratio(width, height, profile)
    if ratio < 1.0:
        new_size = (max(1, round(width * ratio)), max(1, round(height * ratio)))
        resized = cv2.resize(pixels, new_size, interpolation=cv2.INTER_AREA)
    else:
        resized = pixels

    ok, encoded = cv2.imencode(target.suffix, resized, _encode_params(target.suffix.lower(), profile.quality))
    if not ok:
        raise ValueError(f"encoder rejected {target.suffix}")

    partial = temp_sibling(target)
    try:
        partial.write_bytes(encoded.tobytes())
        os.replace(partial, target)
    except BaseException:
        partial.unlink(missing_ok=True)
        raise
    out_height, out_width = resized.shape[:2]
    return Derivative(profile=profile.name, path=target, width=out_width, height=out_height)


class DerivativeGenerator:
    """Produces converted originals and size variants for stored media.

    External codecs (ImageMagick, ffmpeg, ffprobe) run through a
    :class:`CommandRunner`; resizing runs in-process with OpenCV on a worker
    thread. Every output lands under a temporary sibling name first and is
    renamed into place only when complete.
    """

    def __init__(
        self,
        resolver: PathResolver,
        runner: CommandRunner,
        *,
        imagemagick_binary: str = "convert",
        ffmpeg_binary: str = "ffmpeg",
        ffprobe_binary: str = "ffprobe",
        command_timeout_s: float = 300.0,
        transcode_timeout_s: float = 3600.0,
        video_thumbnail_offset_s: float = 1.0,
    ):
        self.resolver = resolver
        self.runner = runner
        self.imagemagick_binary = imagemagick_binary
        self.ffmpeg_binary = ffmpeg_binary
        self.ffprobe_binary = ffprobe_binary
        self.command_timeout_s = command_timeout_s
        self.transcode_timeout_s = transcode_timeout_s
        self.video_thumbnail_offset_s = video_thumbnail_offset_s
        self.logger = get_logger(component="derivative_generator")

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        resolver: PathResolver,
        runner: Optional[CommandRunner] = None,
    ) -> "DerivativeGenerator":
        return cls(
            resolver,
            runner or CommandRunner(default_timeout_s=settings.command_timeout_s),
            imagemagick_binary=settings.imagemagick_binary,
            ffmpeg_binary=settings.ffmpeg_binary,
            ffprobe_binary=settings.ffprobe_binary,
            command_timeout_s=settings.command_timeout_s,
            transcode_timeout_s=settings.transcode_timeout_s,
            video_thumbnail_offset_s=settings.video_thumbnail_offset_s,
        )

    # Images

    async def convert_heic_to_jpeg(self, source: Path) -> Path:
        target = source.with_suffix(".jpg")
        if target == source:
            # HEIC bytes under a .jpg name; never convert onto the source itself.
            target = source.with_name(f"{source.stem}-converted.jpg")
        partial = temp_sibling(target)
        command = [self.imagemagick_binary, str(source), "-quality", str(HEIC_QUALITY), str(partial)]
        self.logger.info("heic_conversion_started", source=source.name)
        try:
            result = await self.runner.run(command, timeout_s=self.command_timeout_s)
            if not result.ok or not _non_empty(partial):
                raise ProcessingFailure(
                    "heic_conversion",
                    f"could not convert {source.name} to JPEG: {result.describe() if not result.ok else 'empty output'}",
                    fatal=True,
                    result=result,
                )
            os.replace(partial, target)
        finally:
            partial.unlink(missing_ok=True)
        self.logger.info("heic_conversion_completed", source=source.name, target=target.name)
        return target

    async def generate_image_derivative(self, source: Path, profile: SizeProfile) -> Optional[Derivative]:
        """Render one size variant of ``source``; ``None`` when it cannot be produced."""
        results = await self._render(source, (profile,))
        return results[profile.name]

    async def generate_image_set(self, source: Path) -> Dict[str, Optional[Derivative]]:
        """Render every size profile; each one fails independently."""
        return await self._render(source, PROFILES)

    async def _render(self, source: Path, profiles: Tuple[SizeProfile, ...]) -> Dict[str, Optional[Derivative]]:
        results: Dict[str, Optional[Derivative]] = {profile.name: None for profile in profiles}
        try:
            pixels = await asyncio.to_thread(load_upright, source)
        except (cv2.error, OSError) as exc:
            self.logger.warning("image_decode_failed", source=source.name, error=str(exc))
            return results
        if pixels is None:
            self.logger.warning("image_decode_failed", source=source.name, error="unsupported or corrupt image")
            return results

        extension = derivative_extension(source)
        for profile in profiles:
            target = self.resolver.derivative_path(source, profile.prefix, extension)
            try:
                derivative = await asyncio.to_thread(_render_profile, pixels, target, profile)
            except (cv2.error, OSError, ValueError) as exc:
                self.logger.warning(
                    "image_derivative_failed",
                    source=source.name,
                    profile=profile.name,
                    error=str(exc),
                )
                continue
            results[profile.name] = derivative
            self.logger.debug(
                "image_derivative_created",
                source=source.name,
                profile=profile.name,
                width=derivative.width,
                height=derivative.height,
                size=format_bytes(target.stat().st_size),
            )
        return results

    async def image_dimensions(self, path: Path) -> Optional[Tuple[int, int]]:
        """Display width and height of ``path`` after EXIF orientation."""
        return await asyncio.to_thread(_display_size, path)

    async def rotate_left(self, path: Path) -> None:
        """Rotate ``path`` 90 degrees counter-clockwise in place, baking in EXIF orientation."""
        partial = temp_sibling(path)
        command = [self.imagemagick_binary, str(path), "-auto-orient", "-rotate", "-90", str(partial)]
        try:
            result = await self.runner.run(command, timeout_s=self.command_timeout_s)
            if not result.ok or not _non_empty(partial):
                raise ProcessingFailure(
                    "rotate",
                    f"could not rotate {path.name}: {result.describe() if not result.ok else 'empty output'}",
                    fatal=True,
                    result=result,
                )
            os.replace(partial, path)
        finally:
            partial.unlink(missing_ok=True)
        self.logger.info("image_rotated", path=path.name)

    # Video

    async def transcode_video(self, source: Path) -> Optional[Path]:
        """Web-compatible H.264/AAC MP4 next to ``source``; ``None`` on failure."""
        target = source.with_name(f"{TRANSCODED_PREFIX}{source.stem}.mp4")
        partial = temp_sibling(target)
        command = [
            self.ffmpeg_binary,
            "-nostdin",
            "-y",
            "-i",
            str(source),
            "-c:v",
            "libx264",
            "-profile:v",
            "main",
            "-level",
            "4.0",
            "-preset",
            "medium",
            "-c:a",
            "aac",
            "-b:a",
            "128k",
            "-movflags",
            "+faststart",
            "-f",
            "mp4",
            str(partial),
        ]
        self.logger.info("video_transcode_started", source=source.name)
        produced = await self._run_optional(command, partial, target, operation="transcode", timeout_s=self.transcode_timeout_s)
        if produced:
            self.logger.info("video_transcode_completed", source=source.name, size=format_bytes(target.stat().st_size))
        return produced

    async def video_thumbnail(self, source: Path) -> Optional[Path]:
        """JPEG still taken at the configured offset; ``None`` on failure."""
        target = source.with_name(f"{VIDEO_THUMB_PREFIX}{source.stem}.jpg")
        partial = temp_sibling(target)
        command = [
            self.ffmpeg_binary,
            "-nostdin",
            "-v",
            "error",
            "-ss",
            f"{max(self.video_thumbnail_offset_s, 0.0):.3f}",
            "-i",
            str(source),
            "-frames:v",
            "1",
            "-vf",
            f"scale={VIDEO_THUMB_WIDTH}:-2",
            "-q:v",
            "2",
            "-y",
            str(partial),
        ]
        return await self._run_optional(command, partial, target, operation="video_thumbnail", timeout_s=self.command_timeout_s)

    async def probe_video(self, source: Path) -> Optional[VideoProbe]:
        result = await self.runner.run(ffprobe_command(self.ffprobe_binary, str(source)), timeout_s=self.command_timeout_s)
        if not result.ok:
            self.logger.warning("video_probe_failed", source=source.name, reason=result.describe())
            return None
        probe = parse_probe_output(result.output)
        if probe is None:
            self.logger.warning("video_probe_unparseable", source=source.name)
        return probe

    # Audio

    async def reencode_audio(self, path: Path) -> None:
        """Re-encode browser-captured audio to Opus and replace ``path`` with the result."""
        partial = temp_sibling(path)
        command = [
            self.ffmpeg_binary,
            "-y",
            "-fflags",
            "+genpts",
            "-i",
            str(path),
            "-c:a",
            "libopus",
            "-b:a",
            "64k",
            "-vbr",
            "on",
            "-application",
            "audio",
            "-avoid_negative_ts",
            "make_zero",
            str(partial),
        ]
        try:
            result = await self.runner.run(command, timeout_s=self.command_timeout_s)
            if not result.ok or not _non_empty(partial):
                raise ProcessingFailure(
                    "audio_reencode",
                    f"could not re-encode {path.name}: {result.describe() if not result.ok else 'empty output'}",
                    fatal=True,
                    result=result,
                )
            os.replace(partial, path)
        finally:
            partial.unlink(missing_ok=True)
        self.logger.info("audio_reencoded", path=path.name, size=format_bytes(path.stat().st_size))

    async def _run_optional(
        self,
        command: list[str],
        partial: Path,
        target: Path,
        *,
        operation: str,
        timeout_s: float,
    ) -> Optional[Path]:
        try:
            result: CommandResult = await self.runner.run(command, timeout_s=timeout_s)
            if result.ok and _non_empty(partial):
                os.replace(partial, target)
                return target
        finally:
            partial.unlink(missing_ok=True)
        self.logger.warning(
            "optional_derivative_failed",
            operation=operation,
            target=target.name,
            reason=result.describe() if not result.ok else "empty output",
        )
        return None


def _non_empty(path: Path) -> bool:
    try:
        return path.stat().st_size > 0
    except FileNotFoundError:
        return False


def _display_size(path: Path) -> Optional[Tuple[int, int]]:
    try:
        with Image.open(path) as image:
            width, height = image.size
    except (OSError, UnidentifiedImageError, ValueError):
        return None
    return read_orientation(path).display_size(width, height)


__all__ = [
    "SizeProfile",
    "PROFILES",
    "THUMBNAIL",
    "MEDIUM",
    "LARGE",
    "Derivative",
    "DerivativeGenerator",
    "derivative_extension",
    "scale_ratio",
    "temp_sibling",
]
