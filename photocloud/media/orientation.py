from __future__ import annotations

import enum
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

import cv2  # type: ignore
import numpy as np
from PIL import Image, UnidentifiedImageError

from photocloud.core.logging import get_logger

EXIF_ORIENTATION_TAG = 0x0112
EXIF_IFD_POINTER = 0x8769
EXIF_DATETIME_ORIGINAL = 0x9003
EXIF_DATETIME_FORMAT = "%Y:%m:%d %H:%M:%S"

logger = get_logger(component="orientation")


class Orientation(enum.IntEnum):
    """EXIF orientation values, each bound to the pixel transform that uprights the image."""

    normal = 1
    mirror_horizontal = 2
    rotate_180 = 3
    mirror_vertical = 4
    transpose = 5
    rotate_90_cw = 6
    transverse = 7
    rotate_90_ccw = 8

    @classmethod
    def from_exif(cls, value: object) -> "Orientation":
        try:
            return cls(int(value))  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return cls.normal

    @property
    def swaps_dimensions(self) -> bool:
        return self >= Orientation.transpose

    def apply(self, pixels: np.ndarray) -> np.ndarray:
        if self is Orientation.mirror_horizontal:
            return cv2.flip(pixels, 1)
        if self is Orientation.rotate_180:
            return cv2.rotate(pixels, cv2.ROTATE_180)
        if self is Orientation.mirror_vertical:
            return cv2.flip(pixels, 0)
        if self is Orientation.transpose:
            return cv2.transpose(pixels)
        if self is Orientation.rotate_90_cw:
            return cv2.rotate(pixels, cv2.ROTATE_90_CLOCKWISE)
        if self is Orientation.transverse:
            return cv2.flip(cv2.transpose(pixels), -1)
        if self is Orientation.rotate_90_ccw:
            return cv2.rotate(pixels, cv2.ROTATE_90_COUNTERCLOCKWISE)
        return pixels

    def display_size(self, width: int, height: int) -> tuple[int, int]:
        return (height, width) if self.swaps_dimensions else (width, height)


def read_orientation(path: Path) -> Orientation:
    """Return the EXIF orientation of ``path``; files without one are upright."""
    try:
        with Image.open(path) as image:
            value = image.getexif().get(EXIF_ORIENTATION_TAG)
    except (OSError, UnidentifiedImageError, ValueError) as exc:
        logger.debug("exif_unreadable", path=str(path), error=str(exc))
        return Orientation.normal
    return Orientation.from_exif(value)


def read_capture_time(path: Path) -> Optional[datetime]:
    """Return EXIF ``DateTimeOriginal`` as an aware UTC datetime, or ``None``."""
    try:
        with Image.open(path) as image:
            raw = image.getexif().get_ifd(EXIF_IFD_POINTER).get(EXIF_DATETIME_ORIGINAL)
    except (OSError, UnidentifiedImageError, ValueError) as exc:
        logger.debug("exif_unreadable", path=str(path), error=str(exc))
        return None
    if not raw:
        return None
    if isinstance(raw, bytes):
        raw = raw.decode("ascii", errors="ignore")
    try:
        return datetime.strptime(str(raw).strip("\x00 "), EXIF_DATETIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        logger.debug("exif_capture_time_invalid", path=str(path), value=str(raw))
        return None


def load_pixels(path: Path) -> Optional[np.ndarray]:
    """Decode ``path`` without applying its embedded orientation.

    OpenCV handles the common formats; Pillow covers what it cannot decode
    (GIF, some TIFF variants). Returns ``None`` when neither can read the file.
    """
    pixels = cv2.imread(str(path), cv2.IMREAD_COLOR | cv2.IMREAD_IGNORE_ORIENTATION)
    if pixels is not None:
        return pixels
    try:
        with Image.open(path) as image:
            rgb = image.convert("RGB")
            return cv2.cvtColor(np.asarray(rgb), cv2.COLOR_RGB2BGR)
    except (OSError, UnidentifiedImageError, ValueError):
        return None


def load_upright(path: Path) -> Optional[np.ndarray]:
    pixels = load_pixels(path)
    if pixels is None:
        return None
    return read_orientation(path).apply(pixels)


__all__ = [
    "Orientation",
    "read_orientation",
    "read_capture_time",
    "load_pixels",
    "load_upright",
]
