from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True, slots=True)
class VideoProbe:
    """Display geometry and length of the primary video stream."""

    width: Optional[int]
    height: Optional[int]
    duration_ms: Optional[int]
    codec: Optional[str] = None


def ffprobe_command(binary: str, source: str) -> List[str]:
    return [
        binary,
        "-v",
        "error",
        "-show_format",
        "-show_streams",
        "-print_format",
        "json",
        source,
    ]


def parse_probe_output(output: str) -> Optional[VideoProbe]:
    """Parse ffprobe JSON output.

    Args:
        output: The raw stdout of ``ffprobe -print_format json``.

    Returns:
        The probe summary, or None if the output holds no video stream.
    """
    try:
        raw = json.loads(output)
    except ValueError:
        return None
    if not isinstance(raw, dict):
        return None
    return summarise_probe(raw)


def summarise_probe(raw: Dict[str, Any]) -> Optional[VideoProbe]:
    """Summarise the primary video stream of an ffprobe document.

    Args:
        raw: The decoded ffprobe JSON.

    Returns:
        The probe summary, or None if there is no video stream.
    """
    streams = [stream for stream in raw.get("streams") or [] if _is_video(stream)]
    if not streams:
        return None
    selected = _select_video_stream(streams)

    width = _int_or_none(selected.get("width"))
    height = _int_or_none(selected.get("height"))
    if width and height and _rotation_degrees(selected) in (90, 270):
        width, height = height, width

    format_info = raw.get("format") or {}
    duration_s, _ = _parse_duration(format_info.get("duration"))
    if not duration_s:
        duration_s, _ = _parse_duration(selected.get("duration"))
    duration_ms = int(round(duration_s * 1000)) if duration_s else None

    return VideoProbe(width=width, height=height, duration_ms=duration_ms, codec=selected.get("codec_name"))


def _is_video(stream: Dict[str, Any]) -> bool:
    codec_type = stream.get("codec_type")
    if not isinstance(codec_type, str) or codec_type.lower() != "video":
        return False
    # Cover art in audio containers is reported as a single-frame video stream.
    return not _disposition_flag(stream.get("disposition"), "attached_pic")


def _select_video_stream(streams: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Select the video stream to use.

    Args:
        streams: The video streams.

    Returns:
        The default stream if one is flagged, otherwise the highest resolution one.
    """
    default_streams = [stream for stream in streams if _disposition_flag(stream.get("disposition"), "default")]
    if default_streams:
        return default_streams[0]

    def score(item: Dict[str, Any]) -> int:
        return (_int_or_none(item.get("width")) or 0) * (_int_or_none(item.get("height")) or 0)

    return max(streams, key=score)


def _rotation_degrees(stream: Dict[str, Any]) -> int:
    tags = stream.get("tags") or {}
    candidates: List[Any] = [tags.get("rotate")]
    for side_data in stream.get("side_data_list") or []:
        if isinstance(side_data, dict):
            candidates.append(side_data.get("rotation"))
    for value in candidates:
        degrees = _int_or_none(value)
        if degrees is not None:
            return degrees % 360
    return 0


def _disposition_flag(disposition: Any, key: str) -> bool:
    if not isinstance(disposition, dict):
        return False
    return bool(disposition.get(key))


def _int_or_none(value: Any) -> Optional[int]:
    """Return an integer or None.

    Args:
        value: The raw value.

    Returns:
        The integer value, or None if it's not a valid integer.
    """
    if value in (None, "N/A", ""):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _parse_duration(raw_value: Any) -> Tuple[float, Optional[str]]:
    """Parse the duration from ffprobe.

    Args:
        raw_value: The raw duration value.

    Returns:
        A tuple containing the duration in seconds and an optional warning.
    """
    if raw_value in (None, "N/A", ""):
        return 0.0, "duration_unavailable"
    try:
        return float(raw_value), None
    except (TypeError, ValueError):
        return 0.0, "duration_unavailable"


__all__ = ["VideoProbe", "ffprobe_command", "parse_probe_output", "summarise_probe"]
