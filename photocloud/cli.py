from __future__ import annotations

import argparse
import asyncio
import shutil
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from rich.console import Console
from rich.table import Table

from .core.config import get_settings
from .core.logging import configure_logging, format_bytes
from .core.storage import PathResolver
from .media.checksum import compute_file_checksum
from .media.derivatives import DerivativeGenerator
from .media.orientation import read_capture_time, read_orientation
from .media.ranges import evaluate_range
from .media.runner import CommandRunner

console = Console()


def main(argv: Optional[list[str]] = None) -> None:
    """The main entry point for the CLI.

    Args:
        argv: The command-line arguments.
    """
    parser = _build_parser()
    args = parser.parse_args(argv)

    if getattr(args, "check", False):
        _run_environment_check()
        return

    if not hasattr(args, "func"):
        parser.print_help()
        sys.exit(1)

    args.func(args)


def _build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the CLI.

    Returns:
        The argument parser.
    """
    parser = argparse.ArgumentParser(description="PhotoCloud media developer CLI")
    parser.add_argument("--check", action="store_true", help="Validate presence of ffmpeg/ffprobe/ImageMagick")

    subparsers = parser.add_subparsers(dest="command")

    checksum_parser = subparsers.add_parser("checksum", help="Print the SHA256 dedup key and EXIF facts of a file")
    checksum_parser.add_argument("--file", required=True, help="Path to the media file")
    checksum_parser.set_defaults(func=_cmd_checksum)

    derivatives_parser = subparsers.add_parser("derivatives", help="Render the derivative set for a file")
    derivatives_parser.add_argument("--file", required=True, help="Path to the source media file")
    derivatives_parser.add_argument(
        "--out-dir",
        default="derived",
        help="Directory receiving a copy of the source and its derivatives.",
    )
    derivatives_parser.set_defaults(func=_cmd_derivatives)

    range_parser = subparsers.add_parser("range", help="Show how a Range header would be answered for a file")
    range_parser.add_argument("--file", required=True, help="Path to the served file")
    range_parser.add_argument("--header", default=None, help='Range header value, e.g. "bytes=0-99"')
    range_parser.set_defaults(func=_cmd_range)
    return parser


def _require_file(raw: str) -> Path:
    path = Path(raw).expanduser().resolve()
    if not path.is_file():
        console.print(f"[red]File not found: {path}[/]")
        sys.exit(2)
    return path


def _cmd_checksum(args: argparse.Namespace) -> None:
    """Print the checksum, orientation and capture time of a file.

    Args:
        args: The command-line arguments.
    """
    media_path = _require_file(args.file)
    taken_at = read_capture_time(media_path)
    console.print_json(
        data={
            "file": str(media_path),
            "size": format_bytes(media_path.stat().st_size),
            "sha256": compute_file_checksum(media_path),
            "orientation": read_orientation(media_path).name,
            "taken_at": taken_at.isoformat() if taken_at else None,
        }
    )


def _cmd_derivatives(args: argparse.Namespace) -> None:
    """Copy a file into the output directory and render its derivatives there.

    Args:
        args: The command-line arguments.
    """
    media_path = _require_file(args.file)
    settings = get_settings()
    configure_logging()

    resolver = PathResolver(Path(args.out_dir))
    target = resolver.root / media_path.name
    shutil.copy2(media_path, target)
    generator = DerivativeGenerator.from_settings(settings, resolver)

    report = asyncio.run(_render(generator, target))
    console.print_json(data=report)


async def _render(generator: DerivativeGenerator, source: Path) -> Dict[str, Any]:
    if source.suffix.lower() in {".heic", ".heif"}:
        source = await generator.convert_heic_to_jpeg(source)

    images = await generator.generate_image_set(source)
    if any(images.values()):
        return {
            "source": str(source),
            "dimensions": await generator.image_dimensions(source),
            "derivatives": {
                name: {"path": str(item.path), "width": item.width, "height": item.height} if item else None
                for name, item in images.items()
            },
        }

    probe = await generator.probe_video(source)
    transcoded = await generator.transcode_video(source)
    thumbnail = await generator.video_thumbnail(source)
    return {
        "source": str(source),
        "probe": {"width": probe.width, "height": probe.height, "duration_ms": probe.duration_ms} if probe else None,
        "transcoded_video": str(transcoded) if transcoded else None,
        "thumbnail": str(thumbnail) if thumbnail else None,
    }


def _cmd_range(args: argparse.Namespace) -> None:
    """Print the status and interval a Range header resolves to.

    Args:
        args: The command-line arguments.
    """
    media_path = _require_file(args.file)
    decision = evaluate_range(args.header, media_path.stat().st_size)
    console.print_json(
        data={
            "status": int(decision.status),
            "content_range": decision.content_range,
            "content_length": decision.length,
        }
    )


def _run_environment_check() -> None:
    """Check for the presence of required external dependencies."""
    settings = get_settings()
    runner = CommandRunner(default_timeout_s=10.0)
    checks = {
        "ffmpeg": [settings.ffmpeg_binary, "-version"],
        "ffprobe": [settings.ffprobe_binary, "-version"],
        "ImageMagick": [settings.imagemagick_binary, "-version"],
    }

    async def _probe_all() -> Dict[str, bool]:
        return {label: (await runner.run(cmd)).ok for label, cmd in checks.items()}

    results = asyncio.run(_probe_all())

    table = Table(title="Environment Check")
    table.add_column("Tool")
    table.add_column("Available")
    for label, ok in results.items():
        table.add_row(label, "[green]yes[/]" if ok else "[red]no[/]")
    console.print(table)

    if not all(results.values()):
        console.print("[red]Missing dependencies detected. Install ffmpeg and ImageMagick.[/]")
        sys.exit(1)
    console.print("[green]Environment looks good![/]")


if __name__ == "__main__":
    main()
