import asyncio
import json
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator, Iterable, Optional

import cv2
import jwt
import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from photocloud.core.config import Settings, get_settings
from photocloud.core.db import Base, create_engine, create_schema, create_session_factory
from photocloud.core.jobs import get_job_backend
from photocloud.core.storage import PathResolver
from photocloud.db.repository import SqlMetadataStore
from photocloud.main import create_app
from photocloud.media.derivatives import DerivativeGenerator
from photocloud.media.runner import CommandResult, CommandStatus
from photocloud.media.scheduler import ProcessingScheduler
from photocloud.media.tokens import PublicTokenIssuer
from photocloud.services.ingest_service import IngestionPipeline

JWT_SECRET = "test-secret"
JWT_ISSUER = "photocloud-test"
JWT_AUDIENCE = "photocloud"

PROBE_OUTPUT = {
    "streams": [
        {"index": 0, "codec_type": "video", "codec_name": "h264", "width": 1920, "height": 1080},
        {"index": 1, "codec_type": "audio", "codec_name": "aac", "channels": 2},
    ],
    "format": {"format_name": "mov,mp4", "duration": "12.5"},
}


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default PhotoCloud environment bootstrap fixture for tests that manage their own .env",
    )


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        get_job_backend.cache_clear()
        yield
        get_job_backend.cache_clear()
        get_settings.cache_clear()
        return
    db_path = tmp_path / "photocloud_test.db"
    upload_dir = tmp_path / "uploads"

    monkeypatch.setenv("PHOTOCLOUD_ENV", "test")
    monkeypatch.setenv("PHOTOCLOUD_LOG_LEVEL", "debug")
    monkeypatch.setenv("PHOTOCLOUD_DB_URL", f"sqlite+aiosqlite:///{db_path}")
    monkeypatch.setenv("PHOTOCLOUD_UPLOAD_DIR", str(upload_dir))
    monkeypatch.setenv("PHOTOCLOUD_JOB_BACKEND", "inline")
    monkeypatch.setenv("PHOTOCLOUD_REDIS_URL", "redis://localhost:6379/0")
    monkeypatch.setenv("PHOTOCLOUD_JWT_SECRET", JWT_SECRET)
    monkeypatch.setenv("PHOTOCLOUD_JWT_ISSUER", JWT_ISSUER)
    monkeypatch.setenv("PHOTOCLOUD_JWT_AUDIENCE", JWT_AUDIENCE)
    monkeypatch.setenv("PHOTOCLOUD_PUBLIC_TOKEN_SECRET", "test-token-secret")

    get_settings.cache_clear()
    get_job_backend.cache_clear()
    settings = get_settings()
    engine = create_engine(settings)

    asyncio.run(create_schema(engine))

    yield

    async def _teardown() -> None:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await engine.dispose()

    asyncio.run(_teardown())
    get_job_backend.cache_clear()
    get_settings.cache_clear()


@pytest.fixture()
def settings(configure_environment) -> Settings:
    return get_settings()


@pytest.fixture()
def fake_runner() -> "FakeRunner":
    return FakeRunner()


@pytest.fixture()
def client(configure_environment, fake_runner):
    app = create_app(runner=fake_runner)
    with TestClient(app) as client:
        yield client


def build_token(user_id: Optional[str], *, scopes: list[str] | None = None) -> str:
    payload: dict[str, object] = {"iss": JWT_ISSUER, "aud": JWT_AUDIENCE}
    if user_id:
        payload["sub"] = user_id
    if scopes:
        payload["scopes"] = scopes
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


@pytest.fixture()
def user_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-1')}"}


@pytest.fixture()
def other_user_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('user-2')}"}


@pytest.fixture()
def admin_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {build_token('admin-1', scopes=['admin'])}"}


class FakeRunner:
    """Scripted stand-in for the codec binaries.

    Each command is classified by what it would do; classifications listed in
    ``failures`` exit non-zero after leaving a partial output file behind.
    """

    def __init__(self, failures: Iterable[str] = ()):
        self.failures = set(failures)
        self.calls: list[list[str]] = []
        self.probe_output = json.dumps(PROBE_OUTPUT)

    def calls_for(self, action: str) -> list[list[str]]:
        return [argv for argv in self.calls if classify(argv) == action]

    async def run(self, command, *, timeout_s=None) -> CommandResult:
        argv = [str(part) for part in command]
        self.calls.append(argv)
        action = classify(argv)
        await asyncio.sleep(0)

        if action in self.failures:
            if action not in ("probe", "version"):
                Path(argv[-1]).write_bytes(b"partial")
            return CommandResult(argv, CommandStatus.failed, 1, f"simulated {action} failure", 0.0)

        output = ""
        target = Path(argv[-1])
        if action == "heic":
            write_image(target, 64, 48)
        elif action == "rotate":
            pixels = cv2.imread(argv[1], cv2.IMREAD_COLOR)
            cv2.imwrite(str(target), cv2.rotate(pixels, cv2.ROTATE_90_COUNTERCLOCKWISE))
        elif action == "transcode":
            target.write_bytes(b"fake-mp4")
        elif action == "video_thumbnail":
            write_image(target, 60, 34)
        elif action == "audio":
            target.write_bytes(b"OggS-opus-audio")
        elif action == "probe":
            output = self.probe_output
        return CommandResult(argv, CommandStatus.succeeded, 0, output, 0.0)


def classify(argv: list[str]) -> str:
    if "-version" in argv:
        return "version"
    tool = Path(argv[0]).name
    if tool in ("convert", "magick"):
        return "rotate" if "-auto-orient" in argv else "heic"
    if tool == "ffprobe":
        return "probe"
    if "libx264" in argv:
        return "transcode"
    if "libopus" in argv:
        return "audio"
    if "-frames:v" in argv:
        return "video_thumbnail"
    return "unknown"


def quadrant_pixels(width: int, height: int) -> np.ndarray:
    """RGB test card with a distinct colour in each quadrant."""
    pixels = np.zeros((height, width, 3), dtype=np.uint8)
    half_w, half_h = width // 2, height // 2
    pixels[:half_h, :half_w] = (255, 0, 0)
    pixels[:half_h, half_w:] = (0, 255, 0)
    pixels[half_h:, :half_w] = (0, 0, 255)
    pixels[half_h:, half_w:] = (255, 255, 0)
    return pixels


def write_image(
    path: Path,
    width: int,
    height: int,
    *,
    orientation: Optional[int] = None,
    taken_at: Optional[str] = None,
) -> Path:
    image = Image.fromarray(quadrant_pixels(width, height), "RGB")
    exif = Image.Exif()
    if orientation is not None:
        exif[0x0112] = orientation
    if taken_at is not None:
        exif[0x8769] = {0x9003: taken_at}
    fmt = "PNG" if path.suffix.lower() == ".png" else "JPEG"
    options = {"quality": 95} if fmt == "JPEG" else {}
    if len(exif):
        options["exif"] = exif.tobytes()
    image.save(path, fmt, **options)
    return path


def image_bytes(tmp_path: Path, width: int, height: int, *, name: str = "photo.jpg", **kwargs) -> bytes:
    path = write_image(tmp_path / f"source-{name}", width, height, **kwargs)
    payload = path.read_bytes()
    path.unlink()
    return payload


def stored_files(root: Path) -> list[str]:
    return sorted(p.relative_to(root).as_posix() for p in root.rglob("*") if p.is_file())


@asynccontextmanager
async def open_store(settings: Settings) -> AsyncIterator[SqlMetadataStore]:
    engine = create_engine(settings)
    await create_schema(engine)
    session_factory = create_session_factory(engine)
    try:
        async with session_factory() as session:
            yield SqlMetadataStore(session, PublicTokenIssuer(settings.secrets.public_token_secret))
    finally:
        await engine.dispose()


def build_pipeline(
    store: SqlMetadataStore,
    settings: Settings,
    runner: FakeRunner,
    *,
    limit: int = 2,
    max_file_size_bytes: Optional[int] = None,
) -> IngestionPipeline:
    resolver = PathResolver(settings.upload_root)
    generator = DerivativeGenerator.from_settings(settings, resolver, runner)  # type: ignore[arg-type]
    return IngestionPipeline(
        store,
        resolver,
        generator,
        ProcessingScheduler(limit),
        max_file_size_bytes=max_file_size_bytes or settings.max_file_size_bytes,
    )
