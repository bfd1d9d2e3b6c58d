from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Secrets(BaseSettings):
    """Secrets configuration, loaded from the environment or a secrets management service."""

    model_config = SettingsConfigDict(
        env_prefix="PHOTOCLOUD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    jwt_secret: str = Field(default="change-me", description="Signing secret for stub JWT validation.")
    public_token_secret: str = Field(
        default="change-me",
        description="HMAC key used to derive public content tokens.",
    )

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Secrets":
        return cls()


class Settings(BaseSettings):
    """Centralised runtime configuration for the PhotoCloud media API."""

    model_config = SettingsConfigDict(
        env_prefix="PHOTOCLOUD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "PhotoCloud Media API"
    environment: str = Field(default="development", description="Deployment environment label.")
    version: str = Field(default="0.1.0", description="API version for metadata and OpenAPI.")
    log_level: str = Field(default="info")

    database_url: str = Field(
        default="sqlite+aiosqlite:///./photocloud.db",
        description="SQLAlchemy compatible DSN.",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis URL for background jobs.",
    )

    upload_dir: Path = Field(default_factory=lambda: Path("uploads"), description="Root for originals and derivatives.")
    max_file_size_bytes: int = Field(default=500 * 1024 * 1024, description="Upload size ceiling.")
    max_concurrent_processing: int = Field(
        default=2,
        ge=1,
        description="Permits in the global derivative-generation pool.",
    )

    ffmpeg_binary: str = Field(default="ffmpeg")
    ffprobe_binary: str = Field(default="ffprobe")
    imagemagick_binary: str = Field(default="convert", description="ImageMagick entry point (convert or magick).")
    command_timeout_s: float = Field(default=300.0, gt=0, description="Bounded wait for short codec invocations.")
    transcode_timeout_s: float = Field(default=3600.0, gt=0, description="Bounded wait for video transcodes.")
    video_thumbnail_offset_s: float = Field(default=1.0, ge=0, description="Frame offset for video stills.")

    create_schema_on_startup: bool = Field(
        default=True,
        description="Create missing tables at startup; disable when Alembic manages the schema.",
    )

    jwt_algorithm: str = Field(default="HS256", description="Algorithm used for JWT tokens.")
    jwt_issuer: Optional[str] = None
    jwt_audience: Optional[str] = None

    job_queue_backend: Literal["immediate", "inline", "rq"] = Field(
        default="immediate",
        description="Backend for async jobs (inline executes inline; rq schedules via Redis).",
    )

    secrets: Secrets = Field(default_factory=Secrets, description="Holds sensitive configuration.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    @property
    def normalized_job_backend(self) -> str:
        if self.job_queue_backend == "inline":
            return "immediate"
        return self.job_queue_backend

    @property
    def upload_root(self) -> Path:
        return self.upload_dir.expanduser().resolve()


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "PHOTOCLOUD_ENV": "PHOTOCLOUD_ENVIRONMENT",
        "PHOTOCLOUD_DB_URL": "PHOTOCLOUD_DATABASE_URL",
        "PHOTOCLOUD_JOB_BACKEND": "PHOTOCLOUD_JOB_QUEUE_BACKEND",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    settings = Settings()
    secrets = Secrets.from_settings(settings)

    if settings.environment == "production":
        if secrets.jwt_secret == "change-me":
            raise ValueError("Production environment must have a non-default JWT secret.")
        if secrets.public_token_secret == "change-me":
            raise ValueError("Production environment must have a non-default public token secret.")

    settings.secrets = secrets
    return settings


__all__ = ["Secrets", "Settings", "get_settings"]
