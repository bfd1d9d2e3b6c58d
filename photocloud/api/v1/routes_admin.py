from __future__ import annotations

from datetime import datetime, timedelta, timezone

import jwt
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from pydantic import BaseModel, Field

from photocloud.api.deps import AuthDependency
from photocloud.core.auth import require_admin
from photocloud.core.config import Settings, get_settings
from photocloud.core.jobs import get_job_backend
from photocloud.media.runner import CommandRunner
from photocloud.workers.tasks import BACKFILL_DERIVATIVES

from .schemas import BackfillResponse, EnvCheckResponse


router = APIRouter(prefix="/admin", tags=["admin"])

PROBE_TIMEOUT_S = 10.0


class DevTokenRequest(BaseModel):
    user_id: str = Field(..., examples=["user-123"])
    scopes: list[str] = Field(default_factory=list, examples=[["admin"]])


class DevTokenResponse(BaseModel):
    token: str


async def _probe_binary(runner: CommandRunner, binary: str) -> bool:
    result = await runner.run([binary, "-version"], timeout_s=PROBE_TIMEOUT_S)
    return result.ok


@router.get("/env-check", response_model=EnvCheckResponse, summary="Validate codec toolchain")
async def env_check(
    request: Request,
    context: AuthDependency,
    settings: Settings = Depends(get_settings),
) -> EnvCheckResponse:
    require_admin(context)

    runner: CommandRunner = request.app.state.runner
    return EnvCheckResponse(
        ffmpeg=await _probe_binary(runner, settings.ffmpeg_binary),
        ffprobe=await _probe_binary(runner, settings.ffprobe_binary),
        imagemagick=await _probe_binary(runner, settings.imagemagick_binary),
    )


@router.post("/dev-token", response_model=DevTokenResponse, summary="Mint development JWT")
async def mint_dev_token(payload: DevTokenRequest, settings: Settings = Depends(get_settings)) -> DevTokenResponse:
    if settings.environment_lower not in {"development", "dev", "test"}:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="dev_token_disabled")

    issued_at = datetime.now(timezone.utc)
    expires_at = issued_at + timedelta(hours=1)
    claims: dict[str, object] = {
        "sub": payload.user_id,
        "scopes": payload.scopes,
        "iat": int(issued_at.timestamp()),
        "exp": int(expires_at.timestamp()),
    }
    if settings.jwt_issuer:
        claims["iss"] = settings.jwt_issuer
    if settings.jwt_audience:
        claims["aud"] = settings.jwt_audience

    token = jwt.encode(claims, settings.secrets.jwt_secret, algorithm=settings.jwt_algorithm)
    return DevTokenResponse(token=token)


@router.post(
    "/derivatives/backfill",
    response_model=BackfillResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Generate missing derivatives for stored media",
)
async def backfill_derivatives(
    request: Request,
    context: AuthDependency,
    overwrite: bool = Query(default=False, description="Regenerate derivatives that already exist."),
) -> BackfillResponse:
    require_admin(context)
    state = request.app.state
    job_id = await get_job_backend().enqueue(
        BACKFILL_DERIVATIVES,
        {"overwrite": overwrite},
        scheduler=state.scheduler,
        session_factory=state.session_factory,
        generator=state.generator,
    )
    return BackfillResponse(job_id=job_id, task=BACKFILL_DERIVATIVES, overwrite=overwrite)


__all__ = ["router"]
