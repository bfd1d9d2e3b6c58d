from __future__ import annotations

from fastapi import APIRouter, Request

from .schemas import HealthResponse


router = APIRouter(tags=["system"])


@router.get("/health", response_model=HealthResponse, summary="Liveness probe")
async def health(request: Request) -> HealthResponse:
    scheduler = request.app.state.scheduler
    return HealthResponse(
        version=request.app.version,
        processing_active=scheduler.active,
        processing_limit=scheduler.limit,
    )


__all__ = ["router"]
