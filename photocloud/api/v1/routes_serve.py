from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Query, Request, Response

from photocloud.api import deps

from .responses import media_response


router = APIRouter(tags=["serve"])


@router.get("/i/{token}", summary="Public content by token")
async def serve_content(
    token: str,
    request: Request,
    pipeline: deps.PipelineDependency,
    size: Optional[str] = Query(default=None, description="thumb | medium | large | original"),
) -> Response:
    target = await pipeline.resolve_for_serving(token, size)
    return media_response(request, target)


__all__ = ["router"]
