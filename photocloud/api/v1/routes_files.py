from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Response, UploadFile, status

from photocloud.api import deps
from photocloud.core.config import Settings
from photocloud.media.checksum import DedupScope

from . import schemas


router = APIRouter(prefix="/files", tags=["files"])


@router.post("", response_model=schemas.FileInfo, status_code=status.HTTP_201_CREATED, summary="Upload a photo or video")
async def upload_file(
    pipeline: deps.PipelineDependency,
    context: deps.AuthDependency,
    file: UploadFile = File(...),
    album_id: str = Form(...),
    content_id: Optional[str] = Form(default=None),
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.FileInfo:
    # One byte past the ceiling is enough for the pipeline to reject the upload.
    payload = await file.read(settings.max_file_size_bytes + 1)
    await file.close()
    asset = await pipeline.ingest(
        payload,
        file.filename,
        file.content_type,
        DedupScope(owner_id=context.user_id, album_id=album_id),
        content_id=content_id,
    )
    return schemas.FileInfo.from_asset(asset)


@router.get("/{asset_id}", response_model=schemas.FileInfo)
async def get_file(asset_id: int, pipeline: deps.PipelineDependency, context: deps.AuthDependency) -> schemas.FileInfo:
    asset = await pipeline.get_asset(asset_id, context.user_id)
    return schemas.FileInfo.from_asset(asset)


@router.delete("/{asset_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_file(asset_id: int, pipeline: deps.PipelineDependency, context: deps.AuthDependency) -> Response:
    await pipeline.delete_asset(asset_id, context.user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{asset_id}/rotate-left", response_model=schemas.FileInfo, summary="Rotate an image 90 degrees counter-clockwise")
async def rotate_left(asset_id: int, pipeline: deps.PipelineDependency, context: deps.AuthDependency) -> schemas.FileInfo:
    asset = await pipeline.rotate_left(asset_id, context.user_id)
    return schemas.FileInfo.from_asset(asset)


__all__ = ["router"]
