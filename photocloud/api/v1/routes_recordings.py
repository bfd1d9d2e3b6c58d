from __future__ import annotations

from fastapi import APIRouter, Depends, File, Form, Request, Response, UploadFile, status

from photocloud.api import deps
from photocloud.core.config import Settings
from photocloud.media.checksum import DedupScope

from . import schemas
from .responses import range_response


router = APIRouter(prefix="/recordings", tags=["recordings"])


@router.post("", response_model=schemas.RecordingInfo, status_code=status.HTTP_201_CREATED, summary="Upload a browser audio capture")
async def upload_recording(
    pipeline: deps.PipelineDependency,
    context: deps.AuthDependency,
    file: UploadFile = File(...),
    album_id: str = Form(...),
    settings: Settings = Depends(deps.get_app_settings),
) -> schemas.RecordingInfo:
    payload = await file.read(settings.max_file_size_bytes + 1)
    await file.close()
    recording = await pipeline.ingest_recording(
        payload,
        file.filename,
        file.content_type,
        DedupScope(owner_id=context.user_id, album_id=album_id),
    )
    return schemas.RecordingInfo.from_recording(recording)


@router.get("/{token}/audio", summary="Public range-served audio")
async def recording_audio(token: str, request: Request, pipeline: deps.PipelineDependency) -> Response:
    target = await pipeline.resolve_recording(token)
    return range_response(request, target)


__all__ = ["router"]
