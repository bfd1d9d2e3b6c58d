from __future__ import annotations

from datetime import datetime, timezone
from email.utils import format_datetime
from typing import Optional

from fastapi import Request, Response
from fastapi.responses import FileResponse, StreamingResponse

from photocloud.media.ranges import content_disposition, serve_range
from photocloud.services.ingest_service import ServeTarget

IMAGE_CACHE_CONTROL = "public, max-age=31536000"


def http_date(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        # SQLite hands back naive values for timezone-aware columns.
        value = value.replace(tzinfo=timezone.utc)
    return format_datetime(value.astimezone(timezone.utc), usegmt=True)


def image_response(request: Request, target: ServeTarget) -> Response:
    headers = {"Cache-Control": IMAGE_CACHE_CONTROL}
    if target.checksum:
        # Rotation changes the bytes but not the upload checksum.
        etag = f'"{target.checksum}-{target.generation}"'
        headers["ETag"] = etag
        if request.headers.get("if-none-match") == etag:
            return Response(status_code=304, headers=headers)
    last_modified = http_date(target.uploaded_at)
    if last_modified:
        headers["Last-Modified"] = last_modified
    headers["Content-Disposition"] = content_disposition(target.filename)
    return FileResponse(target.absolute_path, media_type=target.mime_type, headers=headers)


def range_response(request: Request, target: ServeTarget) -> Response:
    result = serve_range(target.absolute_path, request.headers.get("range"), target.mime_type, target.filename)
    if result.status_code == 416:
        return Response(status_code=result.status_code, headers=result.headers)
    return StreamingResponse(result.body, status_code=result.status_code, headers=result.headers)


def media_response(request: Request, target: ServeTarget) -> Response:
    if target.is_image:
        return image_response(request, target)
    return range_response(request, target)


__all__ = ["media_response", "image_response", "range_response", "http_date"]
