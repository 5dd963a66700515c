"""FastAPI router for media upload and download."""
import logging

from fastapi import APIRouter, Depends, File, Request, UploadFile
from fastapi.responses import FileResponse

from app.auth.identity import get_current_user_id
from app.config import get_config
from app.errors import ChatError, to_http_exception

from .schemas import MediaUploadResponse
from .service import MediaStorageService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/media", tags=["media"])


def get_media_service() -> MediaStorageService:
    media = get_config().media
    return MediaStorageService.get_instance(
        upload_dir=media.upload_dir,
        db_path=media.db_path,
        max_size_bytes=media.max_size_bytes,
    )


def media_url(request: Request, media_id: str) -> str:
    """Build the durable URL for a stored media object."""
    base_url = get_config().media.public_base_url or str(request.base_url)
    return f"{base_url.rstrip('/')}/media/{media_id}"


@router.post("/upload", response_model=MediaUploadResponse, status_code=201)
async def upload_media(
    request: Request,
    file: UploadFile = File(...),
    user_id: str = Depends(get_current_user_id),
    service: MediaStorageService = Depends(get_media_service),
) -> MediaUploadResponse:
    """Upload media ahead of sending it.

    The returned ``url`` can be used as the ``media`` field of a message.

    Raises:
        HTTPException 400: If the file is empty or too large.
    """
    content = await file.read()
    mime_type = file.content_type or "application/octet-stream"
    try:
        record = await service.save(user_id, content, mime_type)
    except ChatError as e:
        raise to_http_exception(e)

    logger.info(f"[Media] {user_id} uploaded {record.id} ({record.size_bytes} bytes)")
    return MediaUploadResponse(
        id=record.id,
        media_type=record.media_type,
        mime_type=record.mime_type,
        size_bytes=record.size_bytes,
        url=media_url(request, record.id),
    )


@router.get("/{media_id}")
async def download_media(
    media_id: str,
    service: MediaStorageService = Depends(get_media_service),
) -> FileResponse:
    """Serve a stored media object.

    Raises:
        HTTPException 404: If the media is unknown or missing on disk.
    """
    try:
        record = service.get(media_id)
        file_path = service.get_path(media_id)
    except ChatError as e:
        raise to_http_exception(e)

    return FileResponse(path=file_path, media_type=record.mime_type)
