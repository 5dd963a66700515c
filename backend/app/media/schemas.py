"""Pydantic schemas for media attached to messages.

This module defines:
- MediaType: Enum for categorizing media (image, video, audio, other)
- MediaRecord: Metadata stored in DuckDB for each uploaded object
- MediaUploadResponse: API response after a successful upload

Objects are stored in owner-scoped directories (uploads/{owner_id}/) with
UUID-based filenames to prevent collisions.
"""
import uuid
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field

from app.messages.schemas import utcnow


class MediaType(str, Enum):
    """Supported media categories, derived from the MIME type."""
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    OTHER = "other"


class MediaRecord(BaseModel):
    """Metadata for one stored media object."""
    id: str = Field(default_factory=lambda: str(uuid.uuid4()), description="Unique media ID")
    owner_id: str = Field(..., description="User who uploaded the media")
    stored_filename: str = Field(..., description="Filename on disk (UUID-based)")
    media_type: MediaType = Field(..., description="Media category")
    mime_type: str = Field(..., description="MIME type")
    size_bytes: int = Field(..., description="Size in bytes")
    uploaded_at: datetime = Field(default_factory=utcnow, description="Upload time (UTC)")


class MediaUploadResponse(BaseModel):
    """Response after a successful upload: the URL to put in a message."""
    id: str
    media_type: MediaType
    mime_type: str
    size_bytes: int
    url: str


# Default size limit: 10MB
MAX_MEDIA_SIZE_BYTES = 10 * 1024 * 1024

MIME_TYPES = {
    MediaType.IMAGE: [
        "image/jpeg",
        "image/png",
        "image/gif",
        "image/webp",
    ],
    MediaType.VIDEO: [
        "video/mp4",
        "video/webm",
        "video/quicktime",
    ],
    MediaType.AUDIO: [
        "audio/mpeg",
        "audio/wav",
        "audio/ogg",
        "audio/mp4",
        "audio/x-m4a",
    ],
}

EXTENSIONS = {
    "image/jpeg": ".jpg",
    "image/png": ".png",
    "image/gif": ".gif",
    "image/webp": ".webp",
    "video/mp4": ".mp4",
    "video/webm": ".webm",
    "video/quicktime": ".mov",
    "audio/mpeg": ".mp3",
    "audio/wav": ".wav",
    "audio/ogg": ".ogg",
    "audio/mp4": ".m4a",
    "audio/x-m4a": ".m4a",
}


def get_media_type(mime_type: str) -> MediaType:
    """Determine the media category from a MIME type.

    Examples:
        >>> get_media_type("image/png")
        <MediaType.IMAGE: 'image'>
        >>> get_media_type("text/plain")
        <MediaType.OTHER: 'other'>
    """
    for media_type, mime_types in MIME_TYPES.items():
        if mime_type in mime_types:
            return media_type
    return MediaType.OTHER
