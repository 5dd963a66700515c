"""Media storage service.

Handles media storage on disk and metadata tracking in DuckDB.
Objects are stored in: {upload_dir}/{owner_id}/{uuid}.{ext}
"""
import base64
import binascii
import logging
import re
import uuid
from pathlib import Path
from typing import Optional, Tuple

import duckdb

from app.errors import NotFoundError, ValidationError

from .schemas import EXTENSIONS, MAX_MEDIA_SIZE_BYTES, MediaRecord, MediaType, get_media_type

logger = logging.getLogger(__name__)

_DATA_URL = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^,;]+)*?);base64,(?P<data>.*)$", re.DOTALL)


def is_data_url(value: str) -> bool:
    return value.startswith("data:")


def decode_data_url(data_url: str) -> Tuple[bytes, str]:
    """Split a base64 ``data:`` URL into raw bytes and MIME type.

    Raises:
        ValidationError: If the URL is not base64 encoded or the payload is corrupt.
    """
    match = _DATA_URL.match(data_url)
    if not match:
        raise ValidationError("Media must be a base64 data URL")
    mime_type = match.group("mime") or "application/octet-stream"
    try:
        content = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValidationError(f"Invalid base64 media payload: {e}")
    return content, mime_type


class MediaStorageService:
    """Service for storing message media and resolving it back to files."""

    _instance: Optional["MediaStorageService"] = None
    _upload_dir: str = "uploads"
    _db_path: str = "media_metadata.duckdb"

    def __init__(
        self,
        upload_dir: Optional[str] = None,
        db_path: Optional[str] = None,
        max_size_bytes: int = MAX_MEDIA_SIZE_BYTES,
    ):
        """Initialize the media storage service."""
        if upload_dir:
            self._upload_dir = upload_dir
        if db_path:
            self._db_path = db_path
        self.max_size_bytes = max_size_bytes

        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._ensure_upload_dir()
        self._initialize_db()

    @classmethod
    def get_instance(cls, upload_dir: Optional[str] = None, db_path: Optional[str] = None, **kwargs) -> "MediaStorageService":
        """Get or create the singleton instance."""
        if cls._instance is None:
            cls._instance = cls(upload_dir, db_path, **kwargs)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance (for testing)."""
        if cls._instance and cls._instance._connection:
            cls._instance._connection.close()
        cls._instance = None

    def _ensure_upload_dir(self) -> None:
        Path(self._upload_dir).mkdir(parents=True, exist_ok=True)

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        conn = self._get_connection()
        conn.execute("""
            CREATE TABLE IF NOT EXISTS media_metadata (
                id VARCHAR PRIMARY KEY,
                owner_id VARCHAR NOT NULL,
                stored_filename VARCHAR NOT NULL,
                media_type VARCHAR NOT NULL,
                mime_type VARCHAR NOT NULL,
                size_bytes BIGINT NOT NULL,
                uploaded_at TIMESTAMP NOT NULL
            )
        """)

    def _get_owner_dir(self, owner_id: str) -> Path:
        # Owner IDs come from the identity layer; keep them from escaping upload_dir.
        safe_owner = re.sub(r"[^A-Za-z0-9_.-]", "_", owner_id) or "_"
        return Path(self._upload_dir) / safe_owner

    async def save(self, owner_id: str, content: bytes, mime_type: str) -> MediaRecord:
        """Store raw media bytes and record their metadata.

        Args:
            owner_id: User uploading the media.
            content: Raw bytes.
            mime_type: MIME type of the content.

        Returns:
            MediaRecord describing the stored object.

        Raises:
            ValidationError: If the content is empty or exceeds the size limit.
        """
        size_bytes = len(content)
        if size_bytes == 0:
            raise ValidationError("Media payload is empty")
        if size_bytes > self.max_size_bytes:
            raise ValidationError(
                f"Media size ({size_bytes} bytes) exceeds limit ({self.max_size_bytes} bytes)"
            )

        media_id = str(uuid.uuid4())
        stored_filename = f"{media_id}{EXTENSIONS.get(mime_type, '')}"

        owner_dir = self._get_owner_dir(owner_id)
        owner_dir.mkdir(parents=True, exist_ok=True)
        file_path = owner_dir / stored_filename
        file_path.write_bytes(content)

        logger.info(f"[Media] Saved {file_path} ({size_bytes} bytes)")

        record = MediaRecord(
            id=media_id,
            owner_id=owner_id,
            stored_filename=stored_filename,
            media_type=get_media_type(mime_type),
            mime_type=mime_type,
            size_bytes=size_bytes,
        )
        self._get_connection().execute(
            """
            INSERT INTO media_metadata
            (id, owner_id, stored_filename, media_type, mime_type, size_bytes, uploaded_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            [
                record.id,
                record.owner_id,
                record.stored_filename,
                record.media_type.value,
                record.mime_type,
                record.size_bytes,
                record.uploaded_at,
            ]
        )
        return record

    async def save_data_url(self, owner_id: str, data_url: str) -> MediaRecord:
        """Decode a ``data:`` URL and store its payload."""
        content, mime_type = decode_data_url(data_url)
        return await self.save(owner_id, content, mime_type)

    def get(self, media_id: str) -> MediaRecord:
        """Get media metadata by ID.

        Raises:
            NotFoundError: If no such media exists.
        """
        row = self._get_connection().execute(
            """
            SELECT id, owner_id, stored_filename, media_type, mime_type, size_bytes, uploaded_at
            FROM media_metadata
            WHERE id = ?
            """,
            [media_id]
        ).fetchone()

        if not row:
            raise NotFoundError(f"Media {media_id} not found")

        return MediaRecord(
            id=row[0],
            owner_id=row[1],
            stored_filename=row[2],
            media_type=MediaType(row[3]),
            mime_type=row[4],
            size_bytes=row[5],
            uploaded_at=row[6],
        )

    def get_path(self, media_id: str) -> Path:
        """Get the on-disk path of a media object.

        Raises:
            NotFoundError: If the metadata or the file itself is missing.
        """
        record = self.get(media_id)
        file_path = self._get_owner_dir(record.owner_id) / record.stored_filename
        if not file_path.exists():
            raise NotFoundError(f"Media {media_id} missing on disk")
        return file_path
