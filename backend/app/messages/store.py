"""DuckDB-backed storage for direct messages.

This module provides durable, time-ordered persistence of messages between
two users, cursor pagination, and bulk seen-state mutation. The service
follows the singleton pattern so one connection exists per process.

Database Schema:
    messages table:
        - seq: Insertion order (tie-break for equal timestamps)
        - id: Server-assigned message ID (UUID)
        - sender_id / receiver_id: The two participants
        - text: Optional message text
        - media: Optional media URL
        - seen: Whether the receiver has seen the message
        - seen_at: When it was first seen
        - created_at: Authoritative ordering key (UTC)

Ordering:
    ``created_at`` is strictly increasing within a store: if the clock has
    not advanced since the previous append the new message is stamped one
    microsecond later. A timestamp cursor is therefore an exact page
    boundary, so no row is duplicated or skipped across pages.

Seen transitions:
    Every seen mutation is a single conditional UPDATE
    (``... WHERE seen = FALSE RETURNING id``), so concurrent callers each
    get only the ids they actually flipped.

Thread Safety:
    The DuckDB connection is NOT thread-safe. The store is meant to be used
    from the single asyncio event loop that serves the API.

Usage:
    store = MessageStore.get_instance()
    message = store.append("alice", "bob", text="hi")
    page, seen_ids = store.page("bob", "alice", limit=20)
"""
import logging
from datetime import datetime, timedelta
from typing import Dict, Iterable, List, Optional, Tuple

import duckdb

from app.errors import NotFoundError, ValidationError

from .schemas import Message, MessagePage, as_naive_utc, utcnow

logger = logging.getLogger(__name__)

# Default page size for history pagination
DEFAULT_PAGE_SIZE = 20

# Maximum page size to prevent abuse
MAX_PAGE_SIZE = 50

# Maximum accepted text length
MAX_TEXT_LENGTH = 5000

_COLUMNS = "id, sender_id, receiver_id, text, media, seen, seen_at, created_at"

_ONE_TICK = timedelta(microseconds=1)


def _row_to_message(row: tuple) -> Message:
    return Message(
        id=row[0],
        senderId=row[1],
        receiverId=row[2],
        text=row[3],
        media=row[4],
        seen=bool(row[5]),
        seenAt=row[6],
        createdAt=row[7],
    )


def clamp_limit(limit: Optional[int], default: int = DEFAULT_PAGE_SIZE, maximum: int = MAX_PAGE_SIZE) -> int:
    """Clamp a requested page size to ``[1, maximum]``."""
    if not limit or limit < 1:
        return default
    return min(limit, maximum)


class MessageStore:
    """Singleton service for persisting direct messages in DuckDB.

    Attributes:
        _instance: Singleton instance of the service.
        _db_path: Path to the DuckDB database file.
    """

    _instance: Optional["MessageStore"] = None
    _db_path: str = "messages.duckdb"

    def __init__(
        self,
        db_path: Optional[str] = None,
        default_page_size: int = DEFAULT_PAGE_SIZE,
        max_page_size: int = MAX_PAGE_SIZE,
        max_text_length: int = MAX_TEXT_LENGTH,
    ) -> None:
        """Open (or create) the message database.

        Args:
            db_path: Path to DuckDB file, or ":memory:".
            default_page_size: Page size used when none is requested.
            max_page_size: Upper bound for requested page sizes.
            max_text_length: Longest accepted message text.
        """
        if db_path:
            self._db_path = db_path
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size
        self.max_text_length = max_text_length
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._initialize_db()
        self._last_created_at: Optional[datetime] = self._load_last_created_at()
        logger.info("[Messages] Store initialized with db=%s", self._db_path)

    @classmethod
    def get_instance(cls, db_path: Optional[str] = None, **kwargs) -> "MessageStore":
        """Get or create the singleton instance.

        Args:
            db_path: Optional database path (only used on first call).

        Returns:
            The singleton MessageStore instance.
        """
        if cls._instance is None:
            cls._instance = cls(db_path, **kwargs)
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Close the connection and forget the singleton (for testing)."""
        if cls._instance is not None:
            cls._instance.close()
            cls._instance = None

    def _get_connection(self) -> duckdb.DuckDBPyConnection:
        if self._connection is None:
            self._connection = duckdb.connect(self._db_path)
        return self._connection

    def _initialize_db(self) -> None:
        """Create the schema if it does not exist (idempotent)."""
        conn = self._get_connection()
        conn.execute("CREATE SEQUENCE IF NOT EXISTS messages_seq START 1")
        conn.execute("""
            CREATE TABLE IF NOT EXISTS messages (
                seq BIGINT DEFAULT nextval('messages_seq') PRIMARY KEY,
                id VARCHAR NOT NULL UNIQUE,
                sender_id VARCHAR NOT NULL,
                receiver_id VARCHAR NOT NULL,
                text VARCHAR,
                media VARCHAR,
                seen BOOLEAN NOT NULL DEFAULT FALSE,
                seen_at TIMESTAMP,
                created_at TIMESTAMP NOT NULL
            )
        """)
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_pair ON messages(sender_id, receiver_id)"
        )
        conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_created ON messages(created_at)"
        )

    def _load_last_created_at(self) -> Optional[datetime]:
        row = self._get_connection().execute("SELECT MAX(created_at) FROM messages").fetchone()
        return row[0] if row else None

    def _next_created_at(self) -> datetime:
        now = utcnow()
        if self._last_created_at is not None and now <= self._last_created_at:
            now = self._last_created_at + _ONE_TICK
        self._last_created_at = now
        return now

    # -----------------------------------------------------------------------
    # Writes
    # -----------------------------------------------------------------------

    def validate(
        self,
        sender_id: str,
        receiver_id: str,
        text: Optional[str] = None,
        media: Optional[str] = None,
    ) -> Tuple[Optional[str], Optional[str]]:
        """Check a message without storing it.

        Returns:
            The normalized ``(text, media)`` pair.

        Raises:
            ValidationError: If neither text nor media is present, the text is
                too long, or the user is messaging themselves.
        """
        text = text.strip() if text else None
        text = text or None
        media = media or None

        if text is None and media is None:
            raise ValidationError("Message must contain text or media")
        if text is not None and len(text) > self.max_text_length:
            raise ValidationError(
                f"Message text exceeds {self.max_text_length} characters",
                details={"length": len(text)},
            )
        if sender_id == receiver_id:
            raise ValidationError("Cannot send a message to yourself")
        return text, media

    def append(
        self,
        sender_id: str,
        receiver_id: str,
        text: Optional[str] = None,
        media: Optional[str] = None,
    ) -> Message:
        """Persist a new message.

        Args:
            sender_id: User sending the message.
            receiver_id: User receiving the message.
            text: Optional text; surrounding whitespace is trimmed.
            media: Optional media URL.

        Returns:
            The stored Message with ``seen=False``.

        Raises:
            ValidationError: If neither text nor media is present, the text is
                too long, or the user is messaging themselves.
        """
        text, media = self.validate(sender_id, receiver_id, text=text, media=media)
        message = Message(
            senderId=sender_id,
            receiverId=receiver_id,
            text=text,
            media=media,
            seen=False,
            createdAt=self._next_created_at(),
        )
        self._get_connection().execute(
            """
            INSERT INTO messages (id, sender_id, receiver_id, text, media, seen, seen_at, created_at)
            VALUES (?, ?, ?, ?, ?, FALSE, NULL, ?)
            """,
            [message.id, sender_id, receiver_id, text, media, message.createdAt],
        )
        logger.debug("[Messages] Stored %s from %s to %s", message.id, sender_id, receiver_id)
        return message

    def _update_seen(
        self,
        conn: duckdb.DuckDBPyConnection,
        message_ids: List[str],
        seen_at: datetime,
        receiver_id: Optional[str] = None,
        sender_id: Optional[str] = None,
    ) -> List[str]:
        if not message_ids:
            return []
        query = """
            UPDATE messages SET seen = TRUE, seen_at = ?
            WHERE seen = FALSE AND list_contains(?::VARCHAR[], id)
        """
        params: list = [seen_at, message_ids]
        if receiver_id is not None:
            query += " AND receiver_id = ?"
            params.append(receiver_id)
        if sender_id is not None:
            query += " AND sender_id = ?"
            params.append(sender_id)
        rows = conn.execute(query + " RETURNING id", params).fetchall()
        transitioned = {row[0] for row in rows}
        # Keep the caller's order so receipts list ids the way they were asked for.
        return [mid for mid in dict.fromkeys(message_ids) if mid in transitioned]

    def mark_seen(
        self,
        message_ids: Iterable[str],
        receiver_id: Optional[str] = None,
        sender_id: Optional[str] = None,
    ) -> List[str]:
        """Mark messages as seen.

        Idempotent: already-seen and unknown ids are ignored, not errors.

        Args:
            message_ids: IDs to mark.
            receiver_id: If given, only messages addressed to this user change.
            sender_id: If given, only messages written by this user change.

        Returns:
            IDs that actually transitioned from unseen to seen.
        """
        ids = [mid for mid in message_ids if mid]
        transitioned = self._update_seen(
            self._get_connection(), ids, utcnow(), receiver_id=receiver_id, sender_id=sender_id
        )
        if transitioned:
            logger.info("[Messages] Marked %d message(s) seen", len(transitioned))
        return transitioned

    def mark_conversation_seen(self, reader_id: str, peer_id: str) -> List[str]:
        """Mark every unseen message from *peer_id* to *reader_id* as seen.

        Returns:
            IDs that actually transitioned, oldest first.
        """
        rows = self._get_connection().execute(
            """
            UPDATE messages SET seen = TRUE, seen_at = ?
            WHERE sender_id = ? AND receiver_id = ? AND seen = FALSE
            RETURNING id, seq
            """,
            [utcnow(), peer_id, reader_id],
        ).fetchall()
        return [row[0] for row in sorted(rows, key=lambda r: r[1])]

    # -----------------------------------------------------------------------
    # Reads
    # -----------------------------------------------------------------------

    def get(self, message_id: str) -> Message:
        """Fetch one message by ID.

        Raises:
            NotFoundError: If the message does not exist.
        """
        row = self._get_connection().execute(
            f"SELECT {_COLUMNS} FROM messages WHERE id = ?", [message_id]
        ).fetchone()
        if row is None:
            raise NotFoundError(f"Message {message_id} not found")
        return _row_to_message(row)

    def page(
        self,
        reader_id: str,
        peer_id: str,
        cursor: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> Tuple[MessagePage, List[str]]:
        """Get one page of the conversation between *reader_id* and *peer_id*.

        Messages are returned newest first, strictly older than ``cursor``
        when one is given. Messages in the page that were sent to the reader
        and not yet seen are marked seen in the same transaction.

        Args:
            reader_id: The user fetching the page.
            peer_id: The other participant.
            cursor: Exclusive upper bound on ``createdAt``.
            limit: Page size (clamped to ``[1, max_page_size]``).

        Returns:
            Tuple of (page, transitioned_ids).
        """
        limit = clamp_limit(limit, self.default_page_size, self.max_page_size)
        cursor = as_naive_utc(cursor)

        query = f"""
            SELECT {_COLUMNS} FROM messages
            WHERE ((sender_id = ? AND receiver_id = ?) OR (sender_id = ? AND receiver_id = ?))
        """
        params: list = [reader_id, peer_id, peer_id, reader_id]
        if cursor is not None:
            query += " AND created_at < ?"
            params.append(cursor)
        query += " ORDER BY created_at DESC, seq DESC LIMIT ?"
        params.append(limit + 1)

        conn = self._get_connection()
        conn.begin()
        try:
            rows = conn.execute(query, params).fetchall()
            messages = [_row_to_message(row) for row in rows]
            has_more = len(messages) > limit
            messages = messages[:limit]

            unseen = [m.id for m in messages if m.receiverId == reader_id and not m.seen]
            seen_at = utcnow()
            transitioned = self._update_seen(conn, unseen, seen_at, receiver_id=reader_id)
            conn.commit()
        except Exception:
            conn.rollback()
            raise

        flipped = set(transitioned)
        for message in messages:
            if message.id in flipped:
                message.seen = True
                message.seenAt = seen_at

        next_cursor = messages[-1].createdAt if has_more else None
        return MessagePage(messages=messages, hasMore=has_more, nextCursor=next_cursor), transitioned

    def unread_counts(self, user_id: str) -> Dict[str, int]:
        """Count unseen messages addressed to *user_id*, grouped by sender."""
        rows = self._get_connection().execute(
            """
            SELECT sender_id, COUNT(*) FROM messages
            WHERE receiver_id = ? AND seen = FALSE
            GROUP BY sender_id
            """,
            [user_id],
        ).fetchall()
        return {row[0]: int(row[1]) for row in rows}

    def count(self) -> int:
        row = self._get_connection().execute("SELECT COUNT(*) FROM messages").fetchone()
        return int(row[0]) if row else 0

    def close(self) -> None:
        """Close the database connection."""
        if self._connection is not None:
            self._connection.close()
            self._connection = None
