"""Pydantic schemas for direct messages.

This module defines the data models exchanged between the chat server and
its clients:
- Message: a persisted direct message between two users
- MessageCreate: request body for sending a message
- MessagePage: one page of history plus the pagination cursor
- MarkSeenRequest / MarkSeenResponse: explicit seen-marking
- UnreadCounts: unread message counts per peer

Timestamps are kept as naive UTC datetimes. Aware values coming from the
wire (e.g. a cursor with a ``Z`` suffix) are converted to UTC and stripped
of their tzinfo so comparisons never mix naive and aware values.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize *value* to a naive UTC datetime (``None`` passes through)."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Message(BaseModel):
    """A direct message between two users.

    Attributes:
        id: Server-assigned unique identifier.
        senderId: User who sent the message.
        receiverId: User the message was sent to.
        text: Optional text body.
        media: Optional URL of externally stored media.
        seen: Whether the receiver has seen the message. Never reverts.
        seenAt: When the message was first seen.
        createdAt: Authoritative ordering key.
    """
    id: str = Field(
        default_factory=lambda: str(uuid.uuid4()),
        description="Unique message ID"
    )
    senderId: str = Field(..., description="User ID of the sender")
    receiverId: str = Field(..., description="User ID of the receiver")
    text: Optional[str] = Field(default=None, description="Message text")
    media: Optional[str] = Field(default=None, description="URL of attached media")
    seen: bool = Field(default=False, description="Seen by the receiver")
    seenAt: Optional[datetime] = Field(default=None, description="When the message was seen")
    createdAt: datetime = Field(default_factory=utcnow, description="Creation time (UTC)")

    @field_validator("createdAt", "seenAt")
    @classmethod
    def _normalize_ts(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(value)

    def involves(self, user_a: str, user_b: str) -> bool:
        """True if this message was exchanged between *user_a* and *user_b*."""
        return {self.senderId, self.receiverId} == {user_a, user_b}


class MessageCreate(BaseModel):
    """Request body for ``POST /messages/send/{peer_id}``.

    ``media`` is either a ``data:`` URL carrying the raw bytes (uploaded to
    media storage by the server) or the URL of already stored media.
    """
    text: Optional[str] = Field(default=None, description="Message text")
    media: Optional[str] = Field(default=None, description="Data URL or stored media URL")

    def is_empty(self) -> bool:
        return not (self.text and self.text.strip()) and not self.media


class MessagePage(BaseModel):
    """One page of conversation history, newest first."""
    messages: List[Message] = Field(default_factory=list)
    hasMore: bool = False
    nextCursor: Optional[datetime] = None

    @field_validator("nextCursor")
    @classmethod
    def _normalize_cursor(cls, value: Optional[datetime]) -> Optional[datetime]:
        return as_naive_utc(value)


class MarkSeenRequest(BaseModel):
    """Optional body for ``POST /messages/{peer_id}/mark-seen``.

    Without ``messageIds`` every unseen message from the peer is marked.
    """
    messageIds: Optional[List[str]] = None


class MarkSeenResponse(BaseModel):
    success: bool = True
    messageIds: List[str] = Field(default_factory=list)


class UnreadCounts(BaseModel):
    counts: Dict[str, int] = Field(default_factory=dict)
