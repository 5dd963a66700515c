"""Push event payloads sent over the presence WebSocket.

Server → client events:
    - connected: sent once after the socket is registered
    - online-set-changed: full set of online user IDs
    - new-message: a message addressed to the connected user
    - messages-seen: the receiver has seen some of the user's messages
    - typing: the peer started/stopped typing
    - pong: reply to a client ping

The same models are used by the server to build events and by the client
to parse them, so both ends agree on one schema.
"""
import logging
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from app.messages.schemas import Message

logger = logging.getLogger(__name__)


class ConnectedEvent(BaseModel):
    type: Literal["connected"] = "connected"
    sessionId: str
    userId: str
    onlineUsers: List[str] = Field(default_factory=list)


class OnlineSetChanged(BaseModel):
    type: Literal["online-set-changed"] = "online-set-changed"
    userIds: List[str] = Field(default_factory=list)


class NewMessageEvent(BaseModel):
    type: Literal["new-message"] = "new-message"
    message: Message


class MessagesSeenEvent(BaseModel):
    """Seen receipt routed back to the original sender.

    Attributes:
        messageIds: IDs that transitioned to seen.
        userId: The user who saw them (the receiver).
    """
    type: Literal["messages-seen"] = "messages-seen"
    messageIds: List[str] = Field(default_factory=list)
    userId: str


class TypingEvent(BaseModel):
    type: Literal["typing"] = "typing"
    userId: str
    isTyping: bool = True


class PongEvent(BaseModel):
    type: Literal["pong"] = "pong"


PushEvent = Annotated[
    Union[
        ConnectedEvent,
        OnlineSetChanged,
        NewMessageEvent,
        MessagesSeenEvent,
        TypingEvent,
        PongEvent,
    ],
    Field(discriminator="type"),
]

_push_event_adapter: TypeAdapter = TypeAdapter(PushEvent)


def parse_event(data: dict) -> Optional[BaseModel]:
    """Parse a raw push payload into its typed event.

    Unknown or malformed events are logged and dropped (returns None).
    """
    if not isinstance(data, dict):
        logger.warning("[Delivery] Dropping non-object event: %r", data)
        return None
    try:
        return _push_event_adapter.validate_python(data)
    except PydanticValidationError as e:
        logger.warning("[Delivery] Dropping unrecognized event %r: %s", data.get("type"), e)
        return None


def dump_event(event: BaseModel) -> dict:
    """Serialize an event to a JSON-compatible dict."""
    return event.model_dump(mode="json")
