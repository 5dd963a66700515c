"""Delivery router: pushes message and receipt events to live sessions.

Given a stored message or a seen transition, the router looks up the
recipient's live session in the presence registry and pushes the event if
one exists. Offline recipients get nothing now; they discover the change
the next time they fetch history. Live notification is at most once;
fetching is what makes the views eventually consistent.

Ordering:
    Calls are awaited one after another by the request that triggered
    them, so events for one session go out in the order they were issued.
"""
import logging
from typing import Iterable

from starlette.requests import HTTPConnection

from app.messages.schemas import Message
from app.presence.registry import PresenceRegistry

from .events import MessagesSeenEvent, NewMessageEvent, TypingEvent, dump_event

logger = logging.getLogger(__name__)


class DeliveryRouter:
    """Routes push events through a PresenceRegistry."""

    def __init__(self, registry: PresenceRegistry) -> None:
        self.registry = registry

    async def push_new_message(self, message: Message) -> bool:
        """Push a ``new-message`` event to the message's receiver.

        Returns:
            True if the receiver was online and the event was sent.
        """
        delivered = await self.registry.send_to_user(
            message.receiverId,
            dump_event(NewMessageEvent(message=message)),
        )
        if delivered:
            logger.info(f"[Delivery] new-message {message.id} pushed to {message.receiverId}")
        else:
            logger.debug(f"[Delivery] {message.receiverId} offline; {message.id} waits for fetch")
        return delivered

    async def push_seen_receipt(
        self, sender_id: str, message_ids: Iterable[str], reader_id: str
    ) -> bool:
        """Tell the original sender that *reader_id* has seen their messages.

        Args:
            sender_id: Author of the messages (the receipt's recipient).
            message_ids: IDs that actually transitioned to seen.
            reader_id: The user who saw them.

        Returns:
            True if a receipt was pushed. An empty id set pushes nothing.
        """
        ids = list(message_ids)
        if not ids:
            return False

        delivered = await self.registry.send_to_user(
            sender_id,
            dump_event(MessagesSeenEvent(messageIds=ids, userId=reader_id)),
        )
        if delivered:
            logger.info(f"[Delivery] messages-seen ({len(ids)}) pushed to {sender_id}")
        return delivered

    async def push_typing(self, from_id: str, to_id: str, is_typing: bool) -> bool:
        """Relay a typing indicator from one user to their peer."""
        return await self.registry.send_to_user(
            to_id,
            dump_event(TypingEvent(userId=from_id, isTyping=is_typing)),
        )


def get_delivery(connection: HTTPConnection) -> DeliveryRouter:
    """FastAPI dependency: the delivery router owned by the running application."""
    return connection.app.state.delivery
