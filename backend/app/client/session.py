"""Chat client facade.

Wires the REST client, the push connection, the ConversationStore and the
SendQueue together for one signed-in user::

    client = ChatClient.from_config("alice")
    await client.connect()
    await client.open_conversation("bob")
    client.send(MessageCreate(text="hi"))

Opening a conversation drops the push subscriptions of the previous one
before subscribing for the new peer, so events for a closed conversation
are never applied to the open one.
"""
import logging
from typing import Callable, List, Optional, Set

from app.config import ClientSettings, get_config
from app.delivery.events import (
    ConnectedEvent,
    MessagesSeenEvent,
    NewMessageEvent,
    OnlineSetChanged,
    TypingEvent,
)
from app.errors import ChatError
from app.messages.schemas import MessageCreate

from .api import ChatApiClient
from .events import EventBus
from .push import PushConnection, push_url
from .reconciler import ConversationStore, OutboundMessage
from .send_queue import SendQueue

logger = logging.getLogger(__name__)


class PresenceView:
    """Last known set of online users, fed by push events."""

    def __init__(self, bus: EventBus):
        self.online: Set[str] = set()
        self._unsubscribe = [
            bus.subscribe("connected", self._on_connected),
            bus.subscribe("online-set-changed", self._on_changed),
        ]

    def _on_connected(self, event: ConnectedEvent) -> None:
        self.online = set(event.onlineUsers)

    def _on_changed(self, event: OnlineSetChanged) -> None:
        self.online = set(event.userIds)

    def is_online(self, user_id: str) -> bool:
        return user_id in self.online

    def close(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._unsubscribe = []


class ChatClient:
    """One user's chat session: history, live updates and outbound sends."""

    def __init__(
        self,
        user_id: str,
        api: ChatApiClient,
        bus: Optional[EventBus] = None,
        push: Optional[PushConnection] = None,
        page_size: int = 20,
        auto_mark_seen: bool = True,
    ):
        self.user_id = user_id
        self.api = api
        self.bus = bus or EventBus()
        self.push = push
        self.auto_mark_seen = auto_mark_seen

        self.conversation = ConversationStore(api, user_id, page_size=page_size)
        self.queue = SendQueue(api, self.conversation)
        self.presence = PresenceView(self.bus)
        self.typing_peers: Set[str] = set()

        self._conversation_subscriptions: List[Callable[[], None]] = []

    @classmethod
    def from_config(cls, user_id: str, settings: Optional[ClientSettings] = None) -> "ChatClient":
        config = get_config()
        settings = settings or config.client
        api = ChatApiClient(
            settings.base_url,
            user_id,
            timeout=settings.request_timeout,
            identity_header=config.identity.header_name,
        )
        bus = EventBus()
        push = PushConnection(
            push_url(settings.base_url, user_id, config.identity.query_param),
            bus,
        )
        return cls(user_id, api, bus=bus, push=push, page_size=settings.page_size)

    @property
    def peer_id(self) -> Optional[str]:
        return self.conversation.peer_id

    async def connect(self) -> None:
        """Open the push connection (if any)."""
        if self.push is not None:
            await self.push.connect()

    # =========================================================================
    # Conversation
    # =========================================================================

    async def open_conversation(self, peer_id: str) -> bool:
        """Switch to *peer_id* and load its newest page.

        Fetching a page marks the peer's messages in it seen on the server,
        so the local copies are flagged seen as well.
        """
        self._drop_conversation_subscriptions()
        self.conversation.select(peer_id)
        self.typing_peers.discard(peer_id)
        self._conversation_subscriptions = [
            self.bus.subscribe("new-message", self._on_new_message),
            self.bus.subscribe("messages-seen", self._on_messages_seen),
            self.bus.subscribe("typing", self._on_typing),
        ]
        return await self.conversation.load_initial()

    def close_conversation(self) -> None:
        self._drop_conversation_subscriptions()
        self.conversation.select(None)

    def _drop_conversation_subscriptions(self) -> None:
        for unsubscribe in self._conversation_subscriptions:
            unsubscribe()
        self._conversation_subscriptions = []

    async def load_older(self) -> bool:
        return await self.conversation.load_older()

    async def mark_seen(self) -> List[str]:
        """Mark every unseen inbound message of the open conversation seen.

        Returns:
            IDs the server transitioned.
        """
        peer_id = self.conversation.peer_id
        ids = self.conversation.unseen_inbound_ids()
        if peer_id is None or not ids:
            return []
        transitioned = await self.api.mark_seen(peer_id, ids)
        # Anything not transitioned was already seen server-side.
        self.conversation.on_seen_receipt(ids)
        return transitioned

    # =========================================================================
    # Sending
    # =========================================================================

    def send(self, payload: MessageCreate) -> OutboundMessage:
        """Queue *payload* for the open conversation.

        Raises:
            ValidationError: Empty payload or no open conversation.
        """
        return self.queue.enqueue(payload)

    def retry(self, local_id: str) -> OutboundMessage:
        return self.queue.retry(local_id)

    async def send_typing(self, is_typing: bool = True) -> None:
        if self.push is not None and self.conversation.peer_id is not None:
            await self.push.send_typing(self.conversation.peer_id, is_typing)

    # =========================================================================
    # Push handlers
    # =========================================================================

    async def _on_new_message(self, event: NewMessageEvent) -> None:
        message = event.message
        if not self.conversation.on_push(message):
            return
        if self.auto_mark_seen and message.receiverId == self.user_id and not message.seen:
            try:
                await self.mark_seen()
            except ChatError as e:
                logger.warning(f"[Client] Marking {message.id} seen failed: {e.message}")

    def _on_messages_seen(self, event: MessagesSeenEvent) -> None:
        self.conversation.on_seen_receipt(event.messageIds, user_id=event.userId)

    def _on_typing(self, event: TypingEvent) -> None:
        if event.isTyping:
            self.typing_peers.add(event.userId)
        else:
            self.typing_peers.discard(event.userId)

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def close(self) -> None:
        """Wait for queued sends, then close both transports."""
        await self.queue.wait_idle()
        self._drop_conversation_subscriptions()
        self.presence.close()
        if self.push is not None:
            await self.push.close()
        await self.api.aclose()
