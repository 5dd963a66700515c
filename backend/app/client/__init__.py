"""Python client library for the direct messaging API.

Usage:
    from app.client import ChatClient
    from app.messages.schemas import MessageCreate

    client = ChatClient.from_config("alice")
    await client.connect()
    await client.open_conversation("bob")
    client.send(MessageCreate(text="hi"))
    await client.close()
"""
from .api import ChatApiClient
from .events import EventBus
from .push import PushConnection, push_url
from .reconciler import ConversationStore, LoadState, OutboundMessage, OutboundStatus
from .send_queue import QueueState, SendQueue
from .session import ChatClient, PresenceView

__all__ = [
    "ChatApiClient",
    "ChatClient",
    "ConversationStore",
    "EventBus",
    "LoadState",
    "OutboundMessage",
    "OutboundStatus",
    "PresenceView",
    "PushConnection",
    "QueueState",
    "SendQueue",
    "push_url",
]
