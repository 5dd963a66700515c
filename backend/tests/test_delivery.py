"""Unit tests for the delivery router and push event schemas."""
import pytest

from app.delivery.events import (
    MessagesSeenEvent,
    NewMessageEvent,
    OnlineSetChanged,
    TypingEvent,
    dump_event,
    parse_event,
)
from app.delivery.service import DeliveryRouter
from app.messages.schemas import Message
from app.presence.registry import PresenceRegistry


class FakeSocket:
    def __init__(self):
        self.sent = []

    async def send_json(self, data):
        self.sent.append(data)

    def of_type(self, event_type):
        return [e for e in self.sent if e.get("type") == event_type]


@pytest.fixture
def registry():
    return PresenceRegistry()


@pytest.fixture
def delivery(registry):
    return DeliveryRouter(registry)


class TestPushNewMessage:
    """Tests for new-message routing."""

    @pytest.mark.asyncio
    async def test_pushes_to_online_receiver(self, registry, delivery):
        bob_socket = FakeSocket()
        await registry.connect("bob", "s-bob", bob_socket)
        message = Message(senderId="alice", receiverId="bob", text="hi")

        delivered = await delivery.push_new_message(message)

        assert delivered is True
        events = bob_socket.of_type("new-message")
        assert len(events) == 1
        assert events[0]["message"]["id"] == message.id
        assert events[0]["message"]["text"] == "hi"
        assert events[0]["message"]["seen"] is False

    @pytest.mark.asyncio
    async def test_offline_receiver_is_not_an_error(self, delivery):
        message = Message(senderId="alice", receiverId="bob", text="hi")
        assert await delivery.push_new_message(message) is False

    @pytest.mark.asyncio
    async def test_sender_does_not_receive_own_message(self, registry, delivery):
        alice_socket = FakeSocket()
        await registry.connect("alice", "s-alice", alice_socket)

        await delivery.push_new_message(Message(senderId="alice", receiverId="bob", text="hi"))

        assert alice_socket.of_type("new-message") == []


class TestPushSeenReceipt:
    """Tests for messages-seen routing."""

    @pytest.mark.asyncio
    async def test_receipt_goes_to_sender(self, registry, delivery):
        alice_socket = FakeSocket()
        await registry.connect("alice", "s-alice", alice_socket)

        delivered = await delivery.push_seen_receipt("alice", ["m1", "m2"], reader_id="bob")

        assert delivered is True
        assert alice_socket.of_type("messages-seen") == [
            {"type": "messages-seen", "messageIds": ["m1", "m2"], "userId": "bob"}
        ]

    @pytest.mark.asyncio
    async def test_empty_receipt_pushes_nothing(self, registry, delivery):
        alice_socket = FakeSocket()
        await registry.connect("alice", "s-alice", alice_socket)

        assert await delivery.push_seen_receipt("alice", [], reader_id="bob") is False
        assert alice_socket.of_type("messages-seen") == []

    @pytest.mark.asyncio
    async def test_offline_sender(self, delivery):
        assert await delivery.push_seen_receipt("alice", ["m1"], reader_id="bob") is False


class TestPushTyping:
    @pytest.mark.asyncio
    async def test_typing_relayed_to_peer(self, registry, delivery):
        bob_socket = FakeSocket()
        await registry.connect("bob", "s-bob", bob_socket)

        await delivery.push_typing("alice", "bob", True)

        assert bob_socket.of_type("typing") == [
            {"type": "typing", "userId": "alice", "isTyping": True}
        ]


class TestEventSchemas:
    """Tests for parse_event / dump_event."""

    def test_parse_new_message(self):
        message = Message(senderId="alice", receiverId="bob", text="hi")
        event = parse_event(dump_event(NewMessageEvent(message=message)))

        assert isinstance(event, NewMessageEvent)
        assert event.message.id == message.id
        assert event.message.createdAt == message.createdAt

    def test_parse_online_set(self):
        event = parse_event({"type": "online-set-changed", "userIds": ["a", "b"]})
        assert isinstance(event, OnlineSetChanged)
        assert event.userIds == ["a", "b"]

    def test_parse_seen(self):
        event = parse_event({"type": "messages-seen", "messageIds": ["m1"], "userId": "bob"})
        assert isinstance(event, MessagesSeenEvent)
        assert event.messageIds == ["m1"]

    def test_parse_typing_default(self):
        event = parse_event({"type": "typing", "userId": "alice"})
        assert isinstance(event, TypingEvent)
        assert event.isTyping is True

    @pytest.mark.parametrize("data", [
        {"type": "unknown"},
        {"type": "messages-seen"},
        {"no": "type"},
        ["not", "a", "dict"],
        None,
    ])
    def test_parse_invalid_returns_none(self, data):
        assert parse_event(data) is None
