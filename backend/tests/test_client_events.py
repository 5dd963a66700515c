"""Tests for the client event bus and push frame handling."""
import json

import pytest

from app.client.events import EventBus
from app.client.push import PushConnection, push_url
from app.delivery.events import MessagesSeenEvent, OnlineSetChanged, PongEvent


class TestEventBus:
    @pytest.mark.asyncio
    async def test_publish_to_subscribers(self):
        bus = EventBus()
        received = []
        bus.subscribe("pong", received.append)

        await bus.publish(PongEvent())

        assert received == [PongEvent()]

    @pytest.mark.asyncio
    async def test_only_matching_type(self):
        bus = EventBus()
        received = []
        bus.subscribe("online-set-changed", received.append)

        await bus.publish(PongEvent())

        assert received == []

    @pytest.mark.asyncio
    async def test_async_handler(self):
        bus = EventBus()
        received = []

        async def handler(event):
            received.append(event.userIds)

        bus.subscribe("online-set-changed", handler)
        await bus.publish(OnlineSetChanged(userIds=["a"]))

        assert received == [["a"]]

    @pytest.mark.asyncio
    async def test_duplicate_subscription_delivers_once(self):
        bus = EventBus()
        received = []
        bus.subscribe("pong", received.append)
        bus.subscribe("pong", received.append)

        await bus.publish(PongEvent())

        assert bus.handler_count("pong") == 1
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        bus = EventBus()
        received = []
        unsubscribe = bus.subscribe("pong", received.append)

        unsubscribe()
        unsubscribe()
        await bus.publish(PongEvent())

        assert received == []
        assert bus.handler_count("pong") == 0

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_stop_others(self):
        bus = EventBus()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        bus.subscribe("pong", broken)
        bus.subscribe("pong", received.append)

        await bus.publish(PongEvent())

        assert len(received) == 1


class TestPushConnection:
    def test_push_url(self):
        assert push_url("http://localhost:8000", "alice") == "ws://localhost:8000/ws/presence?userId=alice"
        assert push_url("https://chat.example.com/", "a b") == "wss://chat.example.com/ws/presence?userId=a+b"
        assert push_url("http://h", "bob", "uid") == "ws://h/ws/presence?uid=bob"

    def test_not_connected_initially(self):
        assert PushConnection("ws://h/ws/presence", EventBus()).connected is False

    @pytest.mark.asyncio
    async def test_handle_raw_publishes_typed_event(self):
        bus = EventBus()
        received = []
        bus.subscribe("messages-seen", received.append)
        connection = PushConnection("ws://h/ws/presence", bus)

        await connection.handle_raw(json.dumps({
            "type": "messages-seen", "messageIds": ["m1"], "userId": "bob",
        }))

        assert received == [MessagesSeenEvent(messageIds=["m1"], userId="bob")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '{"type": "mystery"}'])
    async def test_handle_raw_drops_malformed(self, raw):
        bus = EventBus()
        received = []
        bus.subscribe("mystery", received.append)
        connection = PushConnection("ws://h/ws/presence", bus)

        await connection.handle_raw(raw)

        assert received == []

    @pytest.mark.asyncio
    async def test_send_typing_without_socket_is_noop(self):
        connection = PushConnection("ws://h/ws/presence", EventBus())
        await connection.send_typing("bob")
