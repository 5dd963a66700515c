"""Tests for the presence WebSocket and live delivery end to end."""
import pytest
from starlette.websockets import WebSocketDisconnect

from app.main import app


def connect(api_client, user_id):
    """Open a push connection and consume the connect handshake."""
    ws = api_client.websocket_connect(f"/ws/presence?userId={user_id}")
    ws.__enter__()
    connected = ws.receive_json()
    assert connected["type"] == "connected"
    assert connected["userId"] == user_id
    online = ws.receive_json()
    assert online["type"] == "online-set-changed"
    return ws, connected


def receive_until(ws, event_type):
    """Receive frames until one of *event_type* arrives."""
    while True:
        data = ws.receive_json()
        if data["type"] == event_type:
            return data


def test_connect_without_identity_is_rejected(api_client):
    with pytest.raises(WebSocketDisconnect) as exc_info:
        with api_client.websocket_connect("/ws/presence") as ws:
            ws.receive_json()
    assert exc_info.value.code == 1008


def test_connected_handshake_includes_self(api_client):
    with api_client.websocket_connect("/ws/presence?userId=alice") as ws:
        connected = ws.receive_json()
        assert connected["type"] == "connected"
        assert connected["sessionId"]
        assert connected["onlineUsers"] == ["alice"]
        assert ws.receive_json() == {"type": "online-set-changed", "userIds": ["alice"]}


def test_identity_header_is_accepted(api_client):
    with api_client.websocket_connect("/ws/presence", headers={"X-User-Id": "dora"}) as ws:
        assert ws.receive_json()["userId"] == "dora"


def test_online_set_broadcast_and_http_listing(api_client):
    alice, _ = connect(api_client, "alice")
    try:
        with api_client.websocket_connect("/ws/presence?userId=bob") as bob:
            connected = bob.receive_json()
            assert connected["onlineUsers"] == ["alice", "bob"]
            assert receive_until(alice, "online-set-changed")["userIds"] == ["alice", "bob"]

            response = api_client.get("/presence/online")
            assert response.json() == {"userIds": ["alice", "bob"]}

        assert api_client.get("/presence/online").json() == {"userIds": ["alice"]}
        assert app.state.presence.online_user_ids() == ["alice"]
    finally:
        alice.__exit__(None, None, None)


def test_ping_pong(api_client):
    ws, _ = connect(api_client, "alice")
    try:
        ws.send_json({"type": "ping"})
        assert ws.receive_json() == {"type": "pong"}
    finally:
        ws.__exit__(None, None, None)


def test_new_message_pushed_to_online_receiver(api_client):
    bob, _ = connect(api_client, "bob")
    try:
        sent = api_client.post(
            "/messages/send/bob", json={"text": "hi bob"}, headers={"X-User-Id": "alice"}
        ).json()

        event = receive_until(bob, "new-message")
        assert event["message"]["id"] == sent["id"]
        assert event["message"]["text"] == "hi bob"
    finally:
        bob.__exit__(None, None, None)


def test_seen_receipt_pushed_to_sender_on_fetch(api_client):
    alice, _ = connect(api_client, "alice")
    try:
        sent = api_client.post(
            "/messages/send/bob", json={"text": "hi"}, headers={"X-User-Id": "alice"}
        ).json()

        api_client.get("/messages/alice", headers={"X-User-Id": "bob"})

        receipt = receive_until(alice, "messages-seen")
        assert receipt == {"type": "messages-seen", "messageIds": [sent["id"]], "userId": "bob"}
    finally:
        alice.__exit__(None, None, None)


def test_typing_relayed(api_client):
    bob, _ = connect(api_client, "bob")
    alice, _ = connect(api_client, "alice")
    try:
        alice.send_json({"type": "typing", "to": "bob", "isTyping": True})
        event = receive_until(bob, "typing")
        assert event == {"type": "typing", "userId": "alice", "isTyping": True}
    finally:
        alice.__exit__(None, None, None)
        bob.__exit__(None, None, None)


def test_reconnect_keeps_newest_session(api_client):
    first, first_connected = connect(api_client, "alice")
    second, second_connected = connect(api_client, "alice")
    try:
        assert app.state.presence.lookup("alice") == second_connected["sessionId"]

        first.__exit__(None, None, None)
        # Round-trip on the live socket so the stale disconnect has been handled.
        second.send_json({"type": "ping"})
        receive_until(second, "pong")

        assert app.state.presence.lookup("alice") == second_connected["sessionId"]
        assert first_connected["sessionId"] != second_connected["sessionId"]
    finally:
        second.__exit__(None, None, None)
