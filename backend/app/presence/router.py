"""Presence WebSocket and HTTP endpoints.

This module provides:
    - WebSocket /ws/presence: the per-user push connection
    - GET /presence/online: current online user IDs

Protocol Flow:
    1. Client connects with its identity (``X-User-Id`` header or ``userId``
       query parameter). Connections without identity are closed (1008).
    2. Server registers the session → sends {type: "connected", sessionId, userId, onlineUsers}
       → broadcasts {type: "online-set-changed", userIds} to every session
    3. Server pushes new-message / messages-seen / typing events as they happen
    4. Client may send:
       - {type: "typing", to, isTyping} → relayed to the peer as {type: "typing", userId, isTyping}
       - {type: "ping"} → answered with {type: "pong"}
    5. On disconnect → session removed (only if still current) → online set broadcast
"""
import logging
import uuid

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from app.auth.identity import resolve_user_id
from app.delivery.events import ConnectedEvent, PongEvent, dump_event
from app.delivery.service import DeliveryRouter

from .registry import PresenceRegistry, get_presence

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/presence/online")
async def online_users(registry: PresenceRegistry = Depends(get_presence)) -> dict:
    """List users that currently hold a live push connection."""
    return {"userIds": registry.online_user_ids()}


@router.websocket("/ws/presence")
async def presence_endpoint(websocket: WebSocket) -> None:
    """Push connection for one authenticated user.

    Args:
        websocket: The WebSocket connection.
    """
    user_id = resolve_user_id(websocket)
    if user_id is None:
        logger.warning("[WS] Presence connection without identity rejected")
        await websocket.close(code=1008)  # 1008 = Policy Violation
        return

    registry: PresenceRegistry = websocket.app.state.presence
    delivery: DeliveryRouter = websocket.app.state.delivery

    await websocket.accept()
    session_id = str(uuid.uuid4())

    try:
        await websocket.send_json(dump_event(ConnectedEvent(
            sessionId=session_id,
            userId=user_id,
            onlineUsers=sorted(set(registry.online_user_ids()) | {user_id}),
        )))
        await registry.connect(user_id, session_id, websocket)
        logger.info(f"[WS] {user_id} connected as session {session_id}")

        while True:
            data = await websocket.receive_json()
            event_type = data.get("type") if isinstance(data, dict) else None

            if event_type == "ping":
                await websocket.send_json(dump_event(PongEvent()))
                continue

            if event_type == "typing":
                peer_id = data.get("to")
                if peer_id:
                    await delivery.push_typing(user_id, peer_id, bool(data.get("isTyping", True)))
                continue

            logger.debug(f"[WS] Ignoring unknown event {event_type!r} from {user_id}")

    except WebSocketDisconnect:
        logger.info(f"[WS] {user_id} disconnected (session {session_id})")
    finally:
        await registry.disconnect(session_id)
