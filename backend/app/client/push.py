"""Push transport for the chat client, built on the ``websockets`` library.

Opens the presence WebSocket for one user, parses every incoming frame
into a typed event and publishes it on an EventBus.
"""
import asyncio
import json
import logging
from typing import Optional, Union
from urllib.parse import urlencode

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from app.delivery.events import parse_event
from app.errors import TransientNetworkError

from .events import EventBus

logger = logging.getLogger(__name__)

PRESENCE_PATH = "/ws/presence"


def push_url(base_url: str, user_id: str, query_param: str = "userId") -> str:
    """Derive the presence WebSocket URL from the REST base URL."""
    base_url = base_url.rstrip("/")
    if base_url.startswith("https://"):
        base_url = "wss://" + base_url[len("https://"):]
    elif base_url.startswith("http://"):
        base_url = "ws://" + base_url[len("http://"):]
    return f"{base_url}{PRESENCE_PATH}?{urlencode({query_param: user_id})}"


class PushConnection:
    """One user's live push connection."""

    def __init__(self, url: str, bus: EventBus):
        self.url = url
        self.bus = bus
        self._ws = None
        self._listener: Optional[asyncio.Task] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None and self._listener is not None and not self._listener.done()

    async def connect(self) -> None:
        """Open the socket and start dispatching events in the background.

        Raises:
            TransientNetworkError: If the connection cannot be established.
        """
        if self.connected:
            return
        try:
            self._ws = await websockets.connect(self.url)
        except (OSError, WebSocketException) as e:
            raise TransientNetworkError(f"Push connection to {self.url} failed: {e}")

        self._listener = asyncio.get_running_loop().create_task(self._listen())
        logger.info(f"[Client] Push connection open: {self.url}")

    async def _listen(self) -> None:
        try:
            async for raw in self._ws:
                await self.handle_raw(raw)
        except ConnectionClosed as e:
            logger.info(f"[Client] Push connection closed: {e}")

    async def handle_raw(self, raw: Union[str, bytes]) -> None:
        """Parse one frame and publish it. Malformed frames are dropped."""
        try:
            data = json.loads(raw)
        except ValueError:
            logger.warning("[Client] Dropping non-JSON push frame")
            return
        event = parse_event(data)
        if event is not None:
            await self.bus.publish(event)

    async def send_typing(self, peer_id: str, is_typing: bool = True) -> None:
        if self._ws is None:
            return
        try:
            await self._ws.send(json.dumps({"type": "typing", "to": peer_id, "isTyping": is_typing}))
        except ConnectionClosed as e:
            logger.debug(f"[Client] Typing indicator not sent: {e}")

    async def close(self) -> None:
        if self._ws is not None:
            await self._ws.close()
        if self._listener is not None:
            await self._listener
        self._ws = None
        self._listener = None
