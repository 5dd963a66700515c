"""REST transport for the chat client, built on httpx.

Maps HTTP failures into the shared error taxonomy:
    - 400 / 422          → ValidationError
    - 404                → NotFoundError
    - 5xx, timeouts, connection failures and malformed bodies → TransientNetworkError
"""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import httpx
import pydantic

from app.errors import TransientNetworkError, from_status
from app.messages.schemas import Message, MessageCreate, MessagePage

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    detail = data.get("detail") if isinstance(data, dict) else None
    if isinstance(detail, dict):
        return detail.get("message", str(detail))
    return str(detail) if detail else response.reason_phrase


class ChatApiClient:
    """Async client for the messages REST API, acting as one user."""

    def __init__(
        self,
        base_url: str,
        user_id: str,
        timeout: float = 10.0,
        identity_header: str = "X-User-Id",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.user_id = user_id
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers={identity_header: user_id},
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            logger.warning(f"[Client] {method} {path} failed: {e!r}")
            raise TransientNetworkError(f"{method} {path} failed: {e}")

        if response.is_error:
            raise from_status(response.status_code, _error_message(response))
        try:
            return response.json()
        except ValueError as e:
            logger.warning(f"[Client] {method} {path} returned a malformed body: {e}")
            raise TransientNetworkError(f"{method} {path} returned a malformed body")

    @staticmethod
    def _parse(model, data: Any, what: str):
        try:
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            logger.warning(f"[Client] Malformed {what}: {e}")
            raise TransientNetworkError(f"Malformed {what} from server")

    async def fetch_page(
        self,
        peer_id: str,
        cursor: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> MessagePage:
        """Fetch one page of history with *peer_id* (newest first)."""
        params: Dict[str, Any] = {}
        if cursor is not None:
            params["cursor"] = cursor.isoformat()
        if limit is not None:
            params["limit"] = limit
        data = await self._request("GET", f"/messages/{peer_id}", params=params)
        return self._parse(MessagePage, data, "history page")

    async def send_message(self, peer_id: str, payload: MessageCreate) -> Message:
        """Submit a message; returns the server's stored copy."""
        data = await self._request(
            "POST",
            f"/messages/send/{peer_id}",
            json=payload.model_dump(exclude_none=True),
        )
        return self._parse(Message, data, "message")

    async def mark_seen(self, peer_id: str, message_ids: Optional[List[str]] = None) -> List[str]:
        """Mark messages from *peer_id* seen; returns the ids that transitioned."""
        body = {"messageIds": message_ids} if message_ids is not None else None
        data = await self._request("POST", f"/messages/{peer_id}/mark-seen", json=body)
        return list(data.get("messageIds", []))

    async def unread_counts(self) -> Dict[str, int]:
        data = await self._request("GET", "/messages/unread/count")
        return dict(data.get("counts", {}))

    async def online_users(self) -> List[str]:
        data = await self._request("GET", "/presence/online")
        return list(data.get("userIds", []))

    async def aclose(self) -> None:
        await self._client.aclose()
