"""Outbound send queue.

Serializes message submission: at most one send is in flight, and queued
sends go out in the order the user issued them. Each send shows up in the
ConversationStore immediately as an optimistic entry and ends as either
``sent`` (replaced by the server's message) or ``failed`` (left in place
for a manual retry). A failure never blocks the sends queued behind it.
"""
import asyncio
import itertools
import logging
from collections import OrderedDict, deque
from enum import Enum
from typing import Deque, Dict, List, Optional

from app.errors import ChatError, NotFoundError, StateConflictError, ValidationError
from app.messages.schemas import MessageCreate

from .reconciler import ConversationStore, OutboundMessage, OutboundStatus

logger = logging.getLogger(__name__)


class QueueState(str, Enum):
    EMPTY = "empty"
    DRAINING = "draining"


class SendQueue:
    """FIFO of outbound messages drained by a single task."""

    def __init__(self, api, store: ConversationStore, max_text_length: int = 5000):
        self.api = api
        self.store = store
        self.max_text_length = max_text_length

        # local_id -> OutboundMessage, in enqueue order
        self.outbox: "OrderedDict[str, OutboundMessage]" = OrderedDict()

        self._pending: Deque[OutboundMessage] = deque()
        self._drainer: Optional[asyncio.Task] = None
        self._seq = itertools.count()

    @property
    def state(self) -> QueueState:
        if self._drainer is not None and not self._drainer.done():
            return QueueState.DRAINING
        return QueueState.EMPTY

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def statuses(self) -> List[OutboundStatus]:
        return [o.status for o in self.outbox.values()]

    def _validate(self, payload: MessageCreate) -> None:
        if payload.is_empty():
            raise ValidationError("Message must have text or media")
        if payload.text and len(payload.text.strip()) > self.max_text_length:
            raise ValidationError(
                f"Message text exceeds {self.max_text_length} characters"
            )

    def enqueue(self, payload: MessageCreate, peer_id: Optional[str] = None) -> OutboundMessage:
        """Queue *payload* for the open conversation (or *peer_id*).

        Raises:
            ValidationError: Empty payload or no conversation. Nothing is queued.
        """
        self._validate(payload)
        peer_id = peer_id or self.store.peer_id
        if not peer_id:
            raise ValidationError("No conversation selected")

        outbound = OutboundMessage(peer_id=peer_id, payload=payload, seq=next(self._seq))
        self.outbox[outbound.local_id] = outbound
        self.store.add_optimistic(outbound)
        self._pending.append(outbound)
        self._ensure_draining()
        return outbound

    def retry(self, local_id: str) -> OutboundMessage:
        """Re-queue a failed message at the back of the queue.

        Raises:
            NotFoundError: Unknown local id.
            StateConflictError: The message is not in the failed state.
        """
        outbound = self.outbox.get(local_id)
        if outbound is None:
            raise NotFoundError(f"No outbound message with id {local_id}")
        if outbound.status != OutboundStatus.FAILED:
            raise StateConflictError(
                f"Message {local_id} is {outbound.status.value}, only failed messages can be retried"
            )

        outbound.seq = next(self._seq)
        outbound.mark_sending()
        self.outbox.move_to_end(local_id)
        self.store.requeue_optimistic(local_id)
        self._pending.append(outbound)
        self._ensure_draining()
        return outbound

    async def wait_idle(self) -> None:
        """Wait until every queued message has reached sent or failed."""
        while self._drainer is not None and not self._drainer.done():
            await self._drainer

    def _ensure_draining(self) -> None:
        if self.state == QueueState.DRAINING:
            return
        self._drainer = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        while self._pending:
            outbound = self._pending.popleft()
            await self._submit(outbound)

    async def _submit(self, outbound: OutboundMessage) -> None:
        try:
            message = await self.api.send_message(outbound.peer_id, outbound.payload)
        except ChatError as e:
            logger.warning(f"[Client] Send {outbound.local_id} failed: {e.message}")
            outbound.mark_failed(e.message)
            self.store.fail_optimistic(outbound.local_id, e.message)
            return
        except Exception as e:
            logger.exception(f"[Client] Send {outbound.local_id} failed unexpectedly")
            outbound.mark_failed(str(e))
            self.store.fail_optimistic(outbound.local_id, str(e))
            return

        outbound.mark_sent(message)
        self.store.resolve_optimistic(outbound.local_id, message)
        logger.debug(f"[Client] Sent {outbound.local_id} as {message.id}")

    def clear_sent(self) -> Dict[str, OutboundMessage]:
        """Forget acknowledged entries; returns what was removed."""
        removed = {k: v for k, v in self.outbox.items() if v.status == OutboundStatus.SENT}
        for local_id in removed:
            del self.outbox[local_id]
        return removed
