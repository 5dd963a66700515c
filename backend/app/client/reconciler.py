"""Client-side conversation view.

ConversationStore keeps the ordered view of the currently open
conversation. It merges three sources into one sequence:

    - history pages fetched over REST (initial load and backward paging)
    - messages pushed over the presence socket
    - optimistic outbound messages queued by the SendQueue

State machine::

    IDLE ──load_initial──▶ LOADING ──ok──▶ READY ──load_older──▶ LOADING_MORE ──▶ READY
                                  └─error─▶ IDLE / READY (prior sequence untouched)

A reload started during LOADING_MORE supersedes the older fetch.

Ordering:
    Confirmed messages are ascending by ``createdAt`` with no duplicate ids.
    Messages still being sent trail every confirmed message in the order
    they were queued. A failed message stays pinned right after the newest
    confirmed message that existed when it failed, so a failure in the
    middle of a burst keeps its place between its neighbours.

Merging is always by message id, never by position, because pushes can
arrive while a fetch is suspended. A fetch whose conversation is no longer
selected when it returns is discarded.
"""
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple, Union

from app.errors import ChatError
from app.messages.schemas import Message, MessageCreate, MessagePage, utcnow

logger = logging.getLogger(__name__)


class LoadState(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    LOADING_MORE = "loading_more"


class OutboundStatus(str, Enum):
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


@dataclass
class OutboundMessage:
    """A locally displayed message that the server has not confirmed yet.

    Attributes:
        local_id: Temporary client-side identifier.
        peer_id: Receiver of the message.
        payload: Text/media to submit.
        seq: Enqueue order, used to keep queued messages in user order.
        status: sending → sent | failed (failed → sending on manual retry).
        message: The server's copy once acknowledged.
        error: Why the last attempt failed.
        anchor: Position of a failed entry (``createdAt`` it trails).
    """
    peer_id: str
    payload: MessageCreate
    seq: int
    local_id: str = field(default_factory=lambda: f"local-{uuid.uuid4()}")
    status: OutboundStatus = OutboundStatus.SENDING
    message: Optional[Message] = None
    error: Optional[str] = None
    anchor: Optional[datetime] = None
    queued_at: datetime = field(default_factory=utcnow)

    def mark_sent(self, message: Message) -> None:
        self.status = OutboundStatus.SENT
        self.message = message
        self.error = None

    def mark_failed(self, error: str) -> None:
        self.status = OutboundStatus.FAILED
        self.error = error

    def mark_sending(self) -> None:
        self.status = OutboundStatus.SENDING
        self.error = None
        self.anchor = None


Entry = Union[Message, OutboundMessage]


def _entry_key(entry: Entry) -> Tuple[datetime, int, int, str]:
    if isinstance(entry, Message):
        return (entry.createdAt, 0, 0, entry.id)
    if entry.status == OutboundStatus.FAILED:
        return (entry.anchor or datetime.min, 1, entry.seq, "")
    return (datetime.max, 1, entry.seq, "")


class ConversationStore:
    """Ordered, deduplicated view of one open conversation."""

    def __init__(self, api, user_id: str, page_size: int = 20):
        self.api = api
        self.user_id = user_id
        self.page_size = page_size

        self.peer_id: Optional[str] = None
        self.state = LoadState.IDLE
        self.entries: List[Entry] = []
        self.has_more = False
        self.next_cursor: Optional[datetime] = None
        self.last_error: Optional[ChatError] = None

        # message id -> confirmed Message in self.entries
        self._by_id: Dict[str, Message] = {}

        # Bumped on every conversation switch and every initial load;
        # responses from an older generation are stale.
        self._generation = 0

    # =========================================================================
    # Views
    # =========================================================================

    @property
    def messages(self) -> List[Message]:
        """Confirmed messages, oldest first."""
        return [e for e in self.entries if isinstance(e, Message)]

    @property
    def outbound(self) -> List[OutboundMessage]:
        return [e for e in self.entries if isinstance(e, OutboundMessage)]

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, message_id: str) -> bool:
        return message_id in self._by_id

    def unseen_inbound_ids(self) -> List[str]:
        """Messages from the peer that this user has not marked seen yet."""
        return [
            m.id for m in self.messages
            if m.receiverId == self.user_id and not m.seen
        ]

    def belongs(self, message: Message) -> bool:
        return self.peer_id is not None and message.involves(self.user_id, self.peer_id)

    # =========================================================================
    # Conversation selection
    # =========================================================================

    def select(self, peer_id: Optional[str]) -> None:
        """Switch the open conversation, dropping the previous view."""
        if peer_id == self.peer_id:
            return
        self._generation += 1
        self.peer_id = peer_id
        self.state = LoadState.IDLE
        self.entries = []
        self._by_id = {}
        self.has_more = False
        self.next_cursor = None
        self.last_error = None
        logger.debug(f"[Client] Conversation switched to {peer_id}")

    # =========================================================================
    # Fetching
    # =========================================================================

    async def load_initial(self, peer_id: Optional[str] = None) -> bool:
        """Fetch the newest page for the conversation.

        Replaces the fetched history while keeping messages newer than the
        page (pushed during the fetch) and every optimistic entry. An
        in-flight ``load_older`` is superseded: its page is discarded when
        it returns, since its cursor points into the history being replaced.

        Returns:
            True if a page was applied.
        """
        if peer_id is not None:
            self.select(peer_id)
        if self.peer_id is None or self.state == LoadState.LOADING:
            return False

        previous_state = LoadState.READY if self.state == LoadState.LOADING_MORE else self.state
        self._generation += 1
        peer, generation = self.peer_id, self._generation
        self.state = LoadState.LOADING
        try:
            page = await self.api.fetch_page(peer, limit=self.page_size)
        except ChatError as e:
            self._fetch_failed(generation, previous_state, e)
            return False
        except BaseException:
            self._fetch_aborted(generation, previous_state)
            raise

        if generation != self._generation:
            logger.debug(f"[Client] Discarding stale history page for {peer}")
            return False

        previous = self._by_id
        oldest = page.messages[-1].createdAt if page.messages else None
        keep = [
            m for m in self.messages
            if oldest is None or m.createdAt > oldest
        ]
        self.entries = [e for e in self.entries if isinstance(e, OutboundMessage)]
        self._by_id = {}
        for message in keep:
            self._insert(message)
        self._apply_page(page)

        # A page fetched before a receipt arrived must not un-see anything.
        for message_id, prior in previous.items():
            current = self._by_id.get(message_id)
            if current is not None and prior.seen and not current.seen:
                current.seen = True
                current.seenAt = prior.seenAt
        self.state = LoadState.READY
        return True

    async def load_older(self, peer_id: Optional[str] = None) -> bool:
        """Fetch the page before the current cursor and prepend it.

        No-op when there is nothing older, while any load is in flight, or
        when *peer_id* is given and is not the open conversation.

        Returns:
            True if a page was applied.
        """
        if (
            self.peer_id is None
            or (peer_id is not None and peer_id != self.peer_id)
            or self.state != LoadState.READY
            or not self.has_more
            or self.next_cursor is None
        ):
            return False

        peer, generation, cursor = self.peer_id, self._generation, self.next_cursor
        self.state = LoadState.LOADING_MORE
        try:
            page = await self.api.fetch_page(peer, cursor=cursor, limit=self.page_size)
        except ChatError as e:
            self._fetch_failed(generation, LoadState.READY, e)
            return False
        except BaseException:
            self._fetch_aborted(generation, LoadState.READY)
            raise

        if generation != self._generation:
            logger.debug(f"[Client] Discarding stale older page for {peer}")
            return False

        self._apply_page(page)
        self.state = LoadState.READY
        return True

    def _apply_page(self, page: MessagePage) -> None:
        for message in page.messages:
            self._merge(message)
        self.has_more = page.hasMore
        self.next_cursor = page.nextCursor
        self.last_error = None
        self._sort()

    def _fetch_failed(self, generation: int, previous_state: LoadState, error: ChatError) -> None:
        if generation != self._generation:
            return
        logger.warning(f"[Client] History fetch for {self.peer_id} failed: {error.message}")
        self.last_error = error
        self._fetch_aborted(generation, previous_state)

    def _fetch_aborted(self, generation: int, previous_state: LoadState) -> None:
        # Cancelled or crashed fetches leave the prior sequence in place.
        if generation != self._generation:
            return
        if previous_state == LoadState.LOADING:
            previous_state = LoadState.IDLE
        self.state = previous_state

    # =========================================================================
    # Push events
    # =========================================================================

    def on_push(self, message: Message) -> bool:
        """Merge a pushed message into the open conversation.

        Returns:
            True if the message was appended; False if it belongs to another
            conversation or is already present.
        """
        if not self.belongs(message):
            return False
        if message.id in self._by_id:
            self._merge(message)
            return False
        self._insert(message)
        self._sort()
        return True

    def on_seen_receipt(self, message_ids: Iterable[str], user_id: Optional[str] = None) -> int:
        """Flip local ``seen`` flags. Purely additive, never reverts.

        Args:
            message_ids: IDs reported seen.
            user_id: Who saw them; receipts from anyone but the open peer are ignored.

        Returns:
            Number of local messages that changed.
        """
        if user_id is not None and user_id != self.peer_id:
            return 0
        changed = 0
        for message_id in message_ids:
            message = self._by_id.get(message_id)
            if message is not None and not message.seen:
                message.seen = True
                message.seenAt = message.seenAt or utcnow()
                changed += 1
        return changed

    # =========================================================================
    # Optimistic entries
    # =========================================================================

    def add_optimistic(self, outbound: OutboundMessage) -> bool:
        if outbound.peer_id != self.peer_id:
            return False
        if outbound not in self.entries:
            self.entries.append(outbound)
            self._sort()
        return True

    def resolve_optimistic(self, local_id: str, message: Message) -> bool:
        """Replace an optimistic entry with the server's message."""
        outbound = self._find_outbound(local_id)
        if outbound is None:
            return False
        self.entries.remove(outbound)
        if message.id in self._by_id:
            self._merge(message)
        elif self.belongs(message):
            self._insert(message)
        self._sort()
        return True

    def fail_optimistic(self, local_id: str, error: str = "") -> bool:
        """Mark an optimistic entry failed and pin it after the newest confirmed message."""
        outbound = self._find_outbound(local_id)
        if outbound is None:
            return False
        if outbound.status != OutboundStatus.FAILED:
            outbound.mark_failed(error)
        confirmed = self.messages
        outbound.anchor = confirmed[-1].createdAt if confirmed else None
        self._sort()
        return True

    def requeue_optimistic(self, local_id: str) -> bool:
        """Move a failed entry back to the sending tail (manual retry)."""
        outbound = self._find_outbound(local_id)
        if outbound is None:
            return False
        outbound.mark_sending()
        self._sort()
        return True

    def _find_outbound(self, local_id: str) -> Optional[OutboundMessage]:
        for entry in self.entries:
            if isinstance(entry, OutboundMessage) and entry.local_id == local_id:
                return entry
        return None

    # =========================================================================
    # Internals
    # =========================================================================

    def _insert(self, message: Message) -> None:
        self.entries.append(message)
        self._by_id[message.id] = message

    def _merge(self, message: Message) -> None:
        existing = self._by_id.get(message.id)
        if existing is None:
            self._insert(message)
            return
        if message.seen and not existing.seen:
            existing.seen = True
            existing.seenAt = message.seenAt

    def _sort(self) -> None:
        self.entries.sort(key=_entry_key)
