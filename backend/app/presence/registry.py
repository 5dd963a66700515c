"""Presence registry: which users currently hold a live push connection.

This module tracks one active session per user ("last connected socket
wins") and broadcasts the full online set whenever membership changes.

Lifecycle:
    The registry is volatile, in-memory state owned by the server process
    (``app.state.presence``). Nothing is persisted; after a restart every
    user appears offline until their client reconnects.

Session identity:
    Entries are keyed by session as well as by user. A disconnect only
    removes the user's mapping when the disconnecting session is still the
    mapped one, so a late disconnect from a superseded socket never evicts
    the newer connection.

Thread Safety:
    Designed for a single asyncio event loop. Every mutation completes
    before the first ``await`` (the broadcast), so handlers never observe a
    half-applied change. It is NOT thread-safe.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import WebSocket
from starlette.requests import HTTPConnection

from app.delivery.events import OnlineSetChanged, dump_event

logger = logging.getLogger(__name__)


@dataclass
class PresenceSession:
    """One live transport session.

    Attributes:
        session_id: Server-generated session identifier.
        user_id: Authenticated user that owns the session.
        socket: The WebSocket to push events to (None for detached sessions).
    """
    session_id: str
    user_id: str
    socket: Optional[WebSocket] = None


class PresenceRegistry:
    """Maps user IDs to their live session and fans out presence changes."""

    def __init__(self) -> None:
        # session_id -> PresenceSession (includes superseded, still-open sockets)
        self.sessions: Dict[str, PresenceSession] = {}

        # user_id -> session_id of the active session
        self.user_sessions: Dict[str, str] = {}

    # =========================================================================
    # Membership
    # =========================================================================

    async def connect(
        self, user_id: str, session_id: str, socket: Optional[WebSocket] = None
    ) -> Optional[str]:
        """Register *session_id* as the live session for *user_id*.

        Overwrites any previous mapping for the user and broadcasts the
        online set to every connected session.

        Args:
            user_id: Authenticated user ID.
            session_id: New session identifier.
            socket: WebSocket used to push events to this session.

        Returns:
            The superseded session ID, or None if the user was offline.
        """
        superseded = self.user_sessions.get(user_id)
        self.sessions[session_id] = PresenceSession(session_id, user_id, socket)
        self.user_sessions[user_id] = session_id

        if superseded and superseded != session_id:
            logger.info(f"[Presence] User {user_id} reconnected: {superseded} -> {session_id}")
        else:
            superseded = None
            logger.info(f"[Presence] User {user_id} online (session {session_id})")

        await self.broadcast_online_set()
        return superseded

    async def disconnect(self, session_id: str) -> bool:
        """Remove a session.

        The user's mapping is removed only if it still points at this exact
        session; disconnects of superseded sessions leave the mapping alone.

        Args:
            session_id: Session that closed.

        Returns:
            True if the online set changed (and was broadcast).
        """
        changed = self._drop_session(session_id)
        if changed:
            await self.broadcast_online_set()
        return changed

    def _drop_session(self, session_id: str) -> bool:
        session = self.sessions.pop(session_id, None)
        if session is None:
            return False

        if self.user_sessions.get(session.user_id) != session_id:
            logger.debug(
                f"[Presence] Stale session {session_id} for {session.user_id} closed; mapping kept"
            )
            return False

        del self.user_sessions[session.user_id]
        logger.info(f"[Presence] User {session.user_id} offline (session {session_id})")
        return True

    def lookup(self, user_id: str) -> Optional[str]:
        """Return the live session ID for *user_id*, or None if offline."""
        return self.user_sessions.get(user_id)

    def is_online(self, user_id: str) -> bool:
        return user_id in self.user_sessions

    def online_user_ids(self) -> List[str]:
        """Sorted list of users with a live session."""
        return sorted(self.user_sessions)

    def clear(self) -> None:
        """Forget all sessions (simulates a process restart)."""
        self.sessions.clear()
        self.user_sessions.clear()

    # =========================================================================
    # Sending
    # =========================================================================

    async def send_to_user(self, user_id: str, event: Dict[str, Any]) -> bool:
        """Push *event* to the user's live session.

        Returns:
            True if delivered, False if the user is offline or the send failed.
        """
        session_id = self.lookup(user_id)
        if session_id is None:
            return False
        session = self.sessions.get(session_id)
        if session is None or session.socket is None:
            return False

        if await self._safe_send(session.socket, event):
            return True

        await self.disconnect(session_id)
        return False

    async def broadcast(self, event: Dict[str, Any]) -> None:
        """Send *event* to every open session concurrently.

        Sessions whose send fails are dropped. If that changes the online
        set, the new set is broadcast once more to the survivors.
        """
        targets = [s for s in self.sessions.values() if s.socket is not None]
        if not targets:
            return

        results = await asyncio.gather(
            *[self._safe_send(s.socket, event) for s in targets],
            return_exceptions=True
        )

        changed = False
        for session, success in zip(targets, results):
            if success is not True:
                changed = self._drop_session(session.session_id) or changed

        if changed:
            await self.broadcast_online_set()

    async def broadcast_online_set(self) -> None:
        await self.broadcast(dump_event(OnlineSetChanged(userIds=self.online_user_ids())))

    async def _safe_send(self, socket: WebSocket, event: Dict[str, Any]) -> bool:
        """Send to a WebSocket, reporting failure instead of raising."""
        try:
            await socket.send_json(event)
            return True
        except Exception as e:
            logger.debug(f"[Presence] Failed to send to session: {e}")
            return False


def get_presence(connection: HTTPConnection) -> PresenceRegistry:
    """FastAPI dependency: the registry owned by the running application."""
    return connection.app.state.presence
