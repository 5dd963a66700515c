"""Typed event subscriptions for push events.

Handlers subscribe per event type and get back an unsubscribe callable.
Subscribing the same handler twice for one type is a no-op, so a caller
that re-subscribes without unsubscribing first never receives an event
twice.
"""
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, List, Union

from pydantic import BaseModel

logger = logging.getLogger(__name__)

Handler = Callable[[Any], Union[None, Awaitable[None]]]


class EventBus:
    """Dispatches parsed push events to subscribed handlers."""

    def __init__(self) -> None:
        self._handlers: Dict[str, List[Handler]] = {}

    def subscribe(self, event_type: str, handler: Handler) -> Callable[[], None]:
        """Register *handler* for *event_type*. Returns an unsubscribe function."""
        handlers = self._handlers.setdefault(event_type, [])
        if handler not in handlers:
            handlers.append(handler)

        def unsubscribe() -> None:
            try:
                self._handlers.get(event_type, []).remove(handler)
            except ValueError:
                pass

        return unsubscribe

    def handler_count(self, event_type: str) -> int:
        return len(self._handlers.get(event_type, []))

    async def publish(self, event: BaseModel) -> None:
        """Call every handler subscribed to ``event.type``, in subscription order.

        Handlers may be sync or async. A failing handler is logged and does
        not prevent the remaining handlers from running.
        """
        event_type = getattr(event, "type", None)
        for handler in list(self._handlers.get(event_type, [])):
            try:
                result = handler(event)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("[Client] Handler for %s failed", event_type)
