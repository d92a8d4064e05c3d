"""
Realtime Transport

The push channel the backend uses to announce out-of-band changes. The
client only needs named events; payloads are optional and most handlers
ignore them.

Any object with an awaitable ``subscribe(event, handler) -> unsubscribe``
satisfies RealtimeTransport. LocalTransport is the in-process
implementation used for tests and for wiring server-sent events into the
cache from an application's own receive loop.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Union


logger = logging.getLogger(__name__)

EventHandler = Callable[[Any], Union[None, Awaitable[None]]]
Unsubscribe = Callable[[], None]


class RealtimeTransport(Protocol):
    """Named-event subscription source."""

    async def subscribe(self, event: str, handler: EventHandler) -> Unsubscribe:
        ...


class LocalTransport:
    """
    In-process pub/sub.

    Features:
    - Per-event handler lists (an event with no handlers is dropped)
    - Sync and async handlers
    - A failing handler never prevents the others from running

    Usage:
        transport = LocalTransport()
        unsubscribe = await transport.subscribe("courses:update", handler)
        await transport.emit("courses:update", {"courseId": "c1"})
        unsubscribe()
    """

    def __init__(self):
        self._handlers: Dict[str, List[EventHandler]] = {}
        self._event_count = 0

    async def subscribe(self, event: str, handler: EventHandler) -> Unsubscribe:
        self._handlers.setdefault(event, []).append(handler)
        logger.debug(f"Subscribed to {event}")

        def unsubscribe() -> None:
            handlers = self._handlers.get(event)
            if handlers is None:
                return
            if handler in handlers:
                handlers.remove(handler)
            if not handlers:
                del self._handlers[event]
            logger.debug(f"Unsubscribed from {event}")

        return unsubscribe

    async def emit(self, event: str, payload: Any = None) -> int:
        """
        Deliver ``event`` to its handlers.

        Returns the number of handlers called.
        """
        self._event_count += 1
        handlers = list(self._handlers.get(event, ()))
        for handler in handlers:
            try:
                outcome = handler(payload)
                if asyncio.iscoroutine(outcome):
                    await outcome
            except Exception:
                logger.exception(f"Realtime handler failed for {event}")
        return len(handlers)

    def listener_count(self, event: Optional[str] = None) -> int:
        if event is not None:
            return len(self._handlers.get(event, ()))
        return sum(len(handlers) for handlers in self._handlers.values())

    @property
    def events(self) -> List[str]:
        """Event names with at least one handler."""
        return list(self._handlers)

    def get_stats(self) -> Dict[str, Any]:
        return {
            "events_emitted": self._event_count,
            "subscribed_events": len(self._handlers),
            "handlers": self.listener_count(),
        }
