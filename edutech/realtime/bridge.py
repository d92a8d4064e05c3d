"""
Realtime Invalidation Bridge

Turns named realtime events into cache invalidations for the keys a view
registered. A binding always listens to ``api:update`` (the backend's
catch-all change event), plus ``<topic>:update`` for each topic and any
explicit event names.

Bindings are scoped: every subscription acquired by ``bind()`` is
released when the block exits, including when setup itself fails part
way through. Unsubscribe errors during teardown are logged and ignored.

Repeated events are harmless: an invalidation that lands while the
refetch from the previous one is still in flight joins that fetch.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Iterable, List, Optional, Sequence, Tuple

from edutech.api import endpoints
from edutech.cache.invalidation import InvalidationRequest, InvalidationResult
from edutech.cache.keys import CacheKey, make_key
from edutech.cache.query_client import QueryClient
from edutech.realtime.transport import RealtimeTransport, Unsubscribe


logger = logging.getLogger(__name__)

GLOBAL_EVENT = "api:update"

# Admin dashboard channels and the queries they affect
ADMIN_EVENTS: Tuple[str, ...] = (
    "analytics:update",
    "orders:paid",
    "admin:courses:update",
    "admin:users:update",
    "admin:reports:update",
    "admin:products:update",
    "admin:inventory:low",
)

ADMIN_KEYS: Tuple[CacheKey, ...] = (
    (endpoints.ADMIN_ANALYTICS_OVERVIEW,),
    (endpoints.ADMIN_ANALYTICS_STUDENTS,),
    (endpoints.ADMIN_USERS,),
    (endpoints.COURSES,),
    (endpoints.ADMIN_REPORTS_SALES,),
    (endpoints.ADMIN_REPORTS_ACTIVITY,),
    (endpoints.PRODUCTS_TRENDING,),
)


def channels_for(topics: Iterable[str] = (), events: Iterable[str] = ()) -> List[str]:
    """Event names a binding listens to, in subscription order, without duplicates."""
    names = [GLOBAL_EVENT]
    names.extend(f"{topic}:update" for topic in topics)
    names.extend(events)
    return list(dict.fromkeys(names))


class RealtimeBinding:
    """
    Live link between a set of channels and a set of cache keys.

    With ``debounce`` > 0 a burst of events collapses into a single
    invalidation ``debounce`` seconds after the first one, so a steady
    stream of events still invalidates once per window.
    """

    def __init__(
        self,
        client: QueryClient,
        keys: Sequence[CacheKey],
        channels: Sequence[str],
        debounce: float = 0.0,
    ):
        self._client = client
        self.keys = tuple(keys)
        self.channels = tuple(channels)
        self.debounce = debounce
        self.events_received = 0
        self.invalidations = 0
        self.last_result: Optional[InvalidationResult] = None
        self._pending: Optional[asyncio.TimerHandle] = None
        self._pending_event: Optional[str] = None
        self._closed = False

    def __repr__(self):
        return f"<RealtimeBinding {list(self.channels)} -> {len(self.keys)} keys>"

    @property
    def closed(self) -> bool:
        return self._closed

    def handler_for(self, event: str):
        def handler(payload: Any = None) -> None:
            self.on_event(event, payload)
        return handler

    def on_event(self, event: str, payload: Any = None) -> None:
        if self._closed:
            return
        self.events_received += 1
        logger.debug(f"Realtime event {event} received")

        if self.debounce > 0:
            # The window opens on the first event of a burst and is not extended
            self._pending_event = event
            if self._pending is None:
                self._pending = asyncio.get_running_loop().call_later(
                    self.debounce, self._flush
                )
            return
        self._invalidate(event)

    def _flush(self) -> None:
        self._pending = None
        if not self._closed:
            self._invalidate(self._pending_event or GLOBAL_EVENT)

    def _invalidate(self, event: str) -> None:
        self.invalidations += 1
        self.last_result = self._client.apply(
            InvalidationRequest.for_keys(self.keys, source=f"realtime:{event}")
        )

    def close(self) -> None:
        self._closed = True
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None


class RealtimeInvalidationBridge:
    """
    Connect a realtime transport to the query cache.

    Usage:
        bridge = RealtimeInvalidationBridge(query_client, transport)
        async with bridge.bind([("/api/courses",)], topics=["courses"]):
            ...  # view is mounted

        async with bridge.bind_admin():
            ...  # admin dashboard is mounted
    """

    def __init__(
        self,
        client: QueryClient,
        transport: RealtimeTransport,
        debounce: float = 0.0,
    ):
        self._client = client
        self._transport = transport
        self.debounce = debounce

    @property
    def client(self) -> QueryClient:
        return self._client

    @property
    def transport(self) -> RealtimeTransport:
        return self._transport

    @asynccontextmanager
    async def bind(
        self,
        keys: Iterable[Any],
        topics: Iterable[str] = (),
        events: Iterable[str] = (),
        debounce: Optional[float] = None,
    ) -> AsyncIterator[RealtimeBinding]:
        """
        Invalidate ``keys`` whenever one of the binding's channels fires.

        Args:
            keys: Cache keys or key prefixes to invalidate
            topics: Topic names; each adds ``<topic>:update``
            events: Extra event names to listen to verbatim
            debounce: Overrides the bridge's debounce for this binding
        """
        keys = [make_key(key) for key in keys]
        if not keys:
            raise ValueError("A realtime binding needs at least one cache key")

        binding = RealtimeBinding(
            self._client,
            keys,
            channels_for(topics, events),
            self.debounce if debounce is None else debounce,
        )

        unsubscribes: List[Unsubscribe] = []
        try:
            for channel in binding.channels:
                unsubscribes.append(
                    await self._transport.subscribe(channel, binding.handler_for(channel))
                )
            logger.info(f"Realtime binding active: {list(binding.channels)}")
            yield binding
        finally:
            binding.close()
            for unsubscribe in reversed(unsubscribes):
                try:
                    unsubscribe()
                except Exception as e:
                    logger.debug(f"Ignoring realtime unsubscribe failure: {e}")
            logger.debug(f"Realtime binding released: {list(binding.channels)}")

    def bind_admin(self, debounce: Optional[float] = None):
        """
        Binding for the admin dashboard: every admin channel invalidates every
        admin query, with bursts coalesced by ``realtime_debounce``.
        """
        return self.bind(
            ADMIN_KEYS,
            events=ADMIN_EVENTS,
            debounce=self._client.config.realtime_debounce if debounce is None else debounce,
        )
