"""
Subscriptions

A Subscription is a view's binding to one cache key at a time. It owns
nothing: the CacheEntry it points at is shared with every other
subscription to the same key.

When the subscription moves to another key, it detaches from the old
entry before attaching to the new one, so a late response for the old key
can never reach the view bound to the new key.
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Callable, List, Optional

from edutech.cache.config import QueryOptions
from edutech.cache.entry import CacheEntry, Fetcher, QueryState
from edutech.cache.keys import CacheKey, make_key

if TYPE_CHECKING:
    from edutech.cache.query_client import QueryClient


logger = logging.getLogger(__name__)

StateListener = Callable[[QueryState], None]


class Subscription:
    """
    Observer of one cache entry.

    Usage:
        async with client.subscribe(("/api/courses", {"page": 1})) as sub:
            state = await sub.wait()
            sub.set_key(("/api/courses", {"page": 2}))
    """

    def __init__(
        self,
        client: "QueryClient",
        key: CacheKey,
        fetcher: Optional[Fetcher] = None,
        enabled: bool = True,
        options: Optional[QueryOptions] = None,
    ):
        self._client = client
        self.key = make_key(key)
        self._fetcher = fetcher
        self.enabled = enabled
        self.options = options or client.config.default_options()

        self._entry: Optional[CacheEntry] = None
        self._remove_entry_listener: Optional[Callable[[], None]] = None
        self._listeners: List[StateListener] = []
        self._poll_task: Optional[asyncio.Task] = None
        self._last_state = QueryState()
        self._closed = False

        self._bind()

    def __repr__(self):
        return f"<Subscription {self.key!r} enabled={self.enabled}>"

    # =========================================================================
    # Binding
    # =========================================================================

    def _bind(self) -> None:
        self._entry = self._client._acquire(self.key, self._fetcher, self.options, self)
        self._remove_entry_listener = self._entry.add_listener(self._on_entry_change)
        self._last_state = self._entry.state

        if self.enabled and self._entry.is_stale(self.options.stale_time):
            self._entry.fetch()
        self._start_polling()

    def _unbind(self) -> None:
        self._stop_polling()
        if self._remove_entry_listener is not None:
            self._remove_entry_listener()
            self._remove_entry_listener = None
        if self._entry is not None:
            self._last_state = self._entry.state
            entry, self._entry = self._entry, None
            self._client._release(entry, self)

    def _on_entry_change(self, entry: CacheEntry) -> None:
        if entry is not self._entry:
            return
        state = entry.state
        self._last_state = state
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception(f"State listener failed for {self.key!r}")

    # =========================================================================
    # Polling
    # =========================================================================

    def _start_polling(self) -> None:
        interval = self.options.refetch_interval
        if not interval or not self.enabled or self._poll_task is not None:
            return
        self._poll_task = asyncio.get_running_loop().create_task(self._poll(interval))

    def _stop_polling(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    async def _poll(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            if self._entry is not None and self.enabled:
                logger.debug(f"Polling refetch for {self.key!r}")
                self._entry.fetch()

    # =========================================================================
    # Public API
    # =========================================================================

    @property
    def entry(self) -> Optional[CacheEntry]:
        return self._entry

    @property
    def state(self) -> QueryState:
        if self._entry is not None:
            return self._entry.state
        return self._last_state

    @property
    def data(self) -> Any:
        return self.state.data

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener(state)`` on every state change of the bound entry."""
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def set_key(self, key: CacheKey, fetcher: Optional[Fetcher] = None) -> None:
        """
        Point the subscription at another key (filters or page changed).

        No-op when the normalised key is unchanged.
        """
        key = make_key(key)
        if self._closed:
            raise RuntimeError("Subscription is closed")
        if key == self.key and fetcher is None:
            return

        logger.debug(f"Subscription key change {self.key!r} -> {key!r}")
        self._unbind()
        self.key = key
        if fetcher is not None:
            self._fetcher = fetcher
        self._bind()
        self._on_entry_change(self._entry)

    def set_enabled(self, enabled: bool) -> None:
        """
        Gate fetching (e.g. on token availability).

        Regaining ``enabled`` always refetches.
        """
        if enabled == self.enabled or self._closed:
            return
        self.enabled = enabled
        if enabled:
            self._entry.fetch()
            self._start_polling()
        else:
            self._stop_polling()

    async def wait(self) -> QueryState:
        """Wait until no fetch is in flight for the bound key; return the state."""
        while self._entry is not None:
            task = self._entry.in_flight
            if task is None:
                break
            await asyncio.wait({task})
        return self.state

    async def refetch(self) -> QueryState:
        """Force a fetch (joins one already in flight)."""
        if self._entry is None:
            return self.state
        self._entry.fetch()
        return await self.wait()

    def close(self) -> None:
        """Detach from the entry. Safe to call more than once."""
        if self._closed:
            return
        self._unbind()
        self._listeners.clear()
        self._closed = True
        self._client._forget(self)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        self.close()
