"""
Query Client

The process-wide query cache service. One instance is constructed at
application start, injected into views, and closed at shutdown.

Key components:
- Entries keyed by normalised CacheKey, shared by all subscriptions
- Prefix-based invalidation (mutations, realtime events, token refresh)
- Idle eviction after ``gc_time`` with zero subscriptions
- Focus refetch for subscriptions that opt in

Usage:
    async with QueryClient(default_fetcher=api.fetch_query) as client:
        sub = client.subscribe(("/api/courses", {"page": 1, "limit": 10}))
        state = await sub.wait()

        client.invalidate(("/api/courses",))
"""

import asyncio
import logging
import math
import time
from typing import Any, Callable, Dict, List, Optional, Set

from edutech.cache.config import QueryCacheConfig, QueryOptions, get_query_cache_config
from edutech.cache.entry import CacheEntry, CacheStats, Fetcher, QueryStatus
from edutech.cache.invalidation import InvalidationRequest, InvalidationResult
from edutech.cache.keys import CacheKey, make_key, matches
from edutech.cache.subscription import Subscription
from edutech.exceptions import EdutechError


logger = logging.getLogger(__name__)


class QueryClient:
    """
    Client-side query cache.

    Features:
    - At most one in-flight fetch per key
    - Stale-response discarding via per-entry fetch epochs
    - Lazy refetch for unobserved entries after invalidation
    - Statistics for debugging and health checks
    """

    def __init__(
        self,
        config: Optional[QueryCacheConfig] = None,
        default_fetcher: Optional[Fetcher] = None,
    ):
        self.config = config or get_query_cache_config()
        self._default_fetcher = default_fetcher
        self._entries: Dict[CacheKey, CacheEntry] = {}
        self._gc_handles: Dict[CacheKey, asyncio.TimerHandle] = {}
        self._subscriptions: Set[Subscription] = set()
        self._stats = CacheStats()
        self._closed = False

    # =========================================================================
    # Entry bookkeeping
    # =========================================================================

    async def _missing_fetcher(self, key: CacheKey) -> Any:
        raise EdutechError(f"No fetcher registered for {key!r}")

    def _get_or_create(
        self,
        key: CacheKey,
        fetcher: Optional[Fetcher] = None,
        options: Optional[QueryOptions] = None,
    ) -> CacheEntry:
        entry = self._entries.get(key)
        if entry is None:
            entry = CacheEntry(
                key,
                fetcher or self._default_fetcher or self._missing_fetcher,
                options or self.config.default_options(),
                stats=self._stats,
            )
            self._entries[key] = entry
            logger.debug(f"Cache entry created: {key!r}")
        else:
            if fetcher is not None:
                entry.fetcher = fetcher
            if options is not None:
                entry.options = options
        return entry

    def _acquire(
        self,
        key: CacheKey,
        fetcher: Optional[Fetcher],
        options: QueryOptions,
        subscriber: Subscription,
    ) -> CacheEntry:
        if self._closed:
            raise EdutechError("QueryClient is closed")

        entry = self._get_or_create(key, fetcher, options)
        handle = self._gc_handles.pop(key, None)
        if handle is not None:
            handle.cancel()
        entry.attach(subscriber)
        return entry

    def _release(self, entry: CacheEntry, subscriber: Subscription) -> None:
        if entry.detach(subscriber) > 0:
            return

        # Nobody is left to care about the in-flight response
        entry.cancel()
        self._schedule_gc(entry)

    def _forget(self, subscription: Subscription) -> None:
        self._subscriptions.discard(subscription)

    def _schedule_gc(self, entry: CacheEntry) -> None:
        if self._closed or math.isinf(self.config.gc_time):
            return
        old = self._gc_handles.pop(entry.key, None)
        if old is not None:
            old.cancel()
        self._gc_handles[entry.key] = asyncio.get_running_loop().call_later(
            self.config.gc_time, self._evict, entry.key, entry
        )

    def _evict(self, key: CacheKey, entry: CacheEntry) -> None:
        self._gc_handles.pop(key, None)
        if self._entries.get(key) is not entry or entry.subscriber_count:
            return
        entry.cancel()
        del self._entries[key]
        self._stats.evictions += 1
        logger.debug(f"Evicted idle cache entry: {key!r}")

    # =========================================================================
    # Queries
    # =========================================================================

    def subscribe(
        self,
        key: Any,
        fetcher: Optional[Fetcher] = None,
        *,
        enabled: bool = True,
        options: Optional[QueryOptions] = None,
        **option_overrides,
    ) -> Subscription:
        """
        Bind a new subscription to ``key``.

        Fetches immediately when enabled and the entry is missing data or
        stale. ``option_overrides`` (stale_time, retry, refetch_on_focus,
        refetch_interval) are applied on top of the configured defaults.
        """
        options = options or self.config.default_options()
        if option_overrides:
            options = options.merge(**option_overrides)

        subscription = Subscription(
            self,
            make_key(key),
            fetcher=fetcher,
            enabled=enabled,
            options=options,
        )
        self._subscriptions.add(subscription)
        return subscription

    async def fetch_query(
        self,
        key: Any,
        fetcher: Optional[Fetcher] = None,
        options: Optional[QueryOptions] = None,
    ) -> Any:
        """
        Return data for ``key``, fetching if missing or stale.

        Raises the fetch error, unlike subscriptions which expose it as state.
        """
        key = make_key(key)
        entry = self._get_or_create(key, fetcher, options)
        stale_time = (options or entry.options).stale_time

        if entry.is_stale(stale_time) or entry.is_fetching:
            task = entry.fetch()
            await asyncio.wait({task})

        if not entry.subscriber_count:
            self._schedule_gc(entry)

        if entry.status == QueryStatus.ERROR:
            raise entry.error
        return entry.data

    def get_entry(self, key: Any) -> Optional[CacheEntry]:
        return self._entries.get(make_key(key))

    def find_entries(self, prefix: Any = None, exact: bool = False) -> List[CacheEntry]:
        """Entries addressed by ``prefix`` (all entries when None)."""
        if prefix is None:
            return list(self._entries.values())
        prefix = make_key(prefix)
        return [
            entry for entry in self._entries.values()
            if matches(entry.key, prefix, exact=exact)
        ]

    def get_query_data(self, key: Any) -> Any:
        entry = self.get_entry(key)
        return entry.data if entry is not None else None

    def set_query_data(self, key: Any, updater: Any) -> Any:
        """
        Write data for ``key`` without fetching.

        ``updater`` is either the new value or a callable receiving the
        current data and returning the new value. Returning None from a
        callable leaves the entry untouched.
        """
        key = make_key(key)
        entry = self._get_or_create(key)
        new_data = updater(entry.data) if callable(updater) else updater
        if new_data is None:
            return entry.data

        entry.set_data(new_data)
        if not entry.subscriber_count:
            self._schedule_gc(entry)
        return new_data

    # =========================================================================
    # Invalidation
    # =========================================================================

    def invalidate(
        self,
        *keys: Any,
        exact: bool = False,
        refetch: bool = True,
        source: str = "manual",
    ) -> InvalidationResult:
        """Mark entries matching any of ``keys`` stale; no keys = everything."""
        if keys:
            request = InvalidationRequest.for_keys(keys, exact=exact, source=source)
        else:
            request = InvalidationRequest.everything(source=source)
        if not refetch:
            request = InvalidationRequest(
                keys=request.keys, exact=request.exact, refetch=False, source=source
            )
        return self.apply(request)

    def apply(self, request: InvalidationRequest) -> InvalidationResult:
        """
        Apply an invalidation request.

        Observed entries refetch now (joining any fetch already in flight);
        unobserved entries are only marked stale and refetch on next use.
        """
        start_time = time.time()
        result = InvalidationResult(source=request.source)

        if request.is_global:
            targets = list(self._entries.values())
        else:
            targets = [
                entry for entry in self._entries.values()
                if any(matches(entry.key, key, exact=request.exact) for key in request.keys)
            ]

        for entry in targets:
            try:
                result.entries_marked += 1
                if entry.invalidate(refetch=request.refetch):
                    result.refetches_started += 1
            except Exception as e:
                result.errors.append(str(e))
                logger.error(f"Cache invalidation error for {entry.key!r}: {e}")

        result.duration_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Invalidation ({request.source}): {result.entries_marked} entries, "
            f"{result.refetches_started} refetches, duration: {result.duration_ms:.2f}ms"
        )
        return result

    def reset(self, *keys: Any) -> int:
        """Drop data for matching entries (all when no keys); observed ones refetch."""
        targets = (
            [e for k in keys for e in self.find_entries(k)]
            if keys else list(self._entries.values())
        )
        for entry in dict.fromkeys(targets):
            entry.reset()
            if entry.has_active_subscribers():
                entry.fetch()
        return len(targets)

    def remove(self, *keys: Any, exact: bool = False) -> int:
        """Evict unobserved entries matching ``keys`` immediately."""
        removed = 0
        for key in keys:
            for entry in self.find_entries(key, exact=exact):
                if entry.subscriber_count:
                    continue
                entry.cancel()
                self._entries.pop(entry.key, None)
                handle = self._gc_handles.pop(entry.key, None)
                if handle is not None:
                    handle.cancel()
                removed += 1
        return removed

    # =========================================================================
    # Background refetch triggers
    # =========================================================================

    def focus(self) -> int:
        """
        Application regained focus.

        Refetches stale entries that have an enabled subscription opted into
        ``refetch_on_focus``. Returns the number of fetches started.
        """
        started = 0
        for subscription in list(self._subscriptions):
            entry = subscription.entry
            if (
                entry is None
                or not subscription.enabled
                or not subscription.options.refetch_on_focus
                or entry.is_fetching
                or not entry.is_stale(subscription.options.stale_time)
            ):
                continue
            entry.fetch()
            started += 1
        return started

    # =========================================================================
    # Statistics and lifecycle
    # =========================================================================

    def get_stats(self) -> Dict:
        """Get cache statistics."""
        return {
            "entries": len(self._entries),
            "active_entries": sum(1 for e in self._entries.values() if e.subscriber_count),
            "subscriptions": len(self._subscriptions),
            "fetches": self._stats.fetches,
            "deduplicated": self._stats.deduplicated,
            "discarded": self._stats.discarded,
            "failures": self._stats.failures,
            "retries": self._stats.retries,
            "cancelled": self._stats.cancelled,
            "invalidations": self._stats.invalidations,
            "evictions": self._stats.evictions,
            "avg_latency_ms": round(self._stats.avg_latency_ms, 2),
        }

    @property
    def closed(self) -> bool:
        return self._closed

    async def close(self) -> None:
        """Close every subscription and cancel outstanding work."""
        if self._closed:
            return

        for subscription in list(self._subscriptions):
            subscription.close()
        self._closed = True

        for handle in self._gc_handles.values():
            handle.cancel()
        self._gc_handles.clear()

        pending = []
        for entry in self._entries.values():
            task = entry.in_flight
            if task is not None:
                pending.append(task)
            entry.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

        self._entries.clear()
        logger.info("Query client closed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
