"""
Cache Entry

One entry per cache key, shared by every subscription to that key.

Lifecycle:
    IDLE -> LOADING -> SUCCESS | ERROR
    SUCCESS/ERROR -> LOADING on key change, invalidation, enable toggle,
    focus or polling refetch.

Invariants:
- At most one fetch is in flight per entry; concurrent requests join it.
- Every fetch carries the entry's epoch at start. A completion whose epoch
  is no longer current (cancelled, overwritten by set_data) is discarded.
- An invalidation that arrives while a fetch is in flight queues exactly one
  trailing fetch, started when the in-flight one settles.
"""

import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Set

from edutech.cache.config import QueryOptions
from edutech.cache.keys import CacheKey


logger = logging.getLogger(__name__)

Fetcher = Callable[[CacheKey], Awaitable[Any]]
EntryListener = Callable[["CacheEntry"], None]


class QueryStatus(str, Enum):
    """Fetch lifecycle status of a cache entry."""
    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class QueryState:
    """Immutable snapshot of an entry, handed to views."""
    status: QueryStatus = QueryStatus.IDLE
    data: Any = None
    error: Optional[BaseException] = None
    last_fetched_at: Optional[datetime] = None
    is_fetching: bool = False
    is_stale: bool = True
    fetch_count: int = 0

    @property
    def is_loading(self) -> bool:
        return self.status == QueryStatus.LOADING

    @property
    def is_success(self) -> bool:
        return self.status == QueryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status == QueryStatus.ERROR

    @property
    def error_message(self) -> Optional[str]:
        """Message a view shows in its toast/alert."""
        if self.error is None:
            return None
        return getattr(self.error, "message", None) or str(self.error) or "Something went wrong"


@dataclass
class CacheStats:
    """Cache operation statistics."""
    fetches: int = 0
    deduplicated: int = 0
    discarded: int = 0
    failures: int = 0
    retries: int = 0
    cancelled: int = 0
    invalidations: int = 0
    evictions: int = 0
    latency_samples: List[float] = field(default_factory=list)

    @property
    def avg_latency_ms(self) -> float:
        if not self.latency_samples:
            return 0.0
        return sum(self.latency_samples[-100:]) / len(self.latency_samples[-100:]) * 1000

    def record_latency(self, seconds: float):
        """Record a latency sample."""
        self.latency_samples.append(seconds)
        # Keep only last 1000 samples
        if len(self.latency_samples) > 1000:
            self.latency_samples = self.latency_samples[-1000:]


class CacheEntry:
    """
    Cached result of one query key plus its fetch lifecycle.

    Entries are created and evicted by the QueryClient; views only see them
    through Subscriptions.
    """

    def __init__(
        self,
        key: CacheKey,
        fetcher: Fetcher,
        options: Optional[QueryOptions] = None,
        stats: Optional[CacheStats] = None,
    ):
        self.key = key
        self.fetcher = fetcher
        self.options = options or QueryOptions()
        self._stats = stats or CacheStats()

        self._status = QueryStatus.IDLE
        self._data: Any = None
        self._has_data = False
        self._error: Optional[BaseException] = None
        self._updated_at: Optional[float] = None
        self.last_fetched_at: Optional[datetime] = None
        self._invalidated = False
        self._refetch_pending = False
        self._fetch_count = 0

        self._task: Optional[asyncio.Task] = None
        self._epoch = 0
        self._previous_status = QueryStatus.IDLE

        self._subscribers: Set[Any] = set()
        self._listeners: List[EntryListener] = []

    def __repr__(self):
        return f"<CacheEntry {self.key!r} {self._status.value}>"

    # =========================================================================
    # State
    # =========================================================================

    @property
    def status(self) -> QueryStatus:
        return self._status

    @property
    def data(self) -> Any:
        return self._data

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    @property
    def epoch(self) -> int:
        return self._epoch

    @property
    def is_fetching(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def in_flight(self) -> Optional[asyncio.Task]:
        return self._task if self.is_fetching else None

    def is_stale(self, stale_time: Optional[float] = None) -> bool:
        """Whether the data should be refetched on next use."""
        if self._invalidated or not self._has_data or self._updated_at is None:
            return True
        if stale_time is None:
            stale_time = self.options.stale_time
        if math.isinf(stale_time):
            return False
        return time.monotonic() - self._updated_at >= stale_time

    @property
    def state(self) -> QueryState:
        return QueryState(
            status=self._status,
            data=self._data,
            error=self._error,
            last_fetched_at=self.last_fetched_at,
            is_fetching=self.is_fetching,
            is_stale=self.is_stale(),
            fetch_count=self._fetch_count,
        )

    # =========================================================================
    # Subscribers and listeners
    # =========================================================================

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def has_active_subscribers(self) -> bool:
        """At least one attached subscription is enabled."""
        return any(getattr(sub, "enabled", True) for sub in self._subscribers)

    def attach(self, subscriber: Any) -> None:
        self._subscribers.add(subscriber)

    def detach(self, subscriber: Any) -> int:
        """Remove a subscriber; returns how many remain."""
        self._subscribers.discard(subscriber)
        return len(self._subscribers)

    def add_listener(self, listener: EntryListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception(f"Listener failed for {self.key!r}")

    # =========================================================================
    # Fetch lifecycle
    # =========================================================================

    def fetch(self) -> asyncio.Task:
        """
        Start a fetch, or join the one already in flight.

        Returns the task; once it finishes, read the outcome from ``state``.
        """
        if self.is_fetching:
            self._stats.deduplicated += 1
            logger.debug(f"Joining in-flight fetch for {self.key!r}")
            return self._task

        self._epoch += 1
        self._previous_status = self._status
        self._status = QueryStatus.LOADING
        self._stats.fetches += 1
        self._fetch_count += 1
        self._task = asyncio.get_running_loop().create_task(self._run(self._epoch))
        logger.debug(f"Fetch started for {self.key!r} (epoch {self._epoch})")
        self._notify()
        return self._task

    async def _run(self, epoch: int) -> None:
        retry = self.options.retry
        attempt = 0
        start_time = time.time()

        try:
            while True:
                try:
                    data = await self.fetcher(self.key)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    if attempt < retry.max_retries and epoch == self._epoch:
                        delay = retry.delay_for(attempt)
                        attempt += 1
                        self._stats.retries += 1
                        logger.warning(
                            f"Fetch failed for {self.key!r} "
                            f"(attempt {attempt}/{retry.max_retries + 1}): {e}. "
                            f"Retrying in {delay}s..."
                        )
                        await asyncio.sleep(delay)
                        continue

                    if epoch != self._epoch:
                        self._discard(epoch)
                        return

                    self._stats.failures += 1
                    self._status = QueryStatus.ERROR
                    self._error = e
                    logger.warning(f"Fetch failed for {self.key!r}: {e}")
                    return

                if epoch != self._epoch:
                    self._discard(epoch)
                    return

                self._stats.record_latency(time.time() - start_time)
                self._set_data(data)
                logger.debug(f"Fetch succeeded for {self.key!r} (epoch {epoch})")
                return
        finally:
            if self._task is asyncio.current_task():
                self._task = None
                if epoch == self._epoch:
                    self._settle()

    def _settle(self) -> None:
        if self._refetch_pending:
            self._refetch_pending = False
            self._invalidated = True
            if self.has_active_subscribers():
                logger.debug(f"Trailing fetch for {self.key!r} after invalidation")
                self.fetch()
                return
        self._notify()

    def _discard(self, epoch: int) -> None:
        self._stats.discarded += 1
        logger.debug(
            f"Discarded stale response for {self.key!r} "
            f"(epoch {epoch}, current {self._epoch})"
        )

    def _set_data(self, data: Any) -> None:
        self._data = data
        self._has_data = True
        self._error = None
        self._status = QueryStatus.SUCCESS
        self._invalidated = False
        self._updated_at = time.monotonic()
        self.last_fetched_at = datetime.now(timezone.utc)

    def set_data(self, data: Any) -> None:
        """
        Write data directly (optimistic update / realtime patch).

        Bumps the epoch and cancels any in-flight fetch so an older response
        cannot overwrite what was written. A fetch that was refreshing
        invalidated data is restarted after the write, and the entry stays
        stale until it lands.
        """
        self._epoch += 1
        restart = False
        if self.is_fetching:
            restart = self._invalidated or self._refetch_pending
            self._task.cancel()
            self._task = None
        self._refetch_pending = False
        self._set_data(data)

        if restart:
            self._invalidated = True
            if self.has_active_subscribers():
                logger.debug(f"Restarting invalidated fetch for {self.key!r} after write")
                self.fetch()
                return
        self._notify()

    def cancel(self) -> bool:
        """
        Cancel the in-flight fetch and revert to the pre-fetch status.

        The entry stays stale so the next subscription refetches.
        """
        if not self.is_fetching:
            return False

        self._epoch += 1
        self._task.cancel()
        self._task = None
        self._status = self._previous_status
        self._invalidated = True
        self._refetch_pending = False
        self._stats.cancelled += 1
        logger.debug(f"Cancelled fetch for {self.key!r}")
        self._notify()
        return True

    def invalidate(self, refetch: bool = True) -> bool:
        """
        Mark the entry stale.

        Refetches immediately when an enabled subscriber is attached and no
        fetch is in flight. An in-flight fetch may have started before the
        change that caused the invalidation, so one trailing fetch is queued
        behind it instead. Returns True if a new fetch was started now.
        """
        self._invalidated = True
        self._stats.invalidations += 1

        if self.is_fetching:
            if refetch:
                self._refetch_pending = True
            self._notify()
            return False
        if refetch and self.has_active_subscribers():
            self.fetch()
            return True

        self._notify()
        return False

    def reset(self) -> None:
        """Drop data and return to IDLE."""
        self._epoch += 1
        if self.is_fetching:
            self._task.cancel()
            self._task = None
        self._status = QueryStatus.IDLE
        self._data = None
        self._has_data = False
        self._error = None
        self._updated_at = None
        self._invalidated = False
        self._refetch_pending = False
        self._notify()
