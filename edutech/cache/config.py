"""
Query Cache Configuration

Centralized configuration for the client-side query cache.

Defaults mirror how the LMS dashboards use their cache: data stays fresh
until something invalidates it, failed queries are not retried, and idle
entries are evicted a few minutes after the last view lets go of them.
"""

import math
import os
from dataclasses import dataclass, field, replace
from functools import lru_cache
from typing import Optional


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default).strip().lower()
    if raw in ("inf", "infinity", "none", ""):
        return math.inf
    return float(raw)


@dataclass(frozen=True)
class RetryConfig:
    """Configuration for retry behavior."""
    max_retries: int = 0
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Backoff before retry number ``attempt`` (0-based)."""
        return min(
            self.initial_delay * (self.exponential_base ** attempt),
            self.max_delay,
        )


@dataclass
class QueryCacheConfig:
    """
    Main cache configuration.

    Settings can be overridden via environment variables:
    - QUERY_GC_TIME: Seconds an unobserved entry is kept before eviction
    - QUERY_STALE_TIME: Seconds before fetched data counts as stale ("inf" = never)
    - QUERY_RETRY: Retries for a failing query before it settles in error
    - QUERY_REFETCH_ON_FOCUS: Refetch stale entries when the app regains focus
    - REALTIME_DEBOUNCE: Seconds to coalesce bursts of realtime events
    """

    gc_time: float = field(default_factory=lambda: float(os.getenv(
        "QUERY_GC_TIME",
        "300"
    )))

    stale_time: float = field(default_factory=lambda: _env_float(
        "QUERY_STALE_TIME",
        "inf"
    ))

    retry: int = field(default_factory=lambda: int(os.getenv(
        "QUERY_RETRY",
        "0"
    )))

    retry_initial_delay: float = field(default_factory=lambda: float(os.getenv(
        "QUERY_RETRY_DELAY",
        "1.0"
    )))

    refetch_on_focus: bool = field(default_factory=lambda: os.getenv(
        "QUERY_REFETCH_ON_FOCUS",
        "false"
    ).lower() == "true")

    realtime_debounce: float = field(default_factory=lambda: float(os.getenv(
        "REALTIME_DEBOUNCE",
        "0.8"
    )))

    def default_options(self) -> "QueryOptions":
        """Query options every subscription starts from."""
        return QueryOptions(
            stale_time=self.stale_time,
            retry=RetryConfig(
                max_retries=self.retry,
                initial_delay=self.retry_initial_delay,
            ),
            refetch_on_focus=self.refetch_on_focus,
        )


@dataclass(frozen=True)
class QueryOptions:
    """Per-subscription query behaviour."""
    stale_time: float = math.inf
    retry: RetryConfig = field(default_factory=RetryConfig)
    refetch_on_focus: bool = False
    refetch_interval: Optional[float] = None

    def merge(self, **overrides) -> "QueryOptions":
        """Copy with the given non-None fields replaced."""
        changes = {k: v for k, v in overrides.items() if v is not None}
        if isinstance(changes.get("retry"), int):
            changes["retry"] = replace(self.retry, max_retries=changes["retry"])
        return replace(self, **changes)


@lru_cache(maxsize=1)
def get_query_cache_config() -> QueryCacheConfig:
    """Get singleton query cache configuration."""
    return QueryCacheConfig()
