"""
Cache Invalidation

Invalidation requests mark cache entries stale with minimal scope.
Principle: Invalidate as narrowly as possible.

Requests come from two places:
- Mutations, after their write succeeded
- The realtime bridge, when the server reports an out-of-band change

A request is ephemeral: it has no identity beyond the moment it is applied.
"""

from dataclasses import dataclass, field
from typing import Iterable, List, Tuple

from edutech.cache.keys import CacheKey, make_key


@dataclass(frozen=True)
class InvalidationRequest:
    """
    A set of keys or key prefixes to mark stale.

    An empty ``keys`` tuple addresses every entry (used after a token
    refresh so all views refetch with the new credentials).
    """
    keys: Tuple[CacheKey, ...] = ()
    exact: bool = False
    refetch: bool = True
    source: str = "manual"

    @classmethod
    def for_keys(
        cls,
        keys: Iterable,
        exact: bool = False,
        source: str = "manual",
    ) -> "InvalidationRequest":
        """Build a request, normalising each key."""
        return cls(
            keys=tuple(make_key(key) for key in keys),
            exact=exact,
            source=source,
        )

    @classmethod
    def everything(cls, source: str = "manual") -> "InvalidationRequest":
        return cls(keys=(), source=source)

    @property
    def is_global(self) -> bool:
        return not self.keys


@dataclass
class InvalidationResult:
    """Result of a cache invalidation operation."""
    source: str
    entries_marked: int = 0
    refetches_started: int = 0
    duration_ms: float = 0.0
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors
