"""
EduTech Query Cache

Client-side cache for backend query results:
- CacheKey: Ordered, structurally compared key ("/api/courses", {filters})
- CacheEntry: Shared fetch lifecycle per key (idle/loading/success/error)
- Subscription: A view's binding to one key at a time
- Mutation: A write that invalidates the keys it affects on success
- QueryClient: The process-wide service that owns all entries

Usage:
    async with QueryClient(default_fetcher=api.fetch_query) as client:
        sub = client.subscribe(("/api/courses", {"page": 1, "limit": 10}))
        state = await sub.wait()

        approve = Mutation(client, approve_course, invalidates=[("/api/courses",)])
        await approve.mutate(course_id)
"""

from edutech.cache.config import (
    QueryCacheConfig,
    QueryOptions,
    RetryConfig,
    get_query_cache_config,
)
from edutech.cache.keys import CacheKey, KeyParams, key_hash, make_key, matches
from edutech.cache.entry import CacheEntry, CacheStats, QueryState, QueryStatus
from edutech.cache.invalidation import InvalidationRequest, InvalidationResult
from edutech.cache.subscription import Subscription
from edutech.cache.query_client import QueryClient
from edutech.cache.mutation import Mutation, MutationState, MutationStatus

__all__ = [
    # Config
    "QueryCacheConfig",
    "QueryOptions",
    "RetryConfig",
    "get_query_cache_config",
    # Keys
    "CacheKey",
    "KeyParams",
    "make_key",
    "matches",
    "key_hash",
    # Entries
    "CacheEntry",
    "CacheStats",
    "QueryState",
    "QueryStatus",
    # Invalidation
    "InvalidationRequest",
    "InvalidationResult",
    # Client
    "Subscription",
    "QueryClient",
    # Mutations
    "Mutation",
    "MutationState",
    "MutationStatus",
]
