"""
Pytest Configuration and Shared Fixtures

Provides common fixtures and configuration for all test modules.
"""

import asyncio
import json
import math
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
import pytest

from edutech.api.client import ApiClient
from edutech.auth.config import AuthConfig, get_auth_config
from edutech.cache.config import QueryCacheConfig, get_query_cache_config
from edutech.cache.keys import CacheKey
from edutech.cache.query_client import QueryClient
from edutech.realtime.bridge import RealtimeInvalidationBridge
from edutech.realtime.transport import LocalTransport
from edutech.utils.config import get_settings


BASE_URL = "http://api.test"


# ============================================================================
# Configuration
# ============================================================================

@pytest.fixture(autouse=True)
def clear_config_caches():
    """Every test reads configuration fresh from its own environment."""
    get_settings.cache_clear()
    get_query_cache_config.cache_clear()
    get_auth_config.cache_clear()
    yield
    get_settings.cache_clear()
    get_query_cache_config.cache_clear()
    get_auth_config.cache_clear()


@pytest.fixture
def cache_config() -> QueryCacheConfig:
    """Cache configuration with fast retries and no realtime debounce."""
    return QueryCacheConfig(
        gc_time=300.0,
        stale_time=math.inf,
        retry=0,
        retry_initial_delay=0.01,
        refetch_on_focus=False,
        realtime_debounce=0.0,
    )


@pytest.fixture
def auth_config() -> AuthConfig:
    return AuthConfig(
        auth_enabled=True,
        token_leeway_seconds=30,
        refresh_endpoint="/api/auth/refresh",
    )


# ============================================================================
# Fetchers
# ============================================================================

class CountingFetcher:
    """Fetcher that answers immediately and records every call."""

    def __init__(self, respond: Optional[Callable[[CacheKey, int], Any]] = None):
        self.calls: List[CacheKey] = []
        self._respond = respond or (lambda key, n: {"key": key, "n": n})

    async def __call__(self, key: CacheKey) -> Any:
        self.calls.append(key)
        return self._respond(key, len(self.calls))

    @property
    def count(self) -> int:
        return len(self.calls)


class ControlledFetcher:
    """Fetcher whose responses the test releases explicitly."""

    def __init__(self):
        self.pending: List[Tuple[CacheKey, asyncio.Future]] = []

    async def __call__(self, key: CacheKey) -> Any:
        future = asyncio.get_running_loop().create_future()
        self.pending.append((key, future))
        return await future

    @property
    def count(self) -> int:
        return len(self.pending)

    def resolve(self, index: int, value: Any) -> bool:
        future = self.pending[index][1]
        if future.done():
            return False
        future.set_result(value)
        return True

    def fail(self, index: int, error: BaseException) -> bool:
        future = self.pending[index][1]
        if future.done():
            return False
        future.set_exception(error)
        return True


async def settle(rounds: int = 5) -> None:
    """Let scheduled tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def counting_fetcher() -> CountingFetcher:
    return CountingFetcher()


@pytest.fixture
def controlled_fetcher() -> ControlledFetcher:
    return ControlledFetcher()


# ============================================================================
# Services
# ============================================================================

@pytest.fixture
async def query_client(cache_config):
    client = QueryClient(config=cache_config)
    yield client
    await client.close()


@pytest.fixture
def transport() -> LocalTransport:
    return LocalTransport()


@pytest.fixture
def bridge(query_client, transport) -> RealtimeInvalidationBridge:
    return RealtimeInvalidationBridge(query_client, transport)


class FakeBackend:
    """
    In-memory stand-in for the EduTech REST API, served through
    httpx.MockTransport.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.routes: Dict[Tuple[str, str], Callable[[httpx.Request], httpx.Response]] = {}

    def route(self, method: str, path: str, status: int = 200, body: Any = None):
        def responder(request: httpx.Request) -> httpx.Response:
            return httpx.Response(status, json=body) if body is not None else httpx.Response(status)
        self.routes[(method, path)] = responder

    def route_handler(self, method: str, path: str, handler: Callable[[httpx.Request], httpx.Response]):
        self.routes[(method, path)] = handler

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"message": f"No route for {request.url.path}"})
        return handler(request)

    def calls(self, method: str, path: str) -> List[httpx.Request]:
        return [r for r in self.requests if r.method == method and r.url.path == path]

    @staticmethod
    def json_body(request: httpx.Request) -> Any:
        return json.loads(request.content) if request.content else None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend()


@pytest.fixture
async def api(backend):
    client = ApiClient(base_url=BASE_URL, transport=backend.transport, timeout=5.0)
    yield client
    await client.close()


def course_page(page: int = 1, limit: int = 10, total: int = 25, prefix: str = "c") -> Dict[str, Any]:
    """Courses response body as the backend returns it."""
    start = (page - 1) * limit
    count = max(0, min(limit, total - start))
    return {
        "courses": [
            {
                "_id": f"{prefix}{start + i}",
                "title": f"Course {start + i}",
                "enrollmentCount": start + i,
                "isPublished": True,
            }
            for i in range(count)
        ],
        "pagination": {"page": page, "limit": limit, "total": total},
    }
