"""
Views

A View is the data side of one screen: the query subscriptions, realtime
bindings and mutations it owns while it is mounted. Everything acquired
through ``query()`` or ``realtime()`` is released on ``unmount()``.

Queries are gated on the auth session: they stay disabled while no token
is available (or a refresh is running) and start fetching as soon as one
arrives.
"""

import logging
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Iterable, List, Optional, Type

from pydantic import BaseModel

from edutech.api.client import ApiClient
from edutech.auth.session import AuthSession
from edutech.cache.entry import Fetcher
from edutech.cache.mutation import KeysSpec, Mutation, Writer
from edutech.cache.query_client import QueryClient
from edutech.cache.subscription import Subscription
from edutech.exceptions import ApiError, EdutechError
from edutech.persistence.preferences import MemoryPreferenceStore
from edutech.realtime.bridge import RealtimeBinding, RealtimeInvalidationBridge

logger = logging.getLogger(__name__)


@dataclass
class Toast:
    """User-facing notification raised by a mutation outcome."""
    title: str
    description: str
    variant: str = "default"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


def describe_error(error: BaseException, fallback: Optional[str] = None) -> str:
    """
    Text shown for a failed request.

    The server's ``message`` wins; otherwise ``fallback`` (when given),
    then the error's own message.
    """
    if isinstance(error, ApiError):
        body = error.response
        if isinstance(body, dict) and body.get("message"):
            return str(body["message"])
        if fallback:
            return fallback
    message = getattr(error, "message", None) or str(error)
    return message or fallback or "Something went wrong"


class View:
    """
    Base class for screen data.

    Subclasses build their queries and bindings in ``on_mount``.

    Usage:
        async with CourseCatalogView(client, api, auth=session) as view:
            await view.courses.wait()
    """

    def __init__(
        self,
        client: QueryClient,
        api: Optional[ApiClient] = None,
        auth: Optional[AuthSession] = None,
        bridge: Optional[RealtimeInvalidationBridge] = None,
        preferences: Optional[MemoryPreferenceStore] = None,
    ):
        self.client = client
        self.api = api
        self.auth = auth
        self.bridge = bridge
        self.preferences = preferences if preferences is not None else MemoryPreferenceStore()
        self.toasts: List[Toast] = []
        self._gated: List[Subscription] = []
        self._stack: Optional[AsyncExitStack] = None

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def mounted(self) -> bool:
        return self._stack is not None

    @property
    def auth_ready(self) -> bool:
        """Queries may run: a token is available and no refresh is running."""
        if self.auth is None:
            return True
        return bool(self.auth.access_token) and not self.auth.is_loading

    async def mount(self) -> "View":
        if self._stack is not None:
            return self

        stack = AsyncExitStack()
        await stack.__aenter__()
        self._stack = stack
        try:
            if self.auth is not None:
                stack.callback(self.auth.add_listener(self._on_auth_change))
            stack.callback(self._gated.clear)
            await self.on_mount(stack)
        except BaseException:
            self._stack = None
            await stack.aclose()
            raise

        logger.debug(f"{type(self).__name__} mounted")
        return self

    async def unmount(self) -> None:
        stack, self._stack = self._stack, None
        if stack is None:
            return
        await stack.aclose()
        logger.debug(f"{type(self).__name__} unmounted")

    async def on_mount(self, stack: AsyncExitStack) -> None:
        """Create subscriptions and bindings; override in subclasses."""

    async def __aenter__(self):
        return await self.mount()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.unmount()

    def _on_auth_change(self, session: AuthSession) -> None:
        ready = self.auth_ready
        for subscription in list(self._gated):
            if not subscription.closed:
                subscription.set_enabled(ready)

    # =========================================================================
    # Resources
    # =========================================================================

    def _require_mounted(self) -> AsyncExitStack:
        if self._stack is None:
            raise EdutechError(f"{type(self).__name__} is not mounted")
        return self._stack

    def query(
        self,
        key: Any,
        fetcher: Optional[Fetcher] = None,
        schema: Optional[Type[BaseModel]] = None,
        **options,
    ) -> Subscription:
        """
        Subscribe to ``key`` for as long as the view is mounted.

        Without an explicit fetcher the key is fetched through the API
        client (decoded into ``schema`` when given).
        """
        stack = self._require_mounted()
        if fetcher is None and self.api is not None:
            fetcher = self.api.query_fetcher(schema)

        subscription = self.client.subscribe(
            key,
            fetcher,
            enabled=self.auth_ready,
            **options,
        )
        stack.callback(subscription.close)
        self._gated.append(subscription)
        return subscription

    async def realtime(
        self,
        keys: Iterable[Any],
        topics: Iterable[str] = (),
        events: Iterable[str] = (),
        debounce: Optional[float] = None,
    ) -> Optional[RealtimeBinding]:
        """Invalidate ``keys`` on realtime events while mounted (no-op without a bridge)."""
        stack = self._require_mounted()
        if self.bridge is None:
            return None
        return await stack.enter_async_context(
            self.bridge.bind(keys, topics=topics, events=events, debounce=debounce)
        )

    def mutation(
        self,
        writer: Writer,
        invalidates: KeysSpec = (),
        *,
        success_message: Optional[str] = None,
        error_message: Optional[str] = None,
        validate: Optional[Callable[..., None]] = None,
        name: Optional[str] = None,
        **kwargs,
    ) -> Mutation:
        """Mutation that reports its outcome as a toast."""

        def on_success(data, *args, **kw):
            if success_message:
                self.notify("Success", success_message)

        def on_error(error, *args, **kw):
            self.notify("Error", describe_error(error, error_message), variant="destructive")

        return Mutation(
            self.client,
            writer,
            invalidates,
            validate=validate,
            on_success=on_success,
            on_error=on_error,
            name=name,
            **kwargs,
        )

    def notify(self, title: str, description: str, variant: str = "default") -> Toast:
        toast = Toast(title=title, description=description, variant=variant)
        self.toasts.append(toast)
        return toast

    def _require_api(self) -> ApiClient:
        if self.api is None:
            raise EdutechError(f"{type(self).__name__} needs an ApiClient for writes")
        return self.api
