"""
Auth Session

Holds the current bearer token pair and tells interested parties when it
changes. The session is the auth collaborator the ApiClient talks to:

- ApiClient reads ``access_token`` for every request
- On HTTP 401 ApiClient calls ``handle_unauthorized()``; the session runs
  its refresher (one refresh at a time) and publishes the new token
- AuthRefreshWatcher invalidates the whole query cache once a token is
  available again, so every view refetches with fresh credentials
"""

import asyncio
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Tuple

from edutech.auth.config import AuthConfig, get_auth_config
from edutech.auth.tokens import decode_token_unverified, extract_user_info, is_token_expired, TokenError

if TYPE_CHECKING:
    from edutech.cache.query_client import QueryClient


logger = logging.getLogger(__name__)

TokenPair = Tuple[str, Optional[str]]
Refresher = Callable[[Optional[str]], Awaitable[Optional[TokenPair]]]
SessionListener = Callable[["AuthSession"], None]


class AuthSession:
    """
    Token holder for one signed-in user.

    ``is_loading`` is True while a refresh is running (and initially when
    constructed with ``loading=True``, e.g. while restoring a stored session).
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        refresh_token: Optional[str] = None,
        refresher: Optional[Refresher] = None,
        config: Optional[AuthConfig] = None,
        loading: bool = False,
    ):
        self.config = config or get_auth_config()
        self._access_token = access_token
        self._refresh_token = refresh_token
        self.refresher = refresher
        self._is_loading = loading
        self._listeners: List[SessionListener] = []
        self._refresh_task: Optional[asyncio.Task] = None
        self._token_event: Optional[asyncio.Event] = None

    # =========================================================================
    # State
    # =========================================================================

    @property
    def access_token(self) -> Optional[str]:
        if not self.config.auth_enabled:
            return None
        return self._access_token

    @property
    def refresh_token(self) -> Optional[str]:
        return self._refresh_token

    @property
    def is_loading(self) -> bool:
        return self._is_loading

    @property
    def is_authenticated(self) -> bool:
        return bool(self.access_token)

    @property
    def is_expired(self) -> bool:
        return is_token_expired(self._access_token, self.config.token_leeway_seconds)

    @property
    def user(self) -> Dict[str, Any]:
        """Identity claims of the current token (empty when signed out)."""
        if not self._access_token:
            return {}
        try:
            return extract_user_info(decode_token_unverified(self._access_token))
        except TokenError:
            return {}

    def add_listener(self, listener: SessionListener) -> Callable[[], None]:
        """Call ``listener(session)`` whenever token or loading state changes."""
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    def _notify(self) -> None:
        if self._access_token and self._token_event is not None:
            self._token_event.set()
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("Auth session listener failed")

    # =========================================================================
    # Mutation
    # =========================================================================

    def set_tokens(
        self,
        access_token: Optional[str],
        refresh_token: Optional[str] = None,
    ) -> None:
        """Store a new token pair (login or refresh) and stop loading."""
        self._access_token = access_token
        if refresh_token is not None:
            self._refresh_token = refresh_token
        self._is_loading = False
        logger.info("Auth tokens updated")
        self._notify()

    def set_loading(self, loading: bool) -> None:
        if loading == self._is_loading:
            return
        self._is_loading = loading
        self._notify()

    def clear(self) -> None:
        """Sign out."""
        self._access_token = None
        self._refresh_token = None
        self._is_loading = False
        if self._token_event is not None:
            self._token_event.clear()
        logger.info("Auth session cleared")
        self._notify()

    async def wait_for_token(self, timeout: Optional[float] = None) -> Optional[str]:
        """Wait until an access token is available (or timeout)."""
        if self.access_token:
            return self.access_token
        if self._token_event is None:
            self._token_event = asyncio.Event()
        try:
            await asyncio.wait_for(self._token_event.wait(), timeout)
        except asyncio.TimeoutError:
            return None
        return self.access_token

    # =========================================================================
    # Refresh
    # =========================================================================

    async def _refresh(self) -> bool:
        self.set_loading(True)
        try:
            pair = await self.refresher(self._refresh_token)
        except Exception as e:
            logger.warning(f"Token refresh failed: {e}")
            self.clear()
            return False

        if not pair or not pair[0]:
            logger.warning("Token refresh returned no access token, signing out")
            self.clear()
            return False

        self.set_tokens(pair[0], pair[1])
        return True

    async def handle_unauthorized(self) -> bool:
        """
        React to an HTTP 401.

        Runs the refresher once even when many requests fail together.
        Returns True when a new token was obtained.
        """
        if self.refresher is None or not self._refresh_token:
            logger.info("Received 401 without a way to refresh, signing out")
            self.clear()
            return False

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.get_running_loop().create_task(self._refresh())
        return await asyncio.shield(self._refresh_task)


class AuthRefreshWatcher:
    """
    Invalidate every cache entry once a token is (again) available.

    Usage:
        with AuthRefreshWatcher(session, query_client):
            ...
    """

    def __init__(self, session: AuthSession, client: "QueryClient"):
        self._session = session
        self._client = client
        self._remove: Optional[Callable[[], None]] = None
        self._last_token: Optional[str] = session.access_token

    def _on_change(self, session: AuthSession) -> None:
        token = session.access_token
        if session.is_loading or not token or token == self._last_token:
            return
        self._last_token = token
        self._client.invalidate(source="auth:refresh")

    def start(self) -> "AuthRefreshWatcher":
        if self._remove is None:
            self._remove = self._session.add_listener(self._on_change)
        return self

    def stop(self) -> None:
        if self._remove is not None:
            self._remove()
            self._remove = None

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
