"""
EduTech API Client

Async HTTP client with:
- Connection pooling
- Bearer token injection from the auth session
- Error bodies surfaced as ApiError(message) for views to display
- 401 hand-off to the auth session (the client itself never retries)
- Request/response logging
"""

import logging
from typing import Any, Dict, Optional, Type

import httpx
from pydantic import BaseModel

from edutech.api.schemas import ErrorBody, decode_response
from edutech.auth.config import get_auth_config
from edutech.auth.session import AuthSession, TokenPair
from edutech.cache.keys import CacheKey
from edutech.exceptions import ApiError, AuthExpiredError, RequestTimeoutError, SchemaError
from edutech.utils.config import get_settings
from edutech.utils.urls import build_api_url, build_query_path


logger = logging.getLogger(__name__)


def error_message(body: Any, status_code: int) -> str:
    """The server's ``message`` field, or a generic fallback."""
    if isinstance(body, dict):
        try:
            message = decode_response(ErrorBody, body).message
        except SchemaError:
            message = None
        if message:
            return message
    return f"Request failed with status {status_code}"


class ApiClient:
    """
    Async client for the EduTech backend.

    Usage:
        async with ApiClient(auth=session) as api:
            courses = await api.get("/api/courses", params={"page": 1}, schema=CourseList)
            await api.put("/api/admin/users/u1/status", {"status": "suspended"})
    """

    def __init__(
        self,
        auth: Optional[AuthSession] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        max_connections: int = 20,
    ):
        """
        Initialize API client.

        Args:
            auth: Session providing the bearer token (unauthenticated if None)
            base_url: Backend base URL (defaults to Settings.API_URL)
            timeout: Request timeout in seconds (defaults to Settings.REQUEST_TIMEOUT)
            transport: Custom httpx transport (tests use httpx.MockTransport)
            max_connections: Maximum concurrent connections
        """
        settings = get_settings()
        self.auth = auth
        self.base_url = settings.API_URL if base_url is None else base_url
        self.timeout = timeout or settings.REQUEST_TIMEOUT

        self._client = httpx.AsyncClient(
            headers={"Accept": "application/json"},
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections // 2,
            ),
            timeout=httpx.Timeout(self.timeout),
            transport=transport,
        )

        self._closed = False

    def _headers(self, headers: Optional[Dict[str, str]], authenticated: bool) -> Dict[str, str]:
        merged = dict(headers or {})
        token = self.auth.access_token if (authenticated and self.auth is not None) else None
        if token:
            merged["Authorization"] = f"Bearer {token}"
        return merged

    @staticmethod
    def _parse_body(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    async def request(
        self,
        method: str,
        endpoint: str,
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
        schema: Optional[Type[BaseModel]] = None,
        authenticated: bool = True,
    ) -> Any:
        """
        Make an HTTP request to the backend.

        Args:
            method: HTTP method
            endpoint: API path (e.g., "/api/courses") or absolute URL
            json: JSON body
            params: Query string parameters
            headers: Extra headers
            schema: Pydantic model to decode the response into
            authenticated: Attach the bearer token when one is available

        Returns:
            Decoded JSON (or schema instance); None for empty bodies

        Raises:
            AuthExpiredError: On HTTP 401
            RequestTimeoutError: When the request times out
            ApiError: On any other non-2xx response or transport error
        """
        if self._closed:
            raise ApiError("Client is closed")

        url = build_api_url(endpoint, self.base_url)
        logger.debug(f"{method} {url}")

        try:
            response = await self._client.request(
                method,
                url,
                json=json,
                params=params,
                headers=self._headers(headers, authenticated),
            )
        except httpx.TimeoutException as e:
            raise RequestTimeoutError(f"Request timed out: {e}") from e
        except httpx.HTTPError as e:
            raise ApiError(f"HTTP error: {e}") from e

        body = self._parse_body(response)

        if response.status_code == 401:
            logger.info(f"{method} {url} returned 401")
            if authenticated and self.auth is not None:
                await self.auth.handle_unauthorized()
            raise AuthExpiredError(error_message(body, 401), status_code=401, response=body)

        if not response.is_success:
            logger.warning(f"{method} {url} failed: {response.status_code}")
            raise ApiError(
                error_message(body, response.status_code),
                status_code=response.status_code,
                response=body,
            )

        if schema is not None:
            return decode_response(schema, body)
        return body

    async def get(self, endpoint: str, params: Optional[Dict[str, Any]] = None, **kwargs) -> Any:
        return await self.request("GET", endpoint, params=params, **kwargs)

    async def post(self, endpoint: str, data: Any = None, **kwargs) -> Any:
        return await self.request("POST", endpoint, json=data, **kwargs)

    async def put(self, endpoint: str, data: Any = None, **kwargs) -> Any:
        return await self.request("PUT", endpoint, json=data, **kwargs)

    async def patch(self, endpoint: str, data: Any = None, **kwargs) -> Any:
        return await self.request("PATCH", endpoint, json=data, **kwargs)

    async def delete(self, endpoint: str, **kwargs) -> Any:
        return await self.request("DELETE", endpoint, **kwargs)

    # ========================================================================
    # QUERY CACHE INTEGRATION
    # ========================================================================

    async def fetch_query(self, key: CacheKey, schema: Optional[Type[BaseModel]] = None) -> Any:
        """
        Default query fetcher: GET the path a cache key describes.

        ("/api/courses", {"page": 2}) -> GET /api/courses?page=2
        """
        path, params = build_query_path(key)
        return await self.get(path, params=params or None, schema=schema)

    @staticmethod
    def decode(model: Type[BaseModel], payload: Any) -> BaseModel:
        """Validate an already-fetched payload into ``model``."""
        return decode_response(model, payload)

    def query_fetcher(self, schema: Optional[Type[BaseModel]] = None):
        """Fetcher for QueryClient.subscribe that decodes into ``schema``."""
        async def fetcher(key: CacheKey) -> Any:
            return await self.fetch_query(key, schema=schema)
        return fetcher

    async def refresh_tokens(self, refresh_token: Optional[str]) -> Optional[TokenPair]:
        """
        Exchange a refresh token for a new token pair.

        Intended as the AuthSession refresher. Returns None when the backend
        rejects the refresh token.
        """
        if not refresh_token:
            return None

        try:
            data = await self.post(
                get_auth_config().refresh_endpoint,
                {"refreshToken": refresh_token},
                headers={"Cache-Control": "no-cache"},
                authenticated=False,
            )
        except ApiError as e:
            logger.warning(f"Token refresh rejected: {e}")
            return None

        if not isinstance(data, dict) or not data.get("accessToken"):
            return None
        return data["accessToken"], data.get("refreshToken")

    async def close(self):
        """Close the HTTP client."""
        if not self._closed:
            await self._client.aclose()
            self._closed = True

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()
