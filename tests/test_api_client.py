"""
Tests for the API client.

These tests verify:
- Bearer token injection and the unauthenticated path
- Error bodies surfaced as ApiError(message)
- 401 handed to the auth session, then raised as AuthExpiredError
- Timeouts and transport failures mapped to client errors
- Response decoding and the query cache fetcher
- Token refresh exchange
"""

import httpx
import pytest

from edutech.api.client import ApiClient, error_message
from edutech.api.schemas import CourseList, ErrorBody
from edutech.auth.config import AuthConfig
from edutech.auth.session import AuthSession
from edutech.exceptions import ApiError, AuthExpiredError, RequestTimeoutError, SchemaError

from conftest import BASE_URL, course_page


def make_client(backend, session=None):
    return ApiClient(auth=session, base_url=BASE_URL, transport=backend.transport, timeout=5.0)


# =============================================================================
# error_message
# =============================================================================

class TestErrorMessage:
    """Test error body interpretation."""

    def test_server_message_wins(self):
        assert error_message({"message": "Email already in use"}, 409) == "Email already in use"

    def test_fallback(self):
        assert error_message({"error": "x"}, 500) == "Request failed with status 500"
        assert error_message("Bad Gateway", 502) == "Request failed with status 502"
        assert error_message(None, 404) == "Request failed with status 404"

    def test_malformed_message_falls_back(self):
        """Bodies that do not decode as an error body use the fallback."""
        assert error_message({"message": ""}, 400) == "Request failed with status 400"
        assert error_message({"message": ["a", "b"]}, 422) == "Request failed with status 422"

    def test_error_body_keeps_extra_fields(self):
        body = ErrorBody.model_validate({"message": "Invalid role", "error": "Bad Request", "field": "role"})
        assert body.message == "Invalid role"
        assert body.error == "Bad Request"
        assert body.model_extra == {"field": "role"}
        assert error_message(body.model_dump(), 400) == "Invalid role"


# =============================================================================
# REQUESTS
# =============================================================================

@pytest.mark.asyncio
class TestRequests:
    """Test request building and response handling."""

    async def test_bearer_token_attached(self, backend, auth_config):
        backend.route("GET", "/api/enrollments", body={"enrollments": []})
        session = AuthSession("tok-1", "ref-1", config=auth_config)

        async with make_client(backend, session) as api:
            await api.get("/api/enrollments")

        request = backend.calls("GET", "/api/enrollments")[0]
        assert request.headers["Authorization"] == "Bearer tok-1"
        assert request.headers["Accept"] == "application/json"

    async def test_no_token_without_session(self, api, backend):
        backend.route("GET", "/api/courses", body=course_page())

        await api.get("/api/courses")

        assert "Authorization" not in backend.calls("GET", "/api/courses")[0].headers

    async def test_auth_disabled_sends_no_token(self, backend):
        backend.route("GET", "/api/courses", body=course_page())
        session = AuthSession("tok-1", config=AuthConfig(auth_enabled=False))

        async with make_client(backend, session) as api:
            await api.get("/api/courses")

        assert "Authorization" not in backend.calls("GET", "/api/courses")[0].headers

    async def test_unauthenticated_request_skips_token(self, backend, auth_config):
        backend.route("POST", "/api/auth/login", body={"ok": True})
        session = AuthSession("tok-1", config=auth_config)

        async with make_client(backend, session) as api:
            await api.post("/api/auth/login", {"email": "a@b.c"}, authenticated=False)

        assert "Authorization" not in backend.calls("POST", "/api/auth/login")[0].headers

    async def test_url_joined_to_base(self, api, backend):
        backend.route("GET", "/api/courses", body=course_page())

        await api.get("api/courses", params={"page": 2})

        request = backend.calls("GET", "/api/courses")[0]
        assert str(request.url) == "http://api.test/api/courses?page=2"

    async def test_absolute_url_passthrough(self, api, backend):
        backend.route("GET", "/export.csv", body={"ok": True})

        await api.get("https://files.example/export.csv")

        assert backend.requests[0].url.host == "files.example"

    async def test_json_body_sent(self, api, backend):
        backend.route("PUT", "/api/admin/users/u1/status", body={"success": True})

        result = await api.put("/api/admin/users/u1/status", {"status": "banned"})

        request = backend.calls("PUT", "/api/admin/users/u1/status")[0]
        assert backend.json_body(request) == {"status": "banned"}
        assert result == {"success": True}

    async def test_empty_body_is_none(self, api, backend):
        backend.route("DELETE", "/api/admin/users/u1", status=204)

        assert await api.delete("/api/admin/users/u1") is None

    async def test_text_body(self, api, backend):
        backend.route_handler("GET", "/health", lambda request: httpx.Response(200, text="ok"))

        assert await api.get("/health") == "ok"

    async def test_schema_decoding(self, api, backend):
        backend.route("GET", "/api/courses", body=course_page(total=3))

        result = await api.get("/api/courses", schema=CourseList)

        assert isinstance(result, CourseList)
        assert [c.id for c in result.courses] == ["c0", "c1", "c2"]

    async def test_schema_mismatch(self, api, backend):
        backend.route("GET", "/api/courses", body={"courses": "not a list"})

        with pytest.raises(SchemaError):
            await api.get("/api/courses", schema=CourseList)


# =============================================================================
# ERRORS
# =============================================================================

@pytest.mark.asyncio
class TestErrors:
    """Test error mapping."""

    async def test_server_message_surfaced(self, api, backend):
        backend.route("POST", "/api/admin/users", status=409, body={"message": "Email already in use"})

        with pytest.raises(ApiError) as exc_info:
            await api.post("/api/admin/users", {"email": "a@b.c"})

        assert exc_info.value.message == "Email already in use"
        assert exc_info.value.status_code == 409
        assert exc_info.value.response == {"message": "Email already in use"}

    async def test_fallback_message(self, api, backend):
        backend.route_handler("GET", "/api/courses", lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(ApiError, match="Request failed with status 500"):
            await api.get("/api/courses")

    async def test_timeout(self, api, backend):
        def slow(request):
            raise httpx.ReadTimeout("timed out", request=request)

        backend.route_handler("GET", "/api/courses", slow)

        with pytest.raises(RequestTimeoutError):
            await api.get("/api/courses")

    async def test_transport_failure(self, api, backend):
        def down(request):
            raise httpx.ConnectError("connection refused", request=request)

        backend.route_handler("GET", "/api/courses", down)

        with pytest.raises(ApiError) as exc_info:
            await api.get("/api/courses")

        assert not isinstance(exc_info.value, RequestTimeoutError)
        assert exc_info.value.status_code is None

    async def test_closed_client(self, api):
        await api.close()
        await api.close()

        with pytest.raises(ApiError, match="closed"):
            await api.get("/api/courses")


@pytest.mark.asyncio
class TestUnauthorized:
    """Test the 401 hand-off to the auth session."""

    async def test_401_triggers_refresh_then_raises(self, backend, auth_config):
        backend.route("GET", "/api/enrollments", status=401, body={"message": "jwt expired"})
        refreshes = []

        async def refresher(refresh_token):
            refreshes.append(refresh_token)
            return "tok-2", "ref-2"

        session = AuthSession("tok-1", "ref-1", refresher=refresher, config=auth_config)

        async with make_client(backend, session) as api:
            with pytest.raises(AuthExpiredError, match="jwt expired"):
                await api.get("/api/enrollments")

        assert refreshes == ["ref-1"]
        assert session.access_token == "tok-2"
        assert session.refresh_token == "ref-2"
        assert len(backend.calls("GET", "/api/enrollments")) == 1

    async def test_401_without_refresher_signs_out(self, backend, auth_config):
        backend.route("GET", "/api/enrollments", status=401)
        session = AuthSession("tok-1", "ref-1", config=auth_config)

        async with make_client(backend, session) as api:
            with pytest.raises(AuthExpiredError):
                await api.get("/api/enrollments")

        assert session.access_token is None
        assert not session.is_authenticated

    async def test_unauthenticated_401_leaves_session(self, backend, auth_config):
        backend.route("POST", "/api/auth/login", status=401, body={"message": "Invalid credentials"})
        session = AuthSession("tok-1", "ref-1", config=auth_config)

        async with make_client(backend, session) as api:
            with pytest.raises(AuthExpiredError, match="Invalid credentials"):
                await api.post("/api/auth/login", {}, authenticated=False)

        assert session.access_token == "tok-1"


# =============================================================================
# CACHE INTEGRATION
# =============================================================================

@pytest.mark.asyncio
class TestQueryFetcher:
    """Test the query cache fetcher."""

    async def test_key_becomes_request(self, api, backend):
        backend.route("GET", "/api/courses", body=course_page(page=2))

        await api.fetch_query(("/api/courses", {"page": 2, "limit": 10, "category": "all", "search": ""}))

        params = backend.calls("GET", "/api/courses")[0].url.params
        assert dict(params) == {"page": "2", "limit": "10"}

    async def test_query_fetcher_decodes(self, api, backend):
        backend.route("GET", "/api/courses", body=course_page(total=2))

        fetcher = api.query_fetcher(CourseList)
        result = await fetcher(("/api/courses", {"page": 1}))

        assert isinstance(result, CourseList)
        assert result.pagination.pages == 1

    async def test_path_segments(self, api, backend):
        backend.route("GET", "/api/courses/c1", body={"_id": "c1"})

        assert await api.fetch_query(("/api/courses", "c1")) == {"_id": "c1"}


@pytest.mark.asyncio
class TestRefreshTokens:
    """Test the refresh token exchange."""

    async def test_exchange(self, backend, auth_config):
        backend.route("POST", "/api/auth/refresh", body={"accessToken": "tok-2", "refreshToken": "ref-2"})
        session = AuthSession("tok-1", "ref-1", config=auth_config)

        async with make_client(backend, session) as api:
            pair = await api.refresh_tokens("ref-1")

        assert pair == ("tok-2", "ref-2")
        request = backend.calls("POST", "/api/auth/refresh")[0]
        assert backend.json_body(request) == {"refreshToken": "ref-1"}
        assert "Authorization" not in request.headers

    async def test_rejected(self, api, backend):
        backend.route("POST", "/api/auth/refresh", status=401, body={"message": "Invalid refresh token"})

        assert await api.refresh_tokens("stale") is None

    async def test_missing_access_token(self, api, backend):
        backend.route("POST", "/api/auth/refresh", body={"refreshToken": "r"})

        assert await api.refresh_tokens("ref-1") is None

    async def test_no_refresh_token(self, api, backend):
        assert await api.refresh_tokens(None) is None
        assert backend.requests == []

    async def test_session_refresh_through_client(self, backend, auth_config):
        """The client's refresh_tokens plugs into AuthSession as its refresher."""
        backend.route("GET", "/api/enrollments", status=401)
        backend.route("POST", "/api/auth/refresh", body={"accessToken": "tok-2", "refreshToken": "ref-2"})
        session = AuthSession("tok-1", "ref-1", config=auth_config)

        async with make_client(backend, session) as api:
            session.refresher = api.refresh_tokens
            with pytest.raises(AuthExpiredError):
                await api.get("/api/enrollments")

        assert session.access_token == "tok-2"
