"""
Tests for URL building.

These tests verify:
- Relative endpoints joined to the base with exactly one slash
- Absolute URLs passed through unchanged
- Cache keys turned into request paths and query params
- Asset URL resolution
"""

from unittest.mock import patch

import pytest

from edutech.utils.urls import asset_url, build_api_url, build_query_path


BASE = "http://localhost:3001"


# =============================================================================
# build_api_url
# =============================================================================

class TestBuildApiUrl:
    """Test API URL building."""

    def test_leading_slash_is_irrelevant(self):
        """'/api/x' and 'api/x' produce the same URL."""
        assert build_api_url("/api/x", BASE) == build_api_url("api/x", BASE)
        assert build_api_url("/api/x", BASE) == "http://localhost:3001/api/x"

    @pytest.mark.parametrize("base", [
        "http://localhost:3001",
        "http://localhost:3001/",
        "http://localhost:3001//",
    ])
    def test_exactly_one_slash(self, base):
        """Trailing slashes on the base never double up."""
        assert build_api_url("//api/courses", base) == "http://localhost:3001/api/courses"

    def test_absolute_urls_unchanged(self):
        """http(s) URLs are returned as given."""
        assert build_api_url("https://cdn.example/y", BASE) == "https://cdn.example/y"
        assert build_api_url("http://other.example/z?a=1", BASE) == "http://other.example/z?a=1"

    def test_empty_base_gives_root_relative_path(self):
        """Without a base the result is a root-relative path."""
        assert build_api_url("api/x", "") == "/api/x"
        assert build_api_url("/api/x", "") == "/api/x"

    def test_empty_endpoint(self):
        """An empty endpoint yields the base root."""
        assert build_api_url("", BASE) == "http://localhost:3001/"

    @patch.dict("os.environ", {"API_URL": "https://lms.example.com/"})
    def test_base_from_settings(self):
        """Without an explicit base, Settings.API_URL is used."""
        assert build_api_url("/api/courses") == "https://lms.example.com/api/courses"


# =============================================================================
# build_query_path
# =============================================================================

class TestBuildQueryPath:
    """Test cache key to request conversion."""

    def test_path_only(self):
        """A single-segment key is a plain GET path."""
        assert build_query_path(("/api/courses",)) == ("/api/courses", {})

    def test_filters_become_params(self):
        """Mapping segments become query params."""
        path, params = build_query_path(("/api/courses", {"page": 2, "limit": 10}))
        assert path == "/api/courses"
        assert params == {"page": 2, "limit": 10}

    def test_empty_filter_values_dropped(self):
        """None, '' and 'all' mean 'no filter'."""
        path, params = build_query_path(
            ("/api/admin/users", {"role": "all", "status": "", "search": None, "page": 1})
        )
        assert params == {"page": 1}

    def test_path_segments_joined(self):
        """Non-mapping segments are joined into the path."""
        path, params = build_query_path(("/api/courses", "c42", "lectures"))
        assert path == "/api/courses/c42/lectures"
        assert params == {}

    def test_tuple_values_become_lists(self):
        """Multi-valued params are sent as repeated query args."""
        _, params = build_query_path(("/api/courses", {"tags": ("a", "b")}))
        assert params == {"tags": ["a", "b"]}


# =============================================================================
# asset_url
# =============================================================================

class TestAssetUrl:
    """Test uploaded asset resolution."""

    def test_absolute_unchanged(self):
        assert asset_url("https://cdn.example/a.png", BASE) == "https://cdn.example/a.png"

    def test_uploads_path_prefixed(self):
        assert asset_url("/uploads/a.png", BASE) == "http://localhost:3001/uploads/a.png"

    def test_bare_filename(self):
        assert asset_url("a.png", BASE) == "http://localhost:3001/uploads/a.png"

    def test_empty(self):
        assert asset_url(None, BASE) == ""
        assert asset_url("", BASE) == ""
