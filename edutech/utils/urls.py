"""
URL helpers.

Every request path goes through build_api_url so that relative endpoints
are joined to the configured backend with exactly one slash, while
absolute URLs (CDN assets, presigned uploads) pass through untouched.
"""

from typing import Any, Dict, Iterable, Mapping, Optional, Tuple


ABSOLUTE_PREFIXES = ("http://", "https://")

# Filter values the backend treats as "no filter"
EMPTY_PARAM_VALUES = (None, "", "all")


def _base(base_url: Optional[str]) -> str:
    if base_url is None:
        from edutech.utils.config import get_settings
        base_url = get_settings().API_URL
    return (base_url or "").rstrip("/")


def build_api_url(endpoint: str, base_url: Optional[str] = None) -> str:
    """
    Build the full URL for a backend endpoint.

    Args:
        endpoint: Relative path ("/api/courses" or "api/courses") or an
                  absolute http(s) URL.
        base_url: Backend base URL. Defaults to Settings.API_URL.

    Returns:
        The absolute URL, or a root-relative path when the base is empty.
    """
    endpoint = endpoint or ""
    if endpoint.startswith(ABSOLUTE_PREFIXES):
        return endpoint
    return f"{_base(base_url)}/{endpoint.lstrip('/')}"


def asset_url(url: Optional[str], base_url: Optional[str] = None) -> str:
    """Resolve an uploaded asset reference (cover image, avatar) to a URL."""
    if not url:
        return ""
    if url.startswith(ABSOLUTE_PREFIXES):
        return url
    if url.startswith("/uploads/"):
        return f"{_base(base_url)}{url}"
    if "/" not in url:
        return f"{_base(base_url)}/uploads/{url}"
    return url


def build_query_path(key: Iterable[Any]) -> Tuple[str, Dict[str, Any]]:
    """
    Turn a cache key into a request path and query params.

    Path-like segments (str/int) are joined with "/"; mapping segments are
    merged into the query string, skipping empty filter values.
    """
    parts = []
    params: Dict[str, Any] = {}
    for segment in key:
        if isinstance(segment, Mapping):
            for name, value in segment.items():
                if value in EMPTY_PARAM_VALUES:
                    continue
                params[name] = list(value) if isinstance(value, tuple) else value
        elif segment is not None:
            parts.append(str(segment).strip("/"))

    path = "/".join(part for part in parts if part)
    return f"/{path}", params
