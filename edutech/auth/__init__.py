"""
Authentication

Client-side bearer-token handling:
- AuthSession holds the token pair and runs refreshes on HTTP 401
- AuthRefreshWatcher invalidates the query cache after a refresh
- Token helpers read expiry/identity claims without verifying signatures

Usage:
    session = AuthSession(access_token, refresh_token, refresher=api.refresh_tokens)
    with AuthRefreshWatcher(session, query_client):
        ...
"""

from .config import AuthConfig, get_auth_config
from .tokens import (
    TokenError,
    decode_token_unverified,
    extract_user_info,
    is_token_expired,
    token_expiry,
)
from .session import AuthRefreshWatcher, AuthSession

__all__ = [
    # Config
    "AuthConfig",
    "get_auth_config",
    # Tokens
    "TokenError",
    "decode_token_unverified",
    "extract_user_info",
    "is_token_expired",
    "token_expiry",
    # Session
    "AuthSession",
    "AuthRefreshWatcher",
]
