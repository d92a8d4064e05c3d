"""
Authentication Configuration

Settings for bearer-token handling on the client side.
"""

import os
from functools import lru_cache
from pydantic_settings import BaseSettings


class AuthConfig(BaseSettings):
    """Authentication configuration loaded from environment."""

    # Auth behavior
    auth_enabled: bool = True  # Set to False to send every request unauthenticated

    # Treat tokens this close to expiry as already expired (seconds)
    token_leeway_seconds: int = 30

    # Backend endpoint exchanging a refresh token for a new pair
    refresh_endpoint: str = "/api/auth/refresh"

    class Config:
        env_prefix = ""
        extra = "ignore"


@lru_cache()
def get_auth_config() -> AuthConfig:
    """Get cached auth configuration."""
    return AuthConfig(
        auth_enabled=os.getenv("AUTH_ENABLED", "true").lower() == "true",
        token_leeway_seconds=int(os.getenv("TOKEN_LEEWAY_SECONDS", "30")),
        refresh_endpoint=os.getenv("AUTH_REFRESH_ENDPOINT", "/api/auth/refresh"),
    )
