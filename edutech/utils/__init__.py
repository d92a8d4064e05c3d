"""Utility modules for the EduTech client."""

from .config import Settings, configure_logging, get_settings
from .urls import asset_url, build_api_url, build_query_path

__all__ = [
    "Settings",
    "get_settings",
    "configure_logging",
    # URL helpers
    "build_api_url",
    "build_query_path",
    "asset_url",
]
