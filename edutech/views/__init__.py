"""
Views

Per-screen data: subscriptions, realtime bindings and mutations scoped to
a mount/unmount lifetime.
"""

from .base import Toast, View, describe_error
from .courses import CourseCatalogView, CourseFilters
from .admin_users import AdminUsersView, validate_account

__all__ = [
    "Toast",
    "View",
    "describe_error",
    "CourseCatalogView",
    "CourseFilters",
    "AdminUsersView",
    "validate_account",
]
