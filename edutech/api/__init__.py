"""
Backend API

- ApiClient: Authenticated fetch wrapper around httpx.AsyncClient
- Schemas: Typed response envelopes (pydantic)
- Endpoints: Backend paths shared by query keys and mutations
"""

from .client import ApiClient, error_message
from .schemas import (
    ApiModel,
    Course,
    CourseList,
    ErrorBody,
    Pagination,
    Rating,
    User,
    UserList,
    decode_response,
)
from . import endpoints

__all__ = [
    "ApiClient",
    "error_message",
    "endpoints",
    # Schemas
    "ApiModel",
    "Course",
    "CourseList",
    "ErrorBody",
    "Pagination",
    "Rating",
    "User",
    "UserList",
    "decode_response",
]
