"""
Error taxonomy for the EduTech client.

Transport and HTTP failures surface as ApiError (with the server's
``message`` when one was returned). Client-side validation failures are
raised before any request is made.
"""

from typing import Any, Optional


class EdutechError(Exception):
    """Base class for all client errors."""


class ApiError(EdutechError):
    """Non-2xx response or transport failure."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Any = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response


class AuthExpiredError(ApiError):
    """The backend rejected the bearer token (HTTP 401)."""


class RequestTimeoutError(ApiError):
    """The request did not complete within the configured timeout."""


class ValidationError(EdutechError):
    """Client-side validation failed; no request was sent."""

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.field = field


class SchemaError(EdutechError):
    """A response payload did not match its expected schema."""
