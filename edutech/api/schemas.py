"""
Response Schemas

Typed models for the backend's JSON envelopes. Responses are decoded at
the API boundary so the cache and views never handle untyped payloads.

List endpoints wrap items in a named array plus an optional pagination
envelope:

    {"courses": [...], "pagination": {"page": 1, "limit": 10, "total": 25}}

Item models keep unknown fields (extra="allow") because the backend adds
fields freely; only the ones the client relies on are declared.
"""

import math
from typing import Any, Dict, List, Optional, Type, TypeVar

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic import ValidationError as PydanticValidationError

from edutech.exceptions import SchemaError


M = TypeVar("M", bound=BaseModel)


class ApiModel(BaseModel):
    """Base for backend payloads."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)


def _id_field() -> Any:
    return Field(default="", validation_alias=AliasChoices("_id", "id"))


# =============================================================================
# ENVELOPES
# =============================================================================

class Pagination(ApiModel):
    """Pagination envelope of list endpoints."""
    page: int = 1
    limit: int = 10
    total: int = 0
    pages: Optional[int] = None

    @model_validator(mode="after")
    def _derive_pages(self) -> "Pagination":
        if self.pages is None:
            self.pages = math.ceil(self.total / self.limit) if self.limit > 0 else 0
        return self

    @property
    def has_next(self) -> bool:
        return self.page < (self.pages or 0)

    @property
    def has_previous(self) -> bool:
        return self.page > 1


class ErrorBody(ApiModel):
    """Error response body; ``message`` is what views show."""
    message: Optional[str] = None
    error: Optional[str] = None


# =============================================================================
# ITEMS
# =============================================================================

class Rating(ApiModel):
    average: float = 0.0
    count: int = 0


class Course(ApiModel):
    id: str = _id_field()
    title: str = ""
    slug: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    level: Optional[str] = None
    price: float = 0.0
    status: Optional[str] = None
    is_published: bool = Field(default=False, validation_alias=AliasChoices("isPublished", "is_published"))
    enrollment_count: int = Field(default=0, validation_alias=AliasChoices("enrollmentCount", "enrollment_count"))
    is_trending: bool = Field(default=False, validation_alias=AliasChoices("isTrending", "is_trending"))
    rating: Optional[Rating] = None


class User(ApiModel):
    id: str = _id_field()
    username: str = ""
    email: str = ""
    role: str = "student"
    status: Optional[str] = None
    profile: Dict[str, Any] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        first = self.profile.get("firstName") or ""
        last = self.profile.get("lastName") or ""
        return f"{first} {last}".strip() or self.username


# =============================================================================
# LIST RESPONSES
# =============================================================================

class CourseList(ApiModel):
    courses: List[Course] = Field(default_factory=list)
    pagination: Optional[Pagination] = None


class UserList(ApiModel):
    users: List[User] = Field(default_factory=list)
    pagination: Optional[Pagination] = None


def decode_response(model: Type[M], payload: Any) -> M:
    """
    Validate a JSON payload into ``model``.

    Raises:
        SchemaError: The payload does not match the schema
    """
    try:
        return model.model_validate(payload if payload is not None else {})
    except PydanticValidationError as e:
        raise SchemaError(f"Invalid {model.__name__} payload: {e.error_count()} error(s)") from e
