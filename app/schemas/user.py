"""
User Profiles API — request/response schemas for the users resource.

Wire format is camelCase (``fullName``, ``createdAt``); Python attributes stay
snake_case and either spelling is accepted on input.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Any, Literal, Optional

from pydantic import (
    AnyUrl,
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    TypeAdapter,
    ValidationError,
    field_serializer,
    field_validator,
)
from pydantic.alias_generators import to_camel

# Largest page whose offset at the maximum limit still fits a signed BIGINT.
MAX_PAGE = 2**63 // 100

PHONE_PATTERN = r"^\+?[1-9]\d{1,14}$"

SortField = Literal["fullName", "email", "createdAt", "updatedAt"]
SortOrder = Literal["asc", "desc"]

_DATA_URL = re.compile(r"^data:[\w.+-]+/[\w.+-]+(;[\w.+-]+=[\w.+-]+)*(;base64)?,", re.ASCII)
_url_adapter = TypeAdapter(AnyUrl)

_CAMEL = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def serialize_timestamp(value: datetime | None) -> str | None:
    """Render a stored timestamp as ISO-8601 UTC with millisecond precision.

    Stored values are naive UTC; they come back out with a ``Z`` suffix.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


# ──────────────────────────────────────────────────────────────────────────────
# Inbound
# ──────────────────────────────────────────────────────────────────────────────

class _ProfileFields(BaseModel):
    """Optional profile fields and the checks shared by create and update."""

    model_config = ConfigDict(**_CAMEL, extra="ignore")

    phone_number: Optional[str] = Field(None, pattern=PHONE_PATTERN)
    bio: Optional[str] = Field(None, max_length=500)
    avatar_url: Optional[str] = None
    date_of_birth: Optional[date] = None
    location: Optional[str] = Field(None, max_length=100)

    # Server-assigned; any value supplied by a client is a violation.
    id: Any = Field(None, exclude=True)
    created_at: Any = Field(None, exclude=True)
    updated_at: Any = Field(None, exclude=True)

    @field_validator("id", "created_at", "updated_at")
    @classmethod
    def _server_assigned(cls, v: Any) -> Any:
        raise ValueError("Field is assigned by the server and cannot be set")

    @field_validator("avatar_url")
    @classmethod
    def _valid_avatar_url(cls, v: Optional[str]) -> Optional[str]:
        if v is None or _DATA_URL.match(v):
            return v
        try:
            _url_adapter.validate_python(v)
        except ValidationError:
            raise ValueError("Invalid avatar URL format") from None
        return v

    @field_validator("date_of_birth", mode="before")
    @classmethod
    def _accept_datetime_strings(cls, v: Any) -> Any:
        # Browsers send ``new Date(...)`` values, e.g. 1990-05-01T00:00:00.000Z
        if isinstance(v, datetime):
            return v.date()
        if isinstance(v, str) and "T" in v:
            return v.split("T", 1)[0]
        return v

    @field_validator("date_of_birth")
    @classmethod
    def _not_in_future(cls, v: Optional[date]) -> Optional[date]:
        if v is not None and v > datetime.now(timezone.utc).date():
            raise ValueError("Date of birth cannot be in the future")
        return v


class UserCreate(_ProfileFields):
    full_name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr


class UserUpdate(_ProfileFields):
    """Partial update.

    Which fields were supplied is read from ``model_fields_set``: an omitted
    field keeps its stored value, an explicit ``null`` clears it.  ``fullName``
    and ``email`` cannot be cleared, so ``null`` for them is rejected.
    """

    full_name: str = Field(None, min_length=1, max_length=100)
    email: EmailStr = None

    def changes(self) -> dict[str, Any]:
        """Return ``{attribute: value}`` for every field present in the request."""
        return self.model_dump(exclude_unset=True)


class UserListQuery(BaseModel):
    model_config = _CAMEL

    page: int = Field(1, ge=1, le=MAX_PAGE)
    limit: int = Field(10, ge=1, le=100)
    search: Optional[str] = None
    location: Optional[str] = None
    sort_by: SortField = "createdAt"
    sort_order: SortOrder = "desc"

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


# ──────────────────────────────────────────────────────────────────────────────
# Outbound
# ──────────────────────────────────────────────────────────────────────────────

class UserResponse(BaseModel):
    model_config = ConfigDict(**_CAMEL, from_attributes=True)

    id: str
    full_name: str
    email: str
    phone_number: Optional[str] = None
    bio: Optional[str] = None
    avatar_url: Optional[str] = None
    date_of_birth: Optional[datetime] = None
    location: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @field_serializer("date_of_birth", "created_at", "updated_at")
    def _timestamps(self, value: Optional[datetime]) -> Optional[str]:
        return serialize_timestamp(value)


class Pagination(BaseModel):
    model_config = _CAMEL

    total: int
    page: int
    limit: int
    total_pages: int
    has_next: bool
    has_previous: bool


class UserEnvelope(BaseModel):
    status: Literal["success"] = "success"
    message: str
    data: UserResponse


class UserListEnvelope(BaseModel):
    status: Literal["success"] = "success"
    message: str
    data: list[UserResponse]
    pagination: Pagination


class DeleteEnvelope(BaseModel):
    status: Literal["success"] = "success"
    message: str
    data: None = None


class ErrorDetail(BaseModel):
    path: str
    message: str


class ErrorEnvelope(BaseModel):
    status: Literal["error"] = "error"
    message: str
    errors: Optional[list[ErrorDetail]] = None
    detail: Optional[str] = None
