"""User-related Pydantic schemas for request/response validation."""

from typing import Optional
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import Field, field_validator

from .base import BaseModelSchema, BaseSchema
from .chat import UsageResponse


class UserResponse(BaseModelSchema):
    """Schema for user response data."""

    email: str
    name: Optional[str]
    plan: Optional[str]
    timezone: str
    is_active: bool


class UserProfileResponse(BaseSchema):
    """Profile plus current usage."""

    user: UserResponse
    usage: UsageResponse


class TimezoneUpdateRequest(BaseSchema):
    """Schema for updating the timezone preference."""

    timezone: str = Field(..., min_length=1, max_length=100, description="IANA timezone name")

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        v = v.strip()
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError("Invalid timezone") from e
        return v


class TimezoneResponse(BaseSchema):
    """Timezone preference response."""

    user_id: UUID
    timezone: str
