"""User profile and preference endpoints."""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.dependencies import get_current_user
from app.database import get_db
from app.domains.quota.service import QuotaService
from app.domains.user.service import UserService
from app.exceptions.base import NotFoundError, PersistenceError
from app.schemas.base import ResponseSchema
from app.schemas.user import (
    TimezoneResponse,
    TimezoneUpdateRequest,
    UserProfileResponse,
    UserResponse,
)
from models.user import User


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


@router.get("/me", response_model=ResponseSchema)
async def get_me(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Get the current user's profile with effective plan and today's usage."""
    usage = await QuotaService(db).usage(current_user.id)
    profile = UserProfileResponse(user=UserResponse.model_validate(current_user), usage=usage)
    return ResponseSchema(
        status="success",
        message="Profile retrieved successfully",
        data=profile.model_dump(mode="json"),
    )


@router.put("/me/timezone", response_model=ResponseSchema)
async def update_timezone(
    timezone_data: TimezoneUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Update the timezone preference.

    Only the display preference changes; message counts and the quota reset
    anchor stay as they are.
    """
    try:
        user = await UserService(db).update_timezone(current_user.id, timezone_data.timezone)
    except SQLAlchemyError as e:
        logger.error(f"Failed to update timezone: {str(e)}")
        raise PersistenceError("Failed to update timezone") from e

    if not user:
        raise NotFoundError("User not found")

    return ResponseSchema(
        status="success",
        message="Timezone updated successfully",
        data=TimezoneResponse(user_id=user.id, timezone=user.timezone).model_dump(mode="json"),
    )
