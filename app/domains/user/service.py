# app/domains/user/service.py
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.exceptions.base import AuthenticationError
from models import User


class UserService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_user_by_subject(self, auth_subject: str) -> Optional[User]:
        """Get a user by identity-provider subject."""
        result = await self.db.execute(select(User).where(User.auth_subject == auth_subject))
        return result.scalar_one_or_none()

    async def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        """Get a user by ID."""
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def create_user(self, auth_subject: str, email: str, name: str | None = None) -> User:
        """Create a new user on the default plan with the server anchor timezone."""
        user = User(
            auth_subject=auth_subject,
            email=email.strip().lower(),
            name=name,
            plan=settings.default_plan,
            reset_timezone=settings.default_reset_timezone,
        )

        try:
            self.db.add(user)
            await self.db.commit()
            await self.db.refresh(user)
            return user
        except SQLAlchemyError:
            await self.db.rollback()
            raise

    async def get_or_create_user(self, auth_subject: str, payload: dict) -> User:
        """Get existing user or provision one from the session payload."""
        user = await self.get_user_by_subject(auth_subject)
        if not user:
            email = payload.get("email")
            if not email:
                raise AuthenticationError("Session has no email claim")
            user = await self.create_user(
                auth_subject=auth_subject,
                email=email,
                name=payload.get("name"),
            )
        return user

    async def update_timezone(self, user_id: UUID, timezone: str) -> Optional[User]:
        """Update the display timezone preference.

        The quota anchor (``reset_timezone``) and today's counter are left
        untouched so changing timezone cannot buy extra messages.
        """
        user = await self.get_user_by_id(user_id)
        if not user:
            return None

        try:
            user.timezone = timezone
            await self.db.commit()
            await self.db.refresh(user)
            return user
        except SQLAlchemyError:
            await self.db.rollback()
            raise
