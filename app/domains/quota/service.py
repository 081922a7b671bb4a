"""Quota guard: effective plan resolution and the atomic daily counter."""

import logging
from datetime import UTC, date, datetime
from uuid import UUID
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel
from sqlalchemy import case, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.exceptions.chat import QuotaStoreError
from app.schemas.chat import UsageResponse
from models.user import User


logger = logging.getLogger(__name__)


class QuotaDecision(BaseModel):
    """Outcome of one authorize call."""

    allowed: bool
    plan: str
    limit: int
    used: int


def is_override_email(email: str | None) -> bool:
    """Check whether an email is on the configured plan override list."""
    if not email:
        return False
    return email.strip().lower() in settings.vip_email_list


def resolve_effective_plan(stored_plan: str | None, email: str | None) -> str:
    """Apply the override list, then fall back to the default tier."""
    if is_override_email(email):
        return settings.override_plan
    return stored_plan or settings.default_plan


def get_plan_limit(plan: str) -> int:
    """Daily message limit for a plan; unknown plans get the default tier's."""
    return settings.plan_limits.get(plan, settings.plan_limits[settings.default_plan])


def anchor_today(anchor_timezone: str | None, now: datetime | None = None) -> date:
    """Current local date in the server-held anchor timezone."""
    now = now or datetime.now(UTC)
    name = anchor_timezone or settings.default_reset_timezone
    if name == "UTC":
        return now.astimezone(UTC).date()
    try:
        return now.astimezone(ZoneInfo(name)).date()
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown reset timezone {name!r}, using UTC")
        return now.astimezone(UTC).date()


class QuotaService:
    """Service class for the per-user daily message quota."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def authorize(self, user_id: UUID, now: datetime | None = None) -> QuotaDecision:
        """Check and consume one message from today's allowance.

        The day rollover, the limit check and the increment happen in a single
        conditional UPDATE, so concurrent calls for the same user serialize on
        the row and at most ``limit`` of them can succeed per day.

        Args:
            user_id: User ID resolved from the current session
            now: Clock override

        Returns:
            QuotaDecision with the effective plan and the count after the call

        Raises:
            QuotaStoreError: If the user row cannot be read or updated
        """
        try:
            user = await self._load_user(user_id)
            plan = resolve_effective_plan(user.plan, user.email)
            limit = get_plan_limit(plan)
            today = anchor_today(user.reset_timezone, now)

            stale_day = or_(User.last_reset_date.is_(None), User.last_reset_date < today)
            stmt = (
                update(User)
                .where(User.id == user_id)
                .where(or_(stale_day, User.messages_used_today < limit))
                .values(
                    messages_used_today=case(
                        (stale_day, 1),
                        else_=User.messages_used_today + 1,
                    ),
                    last_reset_date=today,
                )
                .execution_options(synchronize_session=False)
            )
            result = await self.db.execute(stmt)
            allowed = result.rowcount == 1
            await self.db.commit()

            used = await self._read_used_today(user_id, today)
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Quota authorize failed for user {user_id}: {str(e)}")
            raise QuotaStoreError() from e

        if not allowed:
            logger.info(f"Daily limit reached for user {user_id} ({used}/{limit} on {plan})")
        return QuotaDecision(allowed=allowed, plan=plan, limit=limit, used=used)

    async def refund(self, user_id: UUID) -> None:
        """Give back one message after a request failed before any model work."""
        try:
            await self.db.execute(
                update(User)
                .where(User.id == user_id, User.messages_used_today > 0)
                .values(messages_used_today=User.messages_used_today - 1)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(f"Quota refund failed for user {user_id}: {str(e)}")

    async def record_turn(self, user_id: UUID) -> None:
        """Increment the lifetime message counter once a turn is persisted."""
        try:
            await self.db.execute(
                update(User)
                .where(User.id == user_id)
                .values(total_messages=User.total_messages + 1)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            raise QuotaStoreError("Lifetime message counter could not be updated") from e

    async def usage(self, user_id: UUID, now: datetime | None = None) -> UsageResponse:
        """Report plan and today's usage without consuming anything."""
        user = await self._load_user(user_id)
        plan = resolve_effective_plan(user.plan, user.email)
        limit = get_plan_limit(plan)
        today = anchor_today(user.reset_timezone, now)
        used = user.messages_used_today if user.last_reset_date == today else 0
        return UsageResponse(
            plan=plan,
            limit=limit,
            used=used,
            remaining=max(limit - used, 0),
            total_messages=user.total_messages or 0,
            resets_in_timezone=user.reset_timezone or settings.default_reset_timezone,
            as_of=now or datetime.now(UTC),
        )

    async def _load_user(self, user_id: UUID) -> User:
        result = await self.db.execute(
            select(User).where(User.id == user_id).execution_options(populate_existing=True)
        )
        user = result.scalar_one_or_none()
        if user is None:
            raise QuotaStoreError("User record not found")
        return user

    async def _read_used_today(self, user_id: UUID, today: date) -> int:
        result = await self.db.execute(
            select(User.messages_used_today, User.last_reset_date).where(User.id == user_id)
        )
        row = result.one()
        return row.messages_used_today if row.last_reset_date == today else 0
