"""User repository for database operations."""

import uuid
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from airtime_billing.core.config import settings
from airtime_billing.modules.identity.models import (
    FitnessLevel,
    GenderPreference,
    MirrorStatus,
    User,
)
from airtime_billing.modules.identity.phone import format_phone


class UserRepository:
    """Repository for phone-keyed users.

    Methods flush but never commit; the caller owns the transaction.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: uuid.UUID) -> Optional[User]:
        """Get user by ID."""
        result = await self.session.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_by_phone(self, canonical_phone: str) -> Optional[User]:
        """Get user by canonical phone number.

        Args:
            canonical_phone: Output of ``format_phone``

        Returns:
            User | None: User if found, None otherwise
        """
        result = await self.session.execute(
            select(User).where(User.phone_formatted == canonical_phone)
        )
        return result.scalar_one_or_none()

    async def create_from_phone(self, raw_phone: str, canonical_phone: Optional[str] = None) -> User:
        """Create a minimal user for a phone number.

        Preferences get their defaults and workout stats start at zero.

        Args:
            raw_phone: Phone number as received
            canonical_phone: Already-normalized phone, computed if omitted

        Returns:
            User: The new, flushed user
        """
        user = User(
            phone=str(raw_phone),
            phone_formatted=canonical_phone or format_phone(raw_phone),
            name=None,
            email=None,
            subscription_status=MirrorStatus.INACTIVE.value,
            daily_streak=0,
            total_workouts=0,
            total_minutes=0,
            last_workout_date=None,
            gender_preference=GenderPreference.BOTH.value,
            fitness_level=FitnessLevel.BEGINNER.value,
            equipment_available=False,
            has_completed_welcome_video=False,
            timezone=settings.DEFAULT_USER_TIMEZONE,
            user_metadata={},
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def find_or_create_by_phone(
        self, canonical_phone: str, raw_phone: Optional[str] = None
    ) -> tuple[User, bool]:
        """Find a user by canonical phone or create one.

        Returns:
            tuple[User, bool]: The user and whether it was created
        """
        user = await self.get_by_phone(canonical_phone)
        if user is not None:
            return user, False
        user = await self.create_from_phone(raw_phone or canonical_phone, canonical_phone)
        return user, True
