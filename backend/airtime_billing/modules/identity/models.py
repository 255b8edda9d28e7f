"""User model keyed by canonical phone number.

Besides profile and fitness preferences the user row carries the billing
mirror (``subscription_status``, ``subscription_plan``,
``subscription_end_date``), a denormalized copy of the subscription ledger
used for join-free access checks.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Integer, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from airtime_billing.core.database import Base

if TYPE_CHECKING:
    from airtime_billing.modules.subscription.models import Subscription


class MirrorStatus(str, Enum):
    """Subscription status values held on the user row."""
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"
    PENDING = "pending"
    FAILED = "failed"
    CANCELLED = "cancelled"


class GenderPreference(str, Enum):
    MALE = "male"
    FEMALE = "female"
    BOTH = "both"


class FitnessLevel(str, Enum):
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class User(Base):
    """App user identified by phone number."""

    __tablename__ = "users"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    phone_formatted: Mapped[str] = mapped_column(
        String(20), unique=True, index=True, nullable=False
    )
    name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)

    # Billing mirror
    subscription_status: Mapped[str] = mapped_column(
        String(20), default=MirrorStatus.INACTIVE.value, nullable=False, index=True
    )
    subscription_plan: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    subscription_end_date: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )

    # Fitness preferences and stats
    daily_streak: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_workout_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    total_workouts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_minutes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    gender_preference: Mapped[str] = mapped_column(
        String(10), default=GenderPreference.BOTH.value, nullable=False
    )
    fitness_level: Mapped[str] = mapped_column(
        String(20), default=FitnessLevel.BEGINNER.value, nullable=False
    )
    equipment_available: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    has_completed_welcome_video: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    timezone: Mapped[Optional[str]] = mapped_column(String(50), default="Africa/Lagos", nullable=True)
    # "metadata" is reserved on declarative classes
    user_metadata: Mapped[dict] = mapped_column("metadata", JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    subscriptions: Mapped[List["Subscription"]] = relationship(
        "Subscription", back_populates="user", lazy="raise"
    )

    def __repr__(self) -> str:
        return f"<User(id={self.id}, status={self.subscription_status})>"
