"""Subscription ledger models.

Implements the per-billing-cycle subscription ledger, its append-only audit
trail and the record of applied aggregator deliveries.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from airtime_billing.core.database import Base

if TYPE_CHECKING:
    from airtime_billing.modules.identity.models import User


class PlanType(str, Enum):
    """Billing cycle of an airtime subscription."""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class SubscriptionStatus(str, Enum):
    """Ledger status values."""
    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    FAILED = "failed"
    SUSPENDED = "suspended"


class Channel(str, Enum):
    """Channel the subscriber used to opt in."""
    SMS = "SMS"
    USSD = "USSD"
    WEB = "WEB"
    APP = "APP"


class Telco(str, Enum):
    """Mobile network operator billing the subscriber."""
    MTN = "MTN"
    AIRTEL = "AIRTEL"
    NINEMOBILE = "NINEMOBILE"


class WebhookEventType(str, Enum):
    """Aggregator notification types understood by the dispatcher."""
    SYNC_NOTIFICATION = "SYNC_NOTIFICATION"
    RENEWAL_NOTIFICATION = "RENEWAL_NOTIFICATION"
    UNSUBSCRIPTION_NOTIFICATION = "UNSUBSCRIPTION_NOTIFICATION"
    INSUFFICIENT_BALANCE = "INSUFFICIENT_BALANCE"
    BILLING_FAILURE = "BILLING_FAILURE"


class AuditEventType(str, Enum):
    """Entries of the per-subscription audit trail."""
    ACTIVATED = "activated"
    RENEWED = "renewed"
    UNSUBSCRIBED = "unsubscribed"
    BILLING_FAILED = "billing_failed"
    USER_CANCELLED = "user_cancelled"
    SUPERSEDED = "superseded"
    EXPIRED = "expired"


# Price of each plan in kobo
PLAN_AMOUNTS: dict[str, int] = {
    PlanType.DAILY.value: 10000,
    PlanType.WEEKLY.value: 50000,
    PlanType.MONTHLY.value: 150000,
}


class Subscription(Base):
    """One billing cycle (or attempt) of a user's airtime subscription.

    Rows are never deleted. At most one row per user is ``active``.
    """

    __tablename__ = "subscriptions"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        UniqueConstraint("phone", "aggregator_transaction_id", name="uq_subscriptions_phone_transaction"),
        Index("ix_subscriptions_user_status", "user_id", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Aggregator references
    aggregator_product_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    aggregator_transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)
    telco_ref: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    # Billing facts
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)  # kobo
    channel: Mapped[str] = mapped_column(String(10), default=Channel.SMS.value, nullable=False)
    telco: Mapped[str] = mapped_column(String(20), default=Telco.MTN.value, nullable=False)
    phone: Mapped[str] = mapped_column(String(20), nullable=False, index=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(
        String(20), default=SubscriptionStatus.PENDING.value, nullable=False, index=True
    )
    start_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    auto_renewal: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    renewal_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Telco status of the last applied event
    telco_status_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    telco_status_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # Raw details of the last applied event; history lives in subscription_events
    aggregator_response: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    user: Mapped["User"] = relationship("User", back_populates="subscriptions", lazy="raise")

    def __repr__(self) -> str:
        return f"<Subscription(id={self.id}, user={self.user_id}, plan={self.plan_type}, status={self.status})>"


class SubscriptionEvent(Base):
    """Append-only audit entry for a subscription row."""

    __tablename__ = "subscription_events"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    subscription_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("subscriptions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    user_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status_before: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status_after: Mapped[str] = mapped_column(String(20), nullable=False)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True
    )

    def __repr__(self) -> str:
        return f"<SubscriptionEvent(subscription={self.subscription_id}, type={self.event_type})>"


class WebhookDelivery(Base):
    """An aggregator delivery whose business effect has been applied.

    The unique key turns at-least-once delivery into exactly-once effects:
    a replay, or a concurrent duplicate, collides here instead of touching
    the ledger twice.
    """

    __tablename__ = "telco_webhook_deliveries"
    __mapper_args__ = {"eager_defaults": True}
    __table_args__ = (
        UniqueConstraint("phone", "event_type", "transaction_id", name="uq_webhook_deliveries_key"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    phone: Mapped[str] = mapped_column(String(20), nullable=False)
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    transaction_id: Mapped[str] = mapped_column(String(100), nullable=False)
    payload: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now()
    )

    def __repr__(self) -> str:
        return f"<WebhookDelivery(type={self.event_type}, txn={self.transaction_id})>"
