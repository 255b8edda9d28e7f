"""Repository for subscription ledger database operations.

Repositories flush but never commit: a webhook delivery or a user request
is one transaction, committed (or rolled back) by the service that owns it.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import func, select, text
from sqlalchemy.ext.asyncio import AsyncSession

from airtime_billing.modules.subscription.models import (
    Subscription,
    SubscriptionEvent,
    SubscriptionStatus,
    WebhookDelivery,
)


class SubscriptionRepository:
    """Repository for subscription ledger rows."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_subscription(self, **kwargs: Any) -> Subscription:
        """Insert a ledger row."""
        subscription = Subscription(**kwargs)
        self.session.add(subscription)
        await self.session.flush()
        return subscription

    async def get_by_id(self, subscription_id: uuid.UUID) -> Optional[Subscription]:
        result = await self.session.execute(
            select(Subscription).where(Subscription.id == subscription_id)
        )
        return result.scalar_one_or_none()

    async def get_by_transaction(self, phone: str, transaction_id: str) -> Optional[Subscription]:
        """Get the row created by an aggregator transaction."""
        result = await self.session.execute(
            select(Subscription).where(
                Subscription.phone == phone,
                Subscription.aggregator_transaction_id == transaction_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_active_for_user(self, user_id: uuid.UUID) -> Optional[Subscription]:
        """Get the user's active row (the most recent one if several exist)."""
        result = await self.session.execute(
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .order_by(Subscription.start_date.desc(), Subscription.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_active_for_user(self, user_id: uuid.UUID) -> list[Subscription]:
        result = await self.session.execute(
            select(Subscription)
            .where(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.ACTIVE.value,
            )
            .order_by(Subscription.start_date.asc())
        )
        return list(result.scalars().all())

    async def get_history(
        self,
        user_id: uuid.UUID,
        limit: int = 10,
        offset: int = 0,
    ) -> tuple[list[Subscription], int]:
        """Get a page of a user's rows, newest first, with the total count."""
        total = await self.session.scalar(
            select(func.count(Subscription.id)).where(Subscription.user_id == user_id)
        )
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .order_by(Subscription.created_at.desc(), Subscription.start_date.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    async def list_active(self, limit: int = 20, offset: int = 0) -> tuple[list[Subscription], int]:
        """Get a page of all active rows ordered by soonest end date."""
        active = Subscription.status == SubscriptionStatus.ACTIVE.value
        total = await self.session.scalar(select(func.count(Subscription.id)).where(active))
        result = await self.session.execute(
            select(Subscription)
            .where(active)
            .order_by(Subscription.end_date.asc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all()), int(total or 0)

    # ==================== Aggregates ====================

    async def count_all(self) -> int:
        return int(await self.session.scalar(select(func.count(Subscription.id))) or 0)

    async def count_by_status(self, status: str) -> int:
        return int(
            await self.session.scalar(
                select(func.count(Subscription.id)).where(Subscription.status == status)
            )
            or 0
        )

    async def count_created_since(self, since: datetime) -> int:
        return int(
            await self.session.scalar(
                select(func.count(Subscription.id)).where(Subscription.created_at >= since)
            )
            or 0
        )

    async def sum_active_amount(self) -> int:
        total = await self.session.scalar(
            select(func.coalesce(func.sum(Subscription.amount), 0)).where(
                Subscription.status == SubscriptionStatus.ACTIVE.value
            )
        )
        return int(total or 0)

    async def active_plan_distribution(self) -> dict[str, int]:
        result = await self.session.execute(
            select(Subscription.plan_type, func.count(Subscription.id))
            .where(Subscription.status == SubscriptionStatus.ACTIVE.value)
            .group_by(Subscription.plan_type)
        )
        return {plan: int(count) for plan, count in result.all()}

    # ==================== Concurrency ====================

    async def lock_phone(self, phone: str) -> None:
        """Serialize event processing for one phone until the transaction ends.

        Uses a transaction-scoped PostgreSQL advisory lock. Other dialects
        rely on the unique constraints alone.
        """
        bind = self.session.get_bind()
        if bind.dialect.name != "postgresql":
            return
        await self.session.execute(
            text("SELECT pg_advisory_xact_lock(hashtext(:phone))"),
            {"phone": phone},
        )


class SubscriptionEventRepository:
    """Repository for the append-only subscription audit trail."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self,
        subscription: Subscription,
        event_type: str,
        status_before: Optional[str],
        transaction_id: Optional[str] = None,
        note: Optional[str] = None,
        payload: Optional[dict] = None,
    ) -> SubscriptionEvent:
        event = SubscriptionEvent(
            subscription_id=subscription.id,
            user_id=subscription.user_id,
            event_type=event_type,
            transaction_id=transaction_id,
            status_before=status_before,
            status_after=subscription.status,
            note=note,
            payload=payload,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_for_subscription(self, subscription_id: uuid.UUID) -> list[SubscriptionEvent]:
        result = await self.session.execute(
            select(SubscriptionEvent)
            .where(SubscriptionEvent.subscription_id == subscription_id)
            .order_by(SubscriptionEvent.created_at.asc())
        )
        return list(result.scalars().all())


class WebhookDeliveryRepository:
    """Repository for applied aggregator deliveries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def exists(self, phone: str, event_type: str, transaction_id: str) -> bool:
        result = await self.session.execute(
            select(WebhookDelivery.id).where(
                WebhookDelivery.phone == phone,
                WebhookDelivery.event_type == event_type,
                WebhookDelivery.transaction_id == transaction_id,
            )
        )
        return result.first() is not None

    async def record(
        self,
        phone: str,
        event_type: str,
        transaction_id: str,
        payload: Optional[dict] = None,
    ) -> WebhookDelivery:
        """Record a delivery; raises IntegrityError if it was already recorded."""
        delivery = WebhookDelivery(
            phone=phone,
            event_type=event_type,
            transaction_id=transaction_id,
            payload=payload,
        )
        self.session.add(delivery)
        await self.session.flush()
        return delivery
