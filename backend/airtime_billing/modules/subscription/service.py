"""Subscription query service.

Read-side operations on the ledger and the billing mirror, plus the
user-initiated cancellation. Access checks go through
``has_active_subscription``, which also performs lazy expiry: a mirror
still marked active past its end date is downgraded to expired on read,
together with the ledger rows whose cycle has ended.
"""

import logging
import math
import uuid
from datetime import datetime, time
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from airtime_billing.core.config import settings
from airtime_billing.core.logging import log_info
from airtime_billing.core.metrics import SUBSCRIPTION_LAZY_EXPIRIES_TOTAL
from airtime_billing.modules.identity.models import MirrorStatus, User
from airtime_billing.modules.identity.repository import UserRepository
from airtime_billing.modules.subscription.exceptions import UserNotFoundError
from airtime_billing.modules.subscription.mirror import mirror_cancellation, mirror_expiry
from airtime_billing.modules.subscription.models import AuditEventType, SubscriptionStatus
from airtime_billing.modules.subscription.plans import days_remaining, ensure_utc, utcnow
from airtime_billing.modules.subscription.repository import (
    SubscriptionEventRepository,
    SubscriptionRepository,
)
from airtime_billing.modules.subscription.schemas import (
    ActiveSubscriptionsResponse,
    CancelSubscriptionResponse,
    SubscriptionHistoryResponse,
    SubscriptionResponse,
    SubscriptionStatsResponse,
    SubscriptionStatusResponse,
    UserBillingResponse,
    UserSubscriptionResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_CANCELLATION_REASON = "user_cancelled"


class SubscriptionService:
    """Service for subscription queries and user cancellations.

    Args:
        session: Database session
        clock: Returns the current aware UTC time
    """

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock
        self.user_repo = UserRepository(session)
        self.subscription_repo = SubscriptionRepository(session)
        self.event_repo = SubscriptionEventRepository(session)

    async def _get_user(self, user_id: uuid.UUID) -> User:
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id=user_id)
        return user

    # ==================== Access Checks ====================

    async def has_active_subscription(self, user_id: uuid.UUID) -> bool:
        """Check whether a user currently has access.

        Returns False for unknown users and non-active mirrors. An active
        mirror whose end date has passed is persisted as expired, along with
        the lapsed ledger rows, before returning False.
        """
        user = await self.user_repo.get_by_id(user_id)
        if user is None:
            return False
        if user.subscription_status != MirrorStatus.ACTIVE.value:
            return False

        now = self.clock()
        end_date = ensure_utc(user.subscription_end_date)
        if end_date is not None and end_date <= now:
            expired_rows = await self._expire_lapsed_rows(user, now)
            mirror_expiry(user)
            await self.session.commit()
            SUBSCRIPTION_LAZY_EXPIRIES_TOTAL.inc()
            log_info(
                logger,
                f"Subscription expired for user {user_id}",
                user_id=str(user_id),
                expired_rows=expired_rows,
            )
            return False
        return True

    async def _expire_lapsed_rows(self, user: User, now: datetime) -> int:
        """Close active ledger rows whose cycle ended at or before ``now``."""
        await self.subscription_repo.lock_phone(user.phone_formatted)
        expired = 0
        for subscription in await self.subscription_repo.list_active_for_user(user.id):
            end_date = ensure_utc(subscription.end_date)
            if end_date is None or end_date > now:
                continue
            status_before = subscription.status
            subscription.status = SubscriptionStatus.EXPIRED.value
            await self.event_repo.append(
                subscription,
                AuditEventType.EXPIRED.value,
                status_before,
                note="billing cycle ended without renewal",
            )
            expired += 1
        return expired

    async def get_subscription_status(self, user_id: uuid.UUID) -> SubscriptionStatusResponse:
        """Access status with days left and a renewal reminder flag."""
        is_active = await self.has_active_subscription(user_id)
        user = await self.user_repo.get_by_id(user_id)
        if not is_active or user is None:
            return SubscriptionStatusResponse(
                is_active=False,
                days_left=0,
                plan_type=user.subscription_plan if user else None,
                should_renew=False,
            )

        days_left = days_remaining(user.subscription_end_date, self.clock())
        return SubscriptionStatusResponse(
            is_active=True,
            days_left=days_left,
            plan_type=user.subscription_plan,
            should_renew=days_left <= settings.RENEWAL_REMINDER_DAYS,
        )

    # ==================== Lookups ====================

    async def get_user_subscription(self, user_id: uuid.UUID) -> UserSubscriptionResponse:
        """Get a user and their most recent active subscription.

        Raises:
            UserNotFoundError: No user with this ID
        """
        user = await self._get_user(user_id)
        subscription = await self.subscription_repo.get_active_for_user(user.id)
        return UserSubscriptionResponse(
            user=UserBillingResponse.model_validate(user),
            active_subscription=SubscriptionResponse.model_validate(subscription) if subscription else None,
        )

    async def get_subscription_history(
        self,
        user_id: uuid.UUID,
        limit: int = 10,
        offset: int = 0,
    ) -> SubscriptionHistoryResponse:
        """Get a page of the user's subscription rows, newest first."""
        rows, total = await self.subscription_repo.get_history(user_id, limit=limit, offset=offset)
        return SubscriptionHistoryResponse(
            total=total,
            subscriptions=[SubscriptionResponse.model_validate(row) for row in rows],
        )

    # ==================== Cancellation ====================

    async def cancel_subscription(
        self,
        user_id: uuid.UUID,
        reason: Optional[str] = None,
    ) -> CancelSubscriptionResponse:
        """Cancel the user's subscription at their request, ending access now.

        Args:
            user_id: User ID
            reason: Cancellation reason, ``user_cancelled`` when omitted

        Returns:
            CancelSubscriptionResponse: When and how many rows were cancelled

        Raises:
            UserNotFoundError: No user with this ID
        """
        user = await self._get_user(user_id)
        now = self.clock()
        reason = reason or DEFAULT_CANCELLATION_REASON

        await self.subscription_repo.lock_phone(user.phone_formatted)
        active = await self.subscription_repo.list_active_for_user(user.id)
        for subscription in active:
            status_before = subscription.status
            subscription.status = SubscriptionStatus.CANCELLED.value
            subscription.end_date = now
            subscription.cancelled_at = now
            subscription.cancellation_reason = reason
            await self.event_repo.append(
                subscription,
                AuditEventType.USER_CANCELLED.value,
                status_before,
                note=reason,
            )

        mirror_cancellation(user, now)
        await self.session.commit()

        logger.info(f"User {user_id} cancelled subscription", extra={"cancelled_count": len(active)})
        return CancelSubscriptionResponse(
            success=True,
            message="Subscription cancelled successfully",
            cancelled_at=now,
            cancelled_count=len(active),
        )

    # ==================== Admin ====================

    async def get_subscription_stats(self) -> SubscriptionStatsResponse:
        """Aggregate counts, revenue of active rows and plan distribution."""
        now = self.clock()
        start_of_day = datetime.combine(now.date(), time.min, tzinfo=now.tzinfo)
        return SubscriptionStatsResponse(
            total=await self.subscription_repo.count_all(),
            active=await self.subscription_repo.count_by_status(SubscriptionStatus.ACTIVE.value),
            today=await self.subscription_repo.count_created_since(start_of_day),
            total_revenue=await self.subscription_repo.sum_active_amount(),
            plan_distribution=await self.subscription_repo.active_plan_distribution(),
        )

    async def get_all_active_subscriptions(self, page: int = 1, limit: int = 20) -> ActiveSubscriptionsResponse:
        """Get a page of active subscriptions ordered by soonest end date."""
        page = max(1, page)
        rows, total = await self.subscription_repo.list_active(limit=limit, offset=(page - 1) * limit)
        return ActiveSubscriptionsResponse(
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
            current_page=page,
            subscriptions=[SubscriptionResponse.model_validate(row) for row in rows],
        )
