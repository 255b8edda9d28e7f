"""Handlers for aggregator lifecycle events.

Each handler applies one event to the subscription ledger and the user's
billing mirror inside the caller's transaction. Handlers flush but never
commit; ``TelcoWebhookService`` owns the transaction, the per-phone lock
and replay detection.
"""

import logging
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from airtime_billing.core.logging import mask_phone
from airtime_billing.modules.identity.models import User
from airtime_billing.modules.identity.repository import UserRepository
from airtime_billing.modules.subscription.exceptions import ConsistencyWarning, UserNotFoundError
from airtime_billing.modules.subscription.mirror import (
    mirror_activation,
    mirror_billing_failure,
    mirror_cancellation,
)
from airtime_billing.modules.subscription.models import (
    AuditEventType,
    Channel,
    PlanType,
    Subscription,
    SubscriptionStatus,
    Telco,
    WebhookEventType,
)
from airtime_billing.modules.subscription.plans import (
    amount_for_plan,
    compute_end_date,
    plan_from_amount,
    utcnow,
)
from airtime_billing.modules.subscription.repository import (
    SubscriptionEventRepository,
    SubscriptionRepository,
)
from airtime_billing.modules.subscription.schemas import TelcoWebhookDetails, TelcoWebhookPayload

logger = logging.getLogger(__name__)

DEFAULT_TELCO_STATUS_CODE = "0"
DEFAULT_UNSUBSCRIBE_REASON = "unsubscribed"

# Widths of ledger columns filled from aggregator fields
PRODUCT_ID_WIDTH = Subscription.__table__.c.aggregator_product_id.type.length
STATUS_CODE_WIDTH = Subscription.__table__.c.telco_status_code.type.length

# Spellings aggregators use for the same network
_TELCO_ALIASES = {
    "9MOBILE": Telco.NINEMOBILE,
    "ETISALAT": Telco.NINEMOBILE,
}


def normalize_channel(value: Optional[str]) -> str:
    """Map a channel name to a known channel, defaulting to SMS."""
    if value:
        try:
            return Channel(str(value).strip().upper()).value
        except ValueError:
            pass
    return Channel.SMS.value


def normalize_telco(value: Optional[str]) -> str:
    """Map a network name to a known telco, defaulting to MTN."""
    if value:
        key = str(value).strip().upper().replace(" ", "").replace("-", "")
        if key in _TELCO_ALIASES:
            return _TELCO_ALIASES[key].value
        try:
            return Telco(key).value
        except ValueError:
            logger.debug(f"Unknown telco {value!r}, defaulting to {Telco.MTN.value}")
    return Telco.MTN.value


def billed_amount(amount: object, plan: PlanType) -> int:
    """Amount to store on a row: the billed integer amount, else the plan price."""
    if isinstance(amount, bool):
        return amount_for_plan(plan)
    if isinstance(amount, int):
        return amount
    if isinstance(amount, float) and amount.is_integer():
        return int(amount)
    if isinstance(amount, str) and amount.strip().isdigit():
        return int(amount.strip())
    return amount_for_plan(plan)


def clip(value: Optional[str], width: int) -> Optional[str]:
    """Truncate an aggregator value to the width of its ledger column."""
    if value is None:
        return None
    return value[:width]


def details_snapshot(details: TelcoWebhookDetails) -> dict:
    """The details block as received, for ``aggregator_response``."""
    return details.model_dump(mode="json", exclude_unset=True)


class WebhookEventHandlers:
    """Apply aggregator events to the ledger and the billing mirror.

    Args:
        session: Database session; the caller commits
        clock: Returns the current aware UTC time
    """

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.clock = clock
        self.user_repo = UserRepository(session)
        self.subscription_repo = SubscriptionRepository(session)
        self.event_repo = SubscriptionEventRepository(session)

    async def _require_user(self, phone: str) -> User:
        user = await self.user_repo.get_by_phone(phone)
        if user is None:
            raise UserNotFoundError(phone=phone)
        return user

    async def _ensure_new_transaction(self, phone: str, event_type: WebhookEventType, transaction_id: Optional[str]) -> None:
        if transaction_id and await self.subscription_repo.get_by_transaction(phone, transaction_id):
            raise ConsistencyWarning(event_type.value, transaction_id)

    async def _create_row(
        self,
        user: User,
        phone: str,
        payload: TelcoWebhookPayload,
        plan: PlanType,
        start: datetime,
        end: datetime,
        renewal_count: int,
    ) -> Subscription:
        details = payload.details
        return await self.subscription_repo.create_subscription(
            user_id=user.id,
            aggregator_product_id=clip(payload.product.id, PRODUCT_ID_WIDTH) if payload.product else None,
            aggregator_transaction_id=details.telco_ref,
            telco_ref=details.telco_ref,
            plan_type=plan.value,
            amount=billed_amount(details.amount, plan),
            channel=normalize_channel(details.channel),
            telco=normalize_telco(details.telco or payload.telco),
            phone=phone,
            status=SubscriptionStatus.ACTIVE.value,
            start_date=start,
            end_date=end,
            auto_renewal=True,
            renewal_count=renewal_count,
            telco_status_code=clip(details.telco_status_code or DEFAULT_TELCO_STATUS_CODE, STATUS_CODE_WIDTH),
            telco_status_message=details.telco_status_message,
            aggregator_response=details_snapshot(details),
        )

    # ==================== SYNC_NOTIFICATION ====================

    async def handle_new_subscription(self, phone: str, payload: TelcoWebhookPayload) -> Subscription:
        """Activate a subscription for a (possibly new) user.

        Creates the user when the phone is unknown. Any row still active for
        the user is superseded so that at most one row stays active.

        Args:
            phone: Canonical phone
            payload: Parsed delivery

        Returns:
            Subscription: The new active row

        Raises:
            ConsistencyWarning: The transaction already created a row
        """
        details = payload.details
        transaction_id = details.telco_ref
        await self._ensure_new_transaction(phone, WebhookEventType.SYNC_NOTIFICATION, transaction_id)

        now = self.clock()
        plan = plan_from_amount(details.amount)
        end_date = compute_end_date(now, plan)

        user, created = await self.user_repo.find_or_create_by_phone(phone, details.phone)
        if created:
            logger.info(f"Created new user from webhook: {mask_phone(phone)}")

        for previous in await self.subscription_repo.list_active_for_user(user.id):
            status_before = previous.status
            previous.status = SubscriptionStatus.EXPIRED.value
            previous.end_date = now
            await self.event_repo.append(
                previous,
                AuditEventType.SUPERSEDED.value,
                status_before,
                transaction_id=transaction_id,
                note="replaced by a new subscription",
            )

        subscription = await self._create_row(
            user, phone, payload, plan, start=now, end=end_date, renewal_count=0
        )
        await self.event_repo.append(
            subscription,
            AuditEventType.ACTIVATED.value,
            None,
            transaction_id=transaction_id,
            payload=details_snapshot(details),
        )
        mirror_activation(user, plan, end_date)
        await self.session.flush()

        logger.info(
            f"Subscription activated for {mask_phone(phone)}",
            extra={"plan_type": plan.value, "subscription_id": str(subscription.id)},
        )
        return subscription

    # ==================== RENEWAL_NOTIFICATION ====================

    async def handle_renewal(self, phone: str, payload: TelcoWebhookPayload) -> Subscription:
        """Extend the user's active subscription by one cycle from now.

        Without an active row (the renewal overtook the activation, or
        followed a billing failure) a fresh active row is created with
        ``renewal_count`` 1. Either way the mirror becomes active again.

        Raises:
            UserNotFoundError: No user has this phone
            ConsistencyWarning: The fallback row's transaction already exists
        """
        details = payload.details
        user = await self._require_user(phone)

        now = self.clock()
        plan = plan_from_amount(details.amount)
        end_date = compute_end_date(now, plan)

        subscription = await self.subscription_repo.get_active_for_user(user.id)
        if subscription is not None:
            status_before = subscription.status
            subscription.plan_type = plan.value
            subscription.amount = billed_amount(details.amount, plan)
            subscription.end_date = end_date
            subscription.renewal_count = (subscription.renewal_count or 0) + 1
            subscription.telco_ref = details.telco_ref
            subscription.telco_status_code = clip(details.telco_status_code, STATUS_CODE_WIDTH)
            if details.telco_status_message:
                subscription.telco_status_message = details.telco_status_message
            subscription.aggregator_response = details_snapshot(details)
            await self.event_repo.append(
                subscription,
                AuditEventType.RENEWED.value,
                status_before,
                transaction_id=details.telco_ref,
                payload=details_snapshot(details),
            )
        else:
            await self._ensure_new_transaction(phone, WebhookEventType.RENEWAL_NOTIFICATION, details.telco_ref)
            subscription = await self._create_row(
                user, phone, payload, plan, start=now, end=end_date, renewal_count=1
            )
            await self.event_repo.append(
                subscription,
                AuditEventType.RENEWED.value,
                None,
                transaction_id=details.telco_ref,
                note="no active subscription; created from renewal",
                payload=details_snapshot(details),
            )

        mirror_activation(user, plan, end_date)
        await self.session.flush()

        logger.info(
            f"Renewal processed for {mask_phone(phone)}",
            extra={"renewal_count": subscription.renewal_count, "subscription_id": str(subscription.id)},
        )
        return subscription

    # ==================== UNSUBSCRIPTION_NOTIFICATION ====================

    async def handle_unsubscription(self, phone: str, payload: TelcoWebhookPayload) -> int:
        """Cancel every active row of the user, ending access now.

        Returns:
            int: Number of rows cancelled (0 when nothing was active)

        Raises:
            UserNotFoundError: No user has this phone
        """
        details = payload.details
        user = await self._require_user(phone)
        now = self.clock()
        reason = details.reason or DEFAULT_UNSUBSCRIBE_REASON

        active = await self.subscription_repo.list_active_for_user(user.id)
        for subscription in active:
            status_before = subscription.status
            subscription.status = SubscriptionStatus.CANCELLED.value
            subscription.end_date = now
            subscription.cancelled_at = now
            subscription.cancellation_reason = reason
            subscription.aggregator_response = details_snapshot(details)
            await self.event_repo.append(
                subscription,
                AuditEventType.UNSUBSCRIBED.value,
                status_before,
                transaction_id=details.telco_ref,
                note=reason,
                payload=details_snapshot(details),
            )

        mirror_cancellation(user, now)
        await self.session.flush()

        logger.info(f"Unsubscription processed for {mask_phone(phone)}", extra={"cancelled_count": len(active)})
        return len(active)

    # ==================== INSUFFICIENT_BALANCE / BILLING_FAILURE ====================

    async def handle_billing_failed(self, phone: str, payload: TelcoWebhookPayload, failure_type: str) -> int:
        """Move every active row of the user to ``failed``.

        The end date is left alone: a later renewal can resume the
        subscription.

        Args:
            phone: Canonical phone
            payload: Parsed delivery
            failure_type: ``insufficient_balance`` or ``billing_failure``

        Returns:
            int: Number of rows marked failed

        Raises:
            UserNotFoundError: No user has this phone
        """
        details = payload.details
        user = await self._require_user(phone)

        active = await self.subscription_repo.list_active_for_user(user.id)
        for subscription in active:
            status_before = subscription.status
            subscription.status = SubscriptionStatus.FAILED.value
            if details.telco_status_code is not None:
                subscription.telco_status_code = clip(details.telco_status_code, STATUS_CODE_WIDTH)
            if details.telco_status_message:
                subscription.telco_status_message = details.telco_status_message
            subscription.aggregator_response = details_snapshot(details)
            await self.event_repo.append(
                subscription,
                AuditEventType.BILLING_FAILED.value,
                status_before,
                transaction_id=details.telco_ref,
                note=failure_type,
                payload=details_snapshot(details),
            )

        mirror_billing_failure(user)
        await self.session.flush()

        logger.info(
            f"Billing failure ({failure_type}) for {mask_phone(phone)}",
            extra={"failed_count": len(active)},
        )
        return len(active)
