"""Tests for SubscriptionService queries, lazy expiry and cancellation."""

import uuid

import pytest
from sqlalchemy import select

from airtime_billing.core.metrics import SUBSCRIPTION_LAZY_EXPIRIES_TOTAL
from airtime_billing.modules.identity.models import MirrorStatus, User
from airtime_billing.modules.identity.repository import UserRepository
from airtime_billing.modules.subscription.exceptions import UserNotFoundError
from airtime_billing.modules.subscription.models import AuditEventType, Subscription, SubscriptionStatus
from airtime_billing.modules.subscription.plans import ensure_utc
from airtime_billing.modules.subscription.repository import SubscriptionEventRepository
from airtime_billing.modules.subscription.service import SubscriptionService
from airtime_billing.modules.subscription.webhook import TelcoWebhookService


@pytest.fixture
def webhook_service(async_db, clock) -> TelcoWebhookService:
    return TelcoWebhookService(async_db, clock=clock)


@pytest.fixture
def service(async_db, clock) -> SubscriptionService:
    return SubscriptionService(async_db, clock=clock)


async def subscribe(webhook_service, webhook_payload, phone="08012345678", **kwargs) -> User:
    result = await webhook_service.process_aggregator_webhook(webhook_payload(phone=phone, **kwargs))
    assert result.success is True
    user = await UserRepository(webhook_service.session).get_by_phone("234" + phone.lstrip("0"))
    return user


class TestHasActiveSubscription:
    """Access checks with lazy expiry."""

    @pytest.mark.asyncio
    async def test_unknown_user(self, service):
        assert await service.has_active_subscription(uuid.uuid4()) is False

    @pytest.mark.asyncio
    async def test_active_user(self, service, webhook_service, webhook_payload):
        user = await subscribe(webhook_service, webhook_payload, amount=50000)

        assert await service.has_active_subscription(user.id) is True

    @pytest.mark.asyncio
    async def test_inactive_user(self, service, async_db):
        user = await UserRepository(async_db).create_from_phone("08012345678")
        await async_db.commit()

        assert await service.has_active_subscription(user.id) is False

    @pytest.mark.asyncio
    async def test_lapsed_subscription_is_expired_on_read(self, service, webhook_service, async_db, clock, webhook_payload):
        user = await subscribe(webhook_service, webhook_payload, amount=10000)
        before = SUBSCRIPTION_LAZY_EXPIRIES_TOTAL._value.get()
        clock.advance(days=1, seconds=1)

        assert await service.has_active_subscription(user.id) is False

        refreshed = await async_db.scalar(
            select(User).where(User.id == user.id).execution_options(populate_existing=True)
        )
        assert refreshed.subscription_status == MirrorStatus.EXPIRED.value
        assert SUBSCRIPTION_LAZY_EXPIRIES_TOTAL._value.get() == before + 1

        # Already expired: no second downgrade
        assert await service.has_active_subscription(user.id) is False
        assert SUBSCRIPTION_LAZY_EXPIRIES_TOTAL._value.get() == before + 1

    @pytest.mark.asyncio
    async def test_lazy_expiry_closes_the_ledger_row(self, service, webhook_service, async_db, clock, webhook_payload):
        user = await subscribe(webhook_service, webhook_payload, amount=10000)
        clock.advance(days=2)

        assert await service.has_active_subscription(user.id) is False

        row = await async_db.scalar(select(Subscription).execution_options(populate_existing=True))
        assert row.status == SubscriptionStatus.EXPIRED.value
        events = await SubscriptionEventRepository(async_db).list_for_subscription(row.id)
        expiry = next(event for event in events if event.event_type == AuditEventType.EXPIRED.value)
        assert expiry.status_before == SubscriptionStatus.ACTIVE.value
        assert expiry.status_after == SubscriptionStatus.EXPIRED.value

        current = await service.get_user_subscription(user.id)
        assert current.user.subscription_status == MirrorStatus.EXPIRED.value
        assert current.active_subscription is None

        stats = await service.get_subscription_stats()
        assert stats.active == 0
        assert stats.total_revenue == 0
        assert stats.plan_distribution == {}
        assert (await service.get_all_active_subscriptions()).total == 0

    @pytest.mark.asyncio
    async def test_end_to_end_monthly_then_insufficient_balance(
        self, service, webhook_service, async_db, webhook_payload
    ):
        await webhook_service.process_aggregator_webhook(
            webhook_payload(phone="+2348012345678", amount=150000, telco_ref="TRX-100")
        )
        user = await UserRepository(async_db).get_by_phone("2348012345678")
        assert await service.has_active_subscription(user.id) is True

        await webhook_service.process_aggregator_webhook(
            webhook_payload("INSUFFICIENT_BALANCE", phone="+2348012345678", telco_ref="TRX-101")
        )

        assert await service.has_active_subscription(user.id) is False
        assert user.subscription_status == MirrorStatus.FAILED.value
        rows = (await async_db.execute(select(Subscription))).scalars().all()
        assert [row.status for row in rows] == [SubscriptionStatus.FAILED.value]


class TestSubscriptionStatus:
    @pytest.mark.asyncio
    async def test_days_left_and_renewal_reminder(self, service, webhook_service, clock, webhook_payload):
        user = await subscribe(webhook_service, webhook_payload, amount=50000)

        status = await service.get_subscription_status(user.id)
        assert status.is_active is True
        assert status.days_left == 7
        assert status.plan_type == "weekly"
        assert status.should_renew is False

        clock.advance(days=5)
        status = await service.get_subscription_status(user.id)
        assert status.days_left == 2
        assert status.should_renew is True

    @pytest.mark.asyncio
    async def test_inactive(self, service):
        status = await service.get_subscription_status(uuid.uuid4())

        assert status.is_active is False
        assert status.days_left == 0
        assert status.should_renew is False


class TestGetUserSubscription:
    @pytest.mark.asyncio
    async def test_returns_user_and_active_row(self, service, webhook_service, webhook_payload):
        user = await subscribe(webhook_service, webhook_payload)

        response = await service.get_user_subscription(user.id)

        assert response.user.id == user.id
        assert response.user.subscription_status == "active"
        assert response.active_subscription is not None
        assert response.active_subscription.aggregator_transaction_id == "TRX-001"

    @pytest.mark.asyncio
    async def test_without_active_row(self, service, async_db):
        user = await UserRepository(async_db).create_from_phone("08012345678")
        await async_db.commit()

        response = await service.get_user_subscription(user.id)

        assert response.active_subscription is None

    @pytest.mark.asyncio
    async def test_unknown_user(self, service):
        with pytest.raises(UserNotFoundError):
            await service.get_user_subscription(uuid.uuid4())


class TestCancelSubscription:
    @pytest.mark.asyncio
    async def test_cancels_and_ends_access_now(self, service, webhook_service, async_db, clock, webhook_payload):
        user = await subscribe(webhook_service, webhook_payload)
        cancelled_at = clock.advance(days=2)

        response = await service.cancel_subscription(user.id, reason="too expensive")

        assert response.success is True
        assert response.cancelled_count == 1
        assert response.cancelled_at == cancelled_at
        assert user.subscription_status == MirrorStatus.CANCELLED.value
        assert ensure_utc(user.subscription_end_date) == cancelled_at
        assert await service.has_active_subscription(user.id) is False

        row = await async_db.scalar(select(Subscription))
        assert row.status == SubscriptionStatus.CANCELLED.value
        assert row.cancellation_reason == "too expensive"
        events = await SubscriptionEventRepository(async_db).list_for_subscription(row.id)
        assert AuditEventType.USER_CANCELLED.value in {event.event_type for event in events}

    @pytest.mark.asyncio
    async def test_default_reason(self, service, webhook_service, async_db, webhook_payload):
        user = await subscribe(webhook_service, webhook_payload)

        await service.cancel_subscription(user.id)

        row = await async_db.scalar(select(Subscription))
        assert row.cancellation_reason == "user_cancelled"

    @pytest.mark.asyncio
    async def test_unknown_user(self, service):
        with pytest.raises(UserNotFoundError):
            await service.cancel_subscription(uuid.uuid4())


class TestHistoryAndAdmin:
    @pytest.mark.asyncio
    async def test_history_is_paginated(self, service, webhook_service, clock, webhook_payload):
        user = await subscribe(webhook_service, webhook_payload, telco_ref="TRX-1", amount=10000)
        for ref in ("TRX-2", "TRX-3"):
            clock.advance(days=1)
            await webhook_service.process_aggregator_webhook(webhook_payload(telco_ref=ref, amount=10000))

        page = await service.get_subscription_history(user.id, limit=2, offset=0)

        assert page.total == 3
        assert len(page.subscriptions) == 2
        assert page.subscriptions[0].aggregator_transaction_id == "TRX-3"

        rest = await service.get_subscription_history(user.id, limit=2, offset=2)
        assert [row.aggregator_transaction_id for row in rest.subscriptions] == ["TRX-1"]

    @pytest.mark.asyncio
    async def test_stats(self, async_db, webhook_service, webhook_payload):
        await subscribe(webhook_service, webhook_payload, phone="08010000001", amount=150000, telco_ref="A")
        await subscribe(webhook_service, webhook_payload, phone="08010000002", amount=50000, telco_ref="B")
        await subscribe(webhook_service, webhook_payload, phone="08010000003", amount=50000, telco_ref="C")
        await webhook_service.process_aggregator_webhook(
            webhook_payload("UNSUBSCRIPTION_NOTIFICATION", phone="08010000003", telco_ref="C-U")
        )

        stats = await SubscriptionService(async_db).get_subscription_stats()

        assert stats.total == 3
        assert stats.active == 2
        assert stats.today == 3
        assert stats.total_revenue == 200000
        assert stats.plan_distribution == {"monthly": 1, "weekly": 1}

    @pytest.mark.asyncio
    async def test_active_subscriptions_page(self, service, webhook_service, webhook_payload):
        await subscribe(webhook_service, webhook_payload, phone="08010000001", amount=150000, telco_ref="A")
        await subscribe(webhook_service, webhook_payload, phone="08010000002", amount=10000, telco_ref="B")
        await subscribe(webhook_service, webhook_payload, phone="08010000003", amount=50000, telco_ref="C")

        page = await service.get_all_active_subscriptions(page=1, limit=2)

        assert page.total == 3
        assert page.total_pages == 2
        assert page.current_page == 1
        assert [row.plan_type for row in page.subscriptions] == ["daily", "weekly"]
