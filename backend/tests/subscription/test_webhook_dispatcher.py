"""Tests for webhook validation and routing in TelcoWebhookService."""

from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from airtime_billing.core.metrics import TELCO_WEBHOOK_EVENTS_TOTAL
from airtime_billing.modules.identity.models import User
from airtime_billing.modules.subscription.models import Subscription, WebhookDelivery
from airtime_billing.modules.subscription.schemas import TelcoWebhookPayload
from airtime_billing.modules.subscription.webhook import TelcoWebhookService, is_replay_collision


def events_counted(event_type: str, outcome: str) -> float:
    return TELCO_WEBHOOK_EVENTS_TOTAL.labels(event_type=event_type, outcome=outcome)._value.get()


async def count_rows(session, model) -> int:
    return int(await session.scalar(select(func.count()).select_from(model)))


@pytest.fixture
def webhook_service(async_db, clock) -> TelcoWebhookService:
    return TelcoWebhookService(async_db, clock=clock)


class TestPayloadValidation:
    """Deliveries that cannot be processed have no side effects."""

    @pytest.mark.asyncio
    async def test_missing_phone(self, webhook_service, async_db, webhook_payload):
        payload = webhook_payload()
        del payload["details"]["phone"]

        result = await webhook_service.process_aggregator_webhook(payload)

        assert result.success is False
        assert result.message == "No phone number in webhook payload"
        assert await count_rows(async_db, User) == 0
        assert await count_rows(async_db, Subscription) == 0

    @pytest.mark.asyncio
    async def test_missing_details(self, webhook_service, async_db):
        result = await webhook_service.process_aggregator_webhook({"type": "SYNC_NOTIFICATION"})

        assert result.success is False
        assert await count_rows(async_db, User) == 0

    @pytest.mark.asyncio
    async def test_blank_phone(self, webhook_service, webhook_payload):
        result = await webhook_service.process_aggregator_webhook(webhook_payload(phone="   "))

        assert result.success is False

    @pytest.mark.asyncio
    async def test_phone_without_digits(self, webhook_service, async_db, webhook_payload):
        result = await webhook_service.process_aggregator_webhook(webhook_payload(phone="unknown"))

        assert result.success is False
        assert "Invalid phone number" in result.message
        assert await count_rows(async_db, User) == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("payload", [[], "SYNC_NOTIFICATION", {"details": "08012345678"}])
    async def test_malformed_payload(self, webhook_service, payload):
        result = await webhook_service.process_aggregator_webhook(payload)

        assert result.success is False
        assert result.message.startswith("Invalid webhook payload")

    @pytest.mark.asyncio
    async def test_numeric_phone_is_accepted(self, webhook_service, async_db, webhook_payload):
        result = await webhook_service.process_aggregator_webhook(webhook_payload(phone=8012345678))

        assert result.success is True
        user = await async_db.scalar(select(User))
        assert user.phone_formatted == "2348012345678"

    @pytest.mark.asyncio
    async def test_accepts_parsed_payload(self, webhook_service, async_db, webhook_payload):
        parsed = TelcoWebhookPayload.model_validate(webhook_payload())

        result = await webhook_service.process_aggregator_webhook(parsed)

        assert result.success is True
        assert await count_rows(async_db, Subscription) == 1


class TestRouting:
    """Event type routing."""

    @pytest.mark.asyncio
    async def test_unknown_type_is_acknowledged(self, webhook_service, async_db, webhook_payload):
        before = events_counted("SUBSCRIPTION_PAUSED", "ignored")

        result = await webhook_service.process_aggregator_webhook(webhook_payload("SUBSCRIPTION_PAUSED"))

        assert result.success is True
        assert await count_rows(async_db, User) == 0
        assert await count_rows(async_db, Subscription) == 0
        assert events_counted("SUBSCRIPTION_PAUSED", "ignored") == before + 1

    @pytest.mark.asyncio
    async def test_processed_delivery_is_recorded(self, webhook_service, async_db, webhook_payload):
        before = events_counted("SYNC_NOTIFICATION", "processed")

        await webhook_service.process_aggregator_webhook(webhook_payload())

        delivery = await async_db.scalar(select(WebhookDelivery))
        assert delivery.phone == "2348012345678"
        assert delivery.event_type == "SYNC_NOTIFICATION"
        assert delivery.transaction_id == "TRX-001"
        assert events_counted("SYNC_NOTIFICATION", "processed") == before + 1

    @pytest.mark.asyncio
    async def test_delivery_without_transaction_is_not_recorded(self, webhook_service, async_db, webhook_payload):
        payload = webhook_payload()
        del payload["details"]["telco_ref"]

        result = await webhook_service.process_aggregator_webhook(payload)

        assert result.success is True
        assert await count_rows(async_db, WebhookDelivery) == 0
        assert await count_rows(async_db, Subscription) == 1

    @pytest.mark.asyncio
    async def test_same_transaction_different_type_is_applied(self, webhook_service, async_db, webhook_payload):
        """The replay key includes the event type."""
        await webhook_service.process_aggregator_webhook(webhook_payload(telco_ref="TRX-9"))

        result = await webhook_service.process_aggregator_webhook(
            webhook_payload("INSUFFICIENT_BALANCE", telco_ref="TRX-9")
        )

        assert result.success is True
        assert result.message == "Webhook processed successfully"
        assert await count_rows(async_db, WebhookDelivery) == 2

    @pytest.mark.asyncio
    async def test_handler_error_is_rolled_back(self, webhook_service, async_db, webhook_payload):
        webhook_service.handlers.handle_new_subscription = AsyncMock(side_effect=RuntimeError("database went away"))

        result = await webhook_service.process_aggregator_webhook(webhook_payload())

        assert result.success is False
        assert result.message == "database went away"
        assert await count_rows(async_db, WebhookDelivery) == 0

    @pytest.mark.asyncio
    async def test_phone_lock_is_taken_before_handling(self, webhook_service, webhook_payload):
        calls = []
        webhook_service.subscription_repo.lock_phone = AsyncMock(side_effect=lambda phone: calls.append(phone))

        await webhook_service.process_aggregator_webhook(webhook_payload())

        assert calls == ["2348012345678"]


def unique_violation(message: str) -> IntegrityError:
    return IntegrityError("INSERT ...", {}, Exception(message))


class TestUniqueViolations:
    """Only collisions on a transaction key count as replays."""

    @pytest.mark.parametrize(
        "message",
        [
            'duplicate key value violates unique constraint "uq_webhook_deliveries_key"',
            'duplicate key value violates unique constraint "uq_subscriptions_phone_transaction"',
            "UNIQUE constraint failed: telco_webhook_deliveries.phone, "
            "telco_webhook_deliveries.event_type, telco_webhook_deliveries.transaction_id",
            "UNIQUE constraint failed: subscriptions.phone, subscriptions.aggregator_transaction_id",
        ],
    )
    def test_transaction_keys_are_replays(self, message):
        assert is_replay_collision(unique_violation(message)) is True

    @pytest.mark.parametrize(
        "message",
        [
            'duplicate key value violates unique constraint "users_phone_formatted_key"',
            "UNIQUE constraint failed: users.phone_formatted",
        ],
    )
    def test_other_keys_are_not_replays(self, message):
        assert is_replay_collision(unique_violation(message)) is False

    @pytest.mark.asyncio
    async def test_user_row_race_is_retried_not_dropped(self, webhook_service, async_db, webhook_payload):
        before = events_counted("SYNC_NOTIFICATION", "duplicate")
        webhook_service.handlers.handle_new_subscription = AsyncMock(
            side_effect=unique_violation("UNIQUE constraint failed: users.phone_formatted")
        )

        result = await webhook_service.process_aggregator_webhook(webhook_payload(telco_ref="TRX-NEW"))

        assert result.success is False
        assert result.message == "Conflicting concurrent update, retry the delivery"
        assert events_counted("SYNC_NOTIFICATION", "duplicate") == before
        assert await count_rows(async_db, WebhookDelivery) == 0

    @pytest.mark.asyncio
    async def test_transaction_key_race_is_acknowledged(self, webhook_service, webhook_payload):
        webhook_service.handlers.handle_new_subscription = AsyncMock(
            side_effect=unique_violation(
                "UNIQUE constraint failed: subscriptions.phone, subscriptions.aggregator_transaction_id"
            )
        )

        result = await webhook_service.process_aggregator_webhook(webhook_payload())

        assert result.success is True
        assert result.message == "Webhook already processed"
