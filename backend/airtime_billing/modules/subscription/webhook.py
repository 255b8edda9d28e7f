"""Aggregator webhook dispatcher.

Validates a delivery, normalizes the subscriber phone and routes the event
to its handler inside one transaction:

1. take the per-phone lock
2. drop replays of an already applied ``(phone, type, transaction)``
3. run the handler and record the delivery
4. commit, or roll back on any error

Errors never propagate: every delivery ends in a ``WebhookResult``.
"""

import logging
from datetime import datetime
from typing import Any, Callable, Optional

from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from airtime_billing.core.logging import log_error, log_warning, mask_phone
from airtime_billing.core.metrics import record_webhook_event
from airtime_billing.core.tracing import add_span_attributes, create_span, record_exception
from airtime_billing.modules.identity.phone import InvalidPhoneNumberError, format_phone
from airtime_billing.modules.subscription.exceptions import (
    ConsistencyWarning,
    SubscriptionError,
    WebhookValidationError,
)
from airtime_billing.modules.subscription.handlers import WebhookEventHandlers, details_snapshot
from airtime_billing.modules.subscription.models import WebhookEventType
from airtime_billing.modules.subscription.plans import utcnow
from airtime_billing.modules.subscription.repository import (
    SubscriptionRepository,
    WebhookDeliveryRepository,
)
from airtime_billing.modules.subscription.schemas import TelcoWebhookPayload, WebhookResult

logger = logging.getLogger(__name__)

SUCCESS_MESSAGE = "Webhook processed successfully"
DUPLICATE_MESSAGE = "Webhook already processed"

# Failure type recorded for each billing-failure event
FAILURE_TYPES = {
    WebhookEventType.INSUFFICIENT_BALANCE: "insufficient_balance",
    WebhookEventType.BILLING_FAILURE: "billing_failure",
}

# Unique keys that identify an already applied transaction. PostgreSQL
# reports the constraint name, SQLite the constrained columns.
REPLAY_KEYS = (
    "uq_webhook_deliveries_key",
    "uq_subscriptions_phone_transaction",
    "telco_webhook_deliveries.transaction_id",
    "subscriptions.aggregator_transaction_id",
)


def is_replay_collision(error: IntegrityError) -> bool:
    """Whether a unique violation came from a replayed transaction id."""
    message = str(error.orig)
    return any(key in message for key in REPLAY_KEYS)


class TelcoWebhookService:
    """Process aggregator lifecycle notifications.

    Args:
        session: Database session; committed or rolled back per delivery
        clock: Returns the current aware UTC time
    """

    def __init__(self, session: AsyncSession, clock: Callable[[], datetime] = utcnow):
        self.session = session
        self.handlers = WebhookEventHandlers(session, clock=clock)
        self.subscription_repo = SubscriptionRepository(session)
        self.delivery_repo = WebhookDeliveryRepository(session)

    @staticmethod
    def parse_payload(payload: Any) -> TelcoWebhookPayload:
        """Parse a delivery and check that it names a subscriber phone.

        Raises:
            WebhookValidationError: Payload malformed or phone missing/invalid
        """
        if isinstance(payload, TelcoWebhookPayload):
            parsed = payload
        else:
            try:
                parsed = TelcoWebhookPayload.model_validate(payload)
            except ValidationError as e:
                raise WebhookValidationError(
                    f"Invalid webhook payload: {e.error_count()} validation error(s)"
                ) from e

        if parsed.details is None or not parsed.details.phone:
            raise WebhookValidationError("No phone number in webhook payload")
        return parsed

    @staticmethod
    def canonical_phone(parsed: TelcoWebhookPayload) -> str:
        try:
            return format_phone(parsed.details.phone)
        except InvalidPhoneNumberError as e:
            raise WebhookValidationError(str(e)) from e

    async def process_aggregator_webhook(self, payload: Any) -> WebhookResult:
        """Process one aggregator delivery.

        Args:
            payload: Decoded JSON body (or an already parsed payload)

        Returns:
            WebhookResult: ``success`` is False when the aggregator should retry
        """
        event_label = "unknown"
        if isinstance(payload, dict) and isinstance(payload.get("type"), str):
            event_label = payload["type"]

        with create_span("telco_webhook.process", attributes={"webhook.event_type": event_label}):
            try:
                parsed = self.parse_payload(payload)
                phone = self.canonical_phone(parsed)
            except WebhookValidationError as e:
                log_warning(logger, f"Rejected webhook: {e}", event_type=event_label)
                record_webhook_event(event_label, "failed")
                return WebhookResult(success=False, message=str(e))

            transaction_id = parsed.details.telco_ref
            add_span_attributes({"webhook.phone": mask_phone(phone), "webhook.transaction_id": transaction_id or ""})
            logger.info(
                f"Processing aggregator webhook {event_label} for {mask_phone(phone)}",
                extra={"event_type": event_label, "transaction_id": transaction_id},
            )

            try:
                event_type = WebhookEventType(parsed.type)
            except ValueError:
                log_warning(logger, f"Unhandled webhook type: {parsed.type}", event_type=event_label)
                record_webhook_event(event_label, "ignored")
                return WebhookResult(success=True, message=SUCCESS_MESSAGE)

            try:
                await self._apply(event_type, phone, parsed)
                await self.session.commit()
            except ConsistencyWarning as e:
                await self.session.rollback()
                return self._duplicate(e, event_type, transaction_id)
            except IntegrityError as e:
                await self.session.rollback()
                if is_replay_collision(e):
                    warning = ConsistencyWarning(event_type.value, transaction_id or "")
                    return self._duplicate(warning, event_type, transaction_id)
                # Lost a race on another key (a first-time user row); the retry will apply it
                log_warning(
                    logger,
                    f"Webhook conflicted with a concurrent update: {e.orig}",
                    event_type=event_type.value,
                )
                record_webhook_event(event_type.value, "failed")
                return WebhookResult(success=False, message="Conflicting concurrent update, retry the delivery")
            except SubscriptionError as e:
                await self.session.rollback()
                log_warning(logger, f"Webhook not applied: {e}", event_type=event_type.value)
                record_webhook_event(event_type.value, "failed")
                return WebhookResult(success=False, message=str(e))
            except Exception as e:
                await self.session.rollback()
                record_exception(e)
                log_error(logger, f"Error processing webhook {event_type.value}", e)
                record_webhook_event(event_type.value, "failed")
                return WebhookResult(success=False, message=str(e) or "Unknown error")

            record_webhook_event(event_type.value, "processed")
            return WebhookResult(success=True, message=SUCCESS_MESSAGE)

    def _duplicate(
        self, warning: ConsistencyWarning, event_type: WebhookEventType, transaction_id: Optional[str]
    ) -> WebhookResult:
        log_warning(logger, str(warning), event_type=event_type.value, transaction_id=transaction_id)
        record_webhook_event(event_type.value, "duplicate")
        return WebhookResult(success=True, message=DUPLICATE_MESSAGE)

    async def _apply(self, event_type: WebhookEventType, phone: str, parsed: TelcoWebhookPayload) -> None:
        await self.subscription_repo.lock_phone(phone)

        transaction_id: Optional[str] = parsed.details.telco_ref
        if transaction_id and await self.delivery_repo.exists(phone, event_type.value, transaction_id):
            raise ConsistencyWarning(event_type.value, transaction_id)

        if event_type is WebhookEventType.SYNC_NOTIFICATION:
            await self.handlers.handle_new_subscription(phone, parsed)
        elif event_type is WebhookEventType.RENEWAL_NOTIFICATION:
            await self.handlers.handle_renewal(phone, parsed)
        elif event_type is WebhookEventType.UNSUBSCRIPTION_NOTIFICATION:
            await self.handlers.handle_unsubscription(phone, parsed)
        elif event_type in FAILURE_TYPES:
            await self.handlers.handle_billing_failed(phone, parsed, FAILURE_TYPES[event_type])
        else:
            raise SubscriptionError(f"No handler for webhook type {event_type.value}")

        if transaction_id:
            await self.delivery_repo.record(
                phone,
                event_type.value,
                transaction_id,
                payload=details_snapshot(parsed.details),
            )
