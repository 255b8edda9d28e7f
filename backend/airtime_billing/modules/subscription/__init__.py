"""Subscription module.

Airtime subscription lifecycle: aggregator webhook processing, the
subscription ledger, the user billing mirror and subscription queries.
"""

from airtime_billing.modules.subscription.router import router
from airtime_billing.modules.subscription.service import SubscriptionService
from airtime_billing.modules.subscription.webhook import TelcoWebhookService
from airtime_billing.modules.subscription.models import (
    PLAN_AMOUNTS,
    AuditEventType,
    Channel,
    PlanType,
    Subscription,
    SubscriptionEvent,
    SubscriptionStatus,
    Telco,
    WebhookDelivery,
    WebhookEventType,
)

__all__ = [
    "router",
    "SubscriptionService",
    "TelcoWebhookService",
    "PLAN_AMOUNTS",
    "AuditEventType",
    "Channel",
    "PlanType",
    "Subscription",
    "SubscriptionEvent",
    "SubscriptionStatus",
    "Telco",
    "WebhookDelivery",
    "WebhookEventType",
]
