"""Pydantic schemas for the subscription lifecycle engine."""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator


# ==================== Aggregator Webhook ====================

class TelcoWebhookProduct(BaseModel):
    """Product block of an aggregator delivery."""
    id: Optional[str] = Field(None, description="Aggregator product ID")

    class Config:
        extra = "allow"
        coerce_numbers_to_str = True


class TelcoWebhookDetails(BaseModel):
    """Details block of an aggregator delivery.

    Only ``phone`` is mandatory, and the dispatcher checks it itself so a
    delivery without one is reported rather than rejected by validation.
    Unknown keys are kept: the whole block is stored as the row snapshot.
    """
    phone: Optional[str] = Field(None, description="Subscriber phone as sent by the aggregator")
    amount: Optional[Any] = Field(None, description="Billed amount in kobo")
    telco_ref: Optional[str] = Field(None, description="Aggregator transaction reference")
    telco_status_code: Optional[str] = None
    telco_status_message: Optional[str] = None
    channel: Optional[str] = None
    telco: Optional[str] = None
    reason: Optional[str] = None

    class Config:
        extra = "allow"
        coerce_numbers_to_str = True

    @field_validator("phone", "telco_ref", "telco_status_code", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value


class TelcoWebhookPayload(BaseModel):
    """Aggregator delivery ``{type, telco, product, details}``."""
    type: Optional[str] = Field(None, description="Event type, e.g. SYNC_NOTIFICATION")
    telco: Optional[str] = None
    product: Optional[TelcoWebhookProduct] = None
    details: Optional[TelcoWebhookDetails] = None

    class Config:
        extra = "allow"


class WebhookResult(BaseModel):
    """Outcome of processing one delivery."""
    success: bool
    message: str


# ==================== Subscription Responses ====================

class SubscriptionResponse(BaseModel):
    """Subscription ledger row."""
    id: uuid.UUID
    user_id: uuid.UUID
    plan_type: str
    amount: int
    status: str
    channel: str
    telco: str
    phone: str
    start_date: datetime
    end_date: Optional[datetime] = None
    auto_renewal: bool
    renewal_count: int
    aggregator_product_id: Optional[str] = None
    aggregator_transaction_id: Optional[str] = None
    telco_ref: Optional[str] = None
    telco_status_code: Optional[str] = None
    telco_status_message: Optional[str] = None
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserBillingResponse(BaseModel):
    """User with the billing mirror fields."""
    id: uuid.UUID
    phone: str
    phone_formatted: str
    name: Optional[str] = None
    subscription_status: str
    subscription_plan: Optional[str] = None
    subscription_end_date: Optional[datetime] = None

    class Config:
        from_attributes = True


class UserSubscriptionResponse(BaseModel):
    """A user and their current active subscription, if any."""
    user: UserBillingResponse
    active_subscription: Optional[SubscriptionResponse] = None


class SubscriptionStatusResponse(BaseModel):
    """Access status of a user."""
    is_active: bool
    days_left: int = Field(..., ge=0)
    plan_type: Optional[str] = None
    should_renew: bool


class SubscriptionHistoryResponse(BaseModel):
    """A page of a user's subscription rows, newest first."""
    total: int
    subscriptions: list[SubscriptionResponse]


class CancelSubscriptionRequest(BaseModel):
    """Body of a user-initiated cancellation."""
    reason: Optional[str] = Field(None, max_length=255)


class CancelSubscriptionResponse(BaseModel):
    """Result of a user-initiated cancellation."""
    success: bool
    message: str
    cancelled_at: datetime
    cancelled_count: int


class SubscriptionStatsResponse(BaseModel):
    """Aggregate subscription statistics."""
    total: int
    active: int
    today: int
    total_revenue: int = Field(..., description="Sum of active subscription amounts in kobo")
    plan_distribution: dict[str, int]


class ActiveSubscriptionsResponse(BaseModel):
    """A page of active subscriptions ordered by soonest end date."""
    total: int
    total_pages: int
    current_page: int
    subscriptions: list[SubscriptionResponse]
