"""Subscription module exceptions."""

from typing import Optional


class SubscriptionError(Exception):
    """Base error for subscription lifecycle processing."""


class WebhookValidationError(SubscriptionError):
    """Webhook payload is malformed, e.g. has no subscriber phone."""


class WebhookAuthenticationError(SubscriptionError):
    """Webhook signature is missing or does not match."""

    def __init__(self, message: str = "Invalid webhook signature"):
        super().__init__(message)


class UserNotFoundError(SubscriptionError):
    """An event or request references a user that does not exist."""

    def __init__(self, phone: Optional[str] = None, user_id: Optional[object] = None):
        self.phone = phone
        self.user_id = user_id
        if phone is not None:
            message = f"User not found for phone: {phone}"
        else:
            message = f"User not found: {user_id}"
        super().__init__(message)


class ConsistencyWarning(SubscriptionError):
    """A delivery repeats a transaction whose effect was already applied."""

    def __init__(self, event_type: str, transaction_id: str):
        self.event_type = event_type
        self.transaction_id = transaction_id
        super().__init__(
            f"Duplicate {event_type} for transaction {transaction_id}; already applied"
        )
