"""User billing mirror synchronization.

The mirror is the copy of the subscription state kept on the user row. Every
ledger transition has a matching function here and handlers call both
inside the same transaction, so ledger and mirror never drift.

Policy for the end date: activation and renewal set it to the new cycle
end, any cancellation sets it to the cancellation time (the ledger rows are
closed at the same instant), and a billing failure leaves it untouched
because failure is a pause that a later renewal can lift.
"""

from datetime import datetime
from typing import Union

from airtime_billing.modules.identity.models import MirrorStatus, User
from airtime_billing.modules.subscription.models import PlanType


def mirror_activation(user: User, plan: Union[PlanType, str], end_date: datetime) -> None:
    """A new subscription or a renewal granted access until ``end_date``."""
    user.subscription_status = MirrorStatus.ACTIVE.value
    user.subscription_plan = PlanType(plan).value
    user.subscription_end_date = end_date


def mirror_cancellation(user: User, cancelled_at: datetime) -> None:
    user.subscription_status = MirrorStatus.CANCELLED.value
    user.subscription_end_date = cancelled_at


def mirror_billing_failure(user: User) -> None:
    user.subscription_status = MirrorStatus.FAILED.value


def mirror_expiry(user: User) -> None:
    user.subscription_status = MirrorStatus.EXPIRED.value
