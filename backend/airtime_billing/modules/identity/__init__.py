"""Identity module.

Phone-keyed users and the canonical phone format shared by login and
billing webhooks.
"""

from airtime_billing.modules.identity.models import MirrorStatus, User
from airtime_billing.modules.identity.phone import InvalidPhoneNumberError, format_phone
from airtime_billing.modules.identity.repository import UserRepository

__all__ = [
    "MirrorStatus",
    "User",
    "InvalidPhoneNumberError",
    "format_phone",
    "UserRepository",
]
