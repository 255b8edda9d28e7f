"""Canonical phone number format.

The phone number is the user identity key: login, webhook processing and
admin lookups must all normalize through ``format_phone`` so that
``08012345678``, ``+234 801 234 5678`` and ``2348012345678`` resolve to the
same user.
"""

import re
from typing import Optional

from airtime_billing.core.config import settings

_NON_DIGITS = re.compile(r"\D")

# E.164 allows at most 15 digits
MAX_PHONE_DIGITS = 15


class InvalidPhoneNumberError(ValueError):
    """Raised when a value has no usable digits to form a phone number."""


def format_phone(raw: object, country_code: Optional[str] = None) -> str:
    """Normalize a phone number to its canonical, country-prefixed digit form.

    Rules:
    - strip every non-digit character
    - a leading ``0`` is the national trunk prefix and is replaced by the country code
    - otherwise the country code is prepended unless already present

    Args:
        raw: Phone number as received (string or number)
        country_code: Override for the configured PHONE_COUNTRY_CODE

    Returns:
        str: Canonical phone, e.g. ``2348012345678``

    Raises:
        InvalidPhoneNumberError: If the value contains no digits or too many
    """
    code = country_code or settings.PHONE_COUNTRY_CODE
    cleaned = _NON_DIGITS.sub("", str(raw if raw is not None else ""))
    if not cleaned:
        raise InvalidPhoneNumberError(f"Invalid phone number: {raw!r}")

    if cleaned.startswith("0"):
        cleaned = code + cleaned[1:]
    elif not cleaned.startswith(code):
        cleaned = code + cleaned

    if len(cleaned) > MAX_PHONE_DIGITS:
        raise InvalidPhoneNumberError(f"Phone number too long: {raw!r}")
    return cleaned
