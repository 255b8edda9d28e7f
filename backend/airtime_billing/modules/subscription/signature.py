"""Aggregator webhook signature verification.

The aggregator signs each delivery with HMAC-SHA256 under a shared secret
and sends the hex digest in the ``x-signature`` header. The digest covers
the JSON body as the aggregator serialized it: compact separators, keys in
document order, non-ASCII left unescaped.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Optional

from airtime_billing.core.metrics import TELCO_WEBHOOK_SIGNATURE_FAILURES_TOTAL
from airtime_billing.modules.subscription.exceptions import WebhookAuthenticationError

logger = logging.getLogger(__name__)

SIGNATURE_PREFIX = "sha256="


def canonical_json(payload: Any) -> bytes:
    """Serialize a payload the way the aggregator does before signing."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def compute_signature(body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``body`` under ``secret``."""
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def _normalize(signature: str) -> str:
    signature = signature.strip()
    if signature.lower().startswith(SIGNATURE_PREFIX):
        signature = signature[len(SIGNATURE_PREFIX):]
    return signature.lower()


def signature_matches(body: bytes, signature: Optional[str], secret: str) -> bool:
    """Constant-time check of ``signature`` against the HMAC of ``body``."""
    if not signature:
        return False
    expected = compute_signature(body, secret)
    return hmac.compare_digest(expected.encode("ascii"), _normalize(signature).encode("utf-8"))


def verify_signature(
    payload: Any,
    signature: Optional[str],
    secret: Optional[str],
    raw_body: Optional[bytes] = None,
    allow_unsigned: bool = False,
) -> bool:
    """Verify an aggregator webhook signature.

    The signature is accepted when it matches the HMAC of the raw request
    body (when available) or of the canonical serialization of ``payload``.

    With no secret configured, verification is skipped only if
    ``allow_unsigned`` is set, which callers derive from a non-production
    configuration; otherwise the delivery is rejected.

    Args:
        payload: Parsed JSON body
        signature: Value of the x-signature header
        secret: Shared secret, empty when not configured
        raw_body: Request body bytes as received
        allow_unsigned: Skip verification when no secret is configured

    Returns:
        bool: True when the delivery may be processed
    """
    if not secret:
        if allow_unsigned:
            logger.warning(
                "TELCO_WEBHOOK_SECRET is not configured; accepting webhook WITHOUT signature verification"
            )
            return True
        logger.critical(
            "TELCO_WEBHOOK_SECRET is not configured; rejecting webhook, unsigned deliveries are disabled"
        )
        TELCO_WEBHOOK_SIGNATURE_FAILURES_TOTAL.inc()
        return False

    if raw_body is not None and signature_matches(raw_body, signature, secret):
        return True
    if signature_matches(canonical_json(payload), signature, secret):
        return True

    logger.warning(
        "Webhook signature verification failed",
        extra={"signature_present": bool(signature)},
    )
    TELCO_WEBHOOK_SIGNATURE_FAILURES_TOTAL.inc()
    return False


def require_valid_signature(
    payload: Any,
    signature: Optional[str],
    secret: Optional[str],
    raw_body: Optional[bytes] = None,
    allow_unsigned: bool = False,
) -> None:
    """Like ``verify_signature`` but raises on rejection.

    Raises:
        WebhookAuthenticationError: Signature missing or wrong
    """
    if not verify_signature(payload, signature, secret, raw_body=raw_body, allow_unsigned=allow_unsigned):
        raise WebhookAuthenticationError()
