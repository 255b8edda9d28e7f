"""FastAPI dependencies for subscription routes.

Caller identity is asserted by the authenticating gateway in front of this
service through the ``x-user-id`` header; admin routes use a shared token.
"""

import hmac
import uuid
from typing import Optional

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from airtime_billing.core.config import settings
from airtime_billing.core.database import get_session
from airtime_billing.modules.subscription.service import SubscriptionService

SUBSCRIPTION_REQUIRED = "SUBSCRIPTION_REQUIRED"


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="x-user-id"),
) -> uuid.UUID:
    """Get the authenticated caller's user ID."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing x-user-id header",
        )
    try:
        return uuid.UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid x-user-id header",
        )


async def require_subscription_owner(
    user_id: uuid.UUID,
    current_user_id: uuid.UUID = Depends(get_current_user_id),
) -> uuid.UUID:
    """Allow a per-user route only for the user it names."""
    if user_id != current_user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not allowed to access another user's subscription",
        )
    return user_id


async def require_admin(
    x_admin_token: Optional[str] = Header(None, alias="x-admin-token"),
) -> None:
    """Allow admin routes only with the configured ``ADMIN_API_TOKEN``."""
    expected = settings.ADMIN_API_TOKEN
    if not expected or not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )


async def require_active_subscription(
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
) -> uuid.UUID:
    """Reject the request with 403 unless the user has an active subscription.

    ``user_id`` is resolved from the route path (or query) of the endpoint
    using the dependency.
    """
    service = SubscriptionService(session)
    if not await service.has_active_subscription(user_id):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": SUBSCRIPTION_REQUIRED,
                "message": "An active subscription is required",
            },
        )
    return user_id
