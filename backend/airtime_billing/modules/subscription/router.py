"""API Router for the subscription lifecycle engine.

Aggregator webhook intake, per-user subscription queries and admin views.
"""

import json
import logging
import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from airtime_billing.core.config import settings
from airtime_billing.core.database import get_session
from airtime_billing.core.logging import log_error
from airtime_billing.modules.subscription.dependencies import (
    require_admin,
    require_subscription_owner,
)
from airtime_billing.modules.subscription.exceptions import (
    UserNotFoundError,
    WebhookAuthenticationError,
)
from airtime_billing.modules.subscription.schemas import (
    ActiveSubscriptionsResponse,
    CancelSubscriptionRequest,
    CancelSubscriptionResponse,
    SubscriptionHistoryResponse,
    SubscriptionStatsResponse,
    SubscriptionStatusResponse,
    UserSubscriptionResponse,
    WebhookResult,
)
from airtime_billing.modules.subscription.service import SubscriptionService
from airtime_billing.modules.subscription.signature import require_valid_signature
from airtime_billing.modules.subscription.webhook import TelcoWebhookService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/subscriptions", tags=["subscriptions"])


# ==================== Aggregator Webhook ====================

@router.post("/webhook/telco", response_model=WebhookResult)
async def telco_webhook(
    request: Request,
    x_signature: Optional[str] = Header(None, alias="x-signature"),
    session: AsyncSession = Depends(get_session),
):
    """Receive an aggregator lifecycle notification.

    - 401 when the signature is missing or wrong
    - 400 when the body is not JSON or the event could not be applied
      (the aggregator retries)
    - 200 when applied, a replay, or an unknown event type
    """
    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid JSON body",
        )

    try:
        require_valid_signature(
            payload,
            x_signature,
            settings.TELCO_WEBHOOK_SECRET,
            raw_body=raw_body,
            allow_unsigned=settings.unsigned_webhooks_allowed,
        )
    except WebhookAuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        )

    try:
        result = await TelcoWebhookService(session).process_aggregator_webhook(payload)
    except Exception as e:
        log_error(logger, "Unexpected error in telco webhook", e)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Internal server error",
        )

    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content=result.model_dump(),
        )
    return result


# ==================== Admin ====================

@router.get(
    "/admin/stats",
    response_model=SubscriptionStatsResponse,
    dependencies=[Depends(require_admin)],
)
async def get_subscription_stats(
    session: AsyncSession = Depends(get_session),
):
    """Get aggregate subscription statistics."""
    service = SubscriptionService(session)
    return await service.get_subscription_stats()


@router.get(
    "/admin/active",
    response_model=ActiveSubscriptionsResponse,
    dependencies=[Depends(require_admin)],
)
async def get_active_subscriptions(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
):
    """List active subscriptions, soonest ending first."""
    service = SubscriptionService(session)
    return await service.get_all_active_subscriptions(page=page, limit=limit)


# ==================== Parameterized routes MUST be at the end ====================

@router.get(
    "/{user_id}",
    response_model=UserSubscriptionResponse,
    dependencies=[Depends(require_subscription_owner)],
)
async def get_user_subscription(
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    """Get a user's billing mirror and current active subscription."""
    service = SubscriptionService(session)
    try:
        return await service.get_user_subscription(user_id)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.get(
    "/{user_id}/history",
    response_model=SubscriptionHistoryResponse,
    dependencies=[Depends(require_subscription_owner)],
)
async def get_subscription_history(
    user_id: uuid.UUID,
    limit: int = Query(10, ge=1, le=100),
    offset: int = Query(0, ge=0),
    session: AsyncSession = Depends(get_session),
):
    """Get a page of a user's subscriptions, newest first."""
    service = SubscriptionService(session)
    return await service.get_subscription_history(user_id, limit=limit, offset=offset)


@router.get(
    "/{user_id}/status",
    response_model=SubscriptionStatusResponse,
    dependencies=[Depends(require_subscription_owner)],
)
async def get_subscription_status(
    user_id: uuid.UUID,
    session: AsyncSession = Depends(get_session),
):
    """Check access, days left and whether a renewal reminder is due."""
    service = SubscriptionService(session)
    return await service.get_subscription_status(user_id)


@router.post(
    "/{user_id}/cancel",
    response_model=CancelSubscriptionResponse,
    dependencies=[Depends(require_subscription_owner)],
)
async def cancel_subscription(
    user_id: uuid.UUID,
    data: Optional[CancelSubscriptionRequest] = None,
    session: AsyncSession = Depends(get_session),
):
    """Cancel a user's subscription immediately."""
    service = SubscriptionService(session)
    try:
        return await service.cancel_subscription(user_id, reason=data.reason if data else None)
    except UserNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
