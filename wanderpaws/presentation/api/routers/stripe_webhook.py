"""Stripe webhook endpoint."""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool

from ....core.dependencies import get_payment_notifications, get_stripe_service
from ....services.payment_notifications import PaymentNotificationHandler
from ....services.stripe_service import StripeService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/stripe", tags=["Stripe Payments"])


@router.post("/webhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe_service),
    notifications: PaymentNotificationHandler = Depends(get_payment_notifications),
) -> Dict[str, Any]:
    """Handle Stripe webhook events.

    Store outages propagate as 503 so Stripe redelivers the event later.
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")
    event = stripe_service.parse_webhook(payload, signature)
    logger.info("Stripe webhook received: %s", event.get("type"))
    return await run_in_threadpool(notifications.handle_event, event)
