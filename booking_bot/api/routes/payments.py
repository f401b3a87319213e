"""
Payment Webhook Endpoint.

Receives Stripe events and settles payment links with their bookings.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException, Request, status
from pydantic import BaseModel

from booking_bot.core.payments import get_payment_gate
from booking_bot.infra.stripe_checkout import StripeCheckoutError, get_stripe_client

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


class WebhookResponse(BaseModel):
    """Acknowledgement of a processed event."""

    received: bool
    status: Optional[str] = None


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    summary="Stripe webhook",
    description="Verifies the Stripe signature and applies the event to its payment link.",
    responses={400: {"description": "Invalid payload or signature"}},
)
async def stripe_webhook(
    request: Request,
    stripe_signature: str = Header(..., alias="Stripe-Signature"),
) -> WebhookResponse:
    """Handle a Stripe webhook event. Repeated deliveries are no-ops."""
    payload = await request.body()

    try:
        event = get_stripe_client().construct_event(payload, stripe_signature)
    except StripeCheckoutError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid webhook",
        )

    applied = await get_payment_gate().handle_webhook_event(event)
    logger.info(f"Stripe event {event['type']} processed")
    return WebhookResponse(received=True, status=applied.value if applied else None)
