"""
Stripe Checkout integration.

Creates and expires hosted checkout sessions and verifies webhook events.
The Stripe SDK is synchronous, so calls run in a worker thread.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

import stripe

from booking_bot.config import get_settings

logger = logging.getLogger(__name__)


class StripeCheckoutError(Exception):
    """Raised when a Stripe call fails."""
    pass


@dataclass
class CheckoutSession:
    """Created checkout session."""

    id: str
    url: str


class StripeCheckoutClient:
    """Wrapper around stripe.checkout.Session."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        base_url: Optional[str] = None,
    ):
        """Initialize client.

        Args:
            api_key: Stripe secret key (defaults to settings)
            webhook_secret: Webhook signing secret (defaults to settings)
            base_url: Public base URL for redirects (defaults to settings)
        """
        settings = get_settings()
        self.api_key = api_key or settings.stripe_api_key
        self.webhook_secret = webhook_secret or settings.stripe_webhook_secret
        self.base_url = (base_url or settings.public_base_url).rstrip("/")

    async def create_checkout_session(
        self,
        amount: float,
        currency: str,
        description: str,
        expires_at: datetime,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        """Create a hosted checkout session for a one-off payment.

        Args:
            amount: Amount in major units (e.g. 120.50)
            currency: ISO currency code
            description: Line item name shown to the customer
            expires_at: Session expiry (Stripe allows 30 minutes to 24 hours)
            metadata: Correlation data echoed back in webhook events

        Returns:
            CheckoutSession with id and hosted URL

        Raises:
            StripeCheckoutError: If Stripe rejects the request
        """
        params: dict[str, Any] = {
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "unit_amount": int(round(amount * 100)),
                        "product_data": {"name": description},
                    },
                    "quantity": 1,
                }
            ],
            "expires_at": int(expires_at.timestamp()),
            "metadata": metadata,
            "payment_intent_data": {"metadata": metadata},
            "success_url": f"{self.base_url}/payments/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.base_url}/payments/cancelled",
        }

        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.create, api_key=self.api_key, **params
            )
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed: {e}")
            raise StripeCheckoutError(str(e)) from e

        logger.info(f"Checkout session {session.id} created for {amount:.2f} {currency}")
        return CheckoutSession(id=session.id, url=session.url)

    async def expire_checkout_session(self, session_id: str) -> None:
        """Expire an open checkout session so it can no longer be paid.

        Raises:
            StripeCheckoutError: If Stripe rejects the request
        """
        try:
            await asyncio.to_thread(
                stripe.checkout.Session.expire, session_id, api_key=self.api_key
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to expire checkout session {session_id}: {e}")
            raise StripeCheckoutError(str(e)) from e

        logger.info(f"Checkout session {session_id} expired")

    async def retrieve_checkout_session(self, session_id: str) -> tuple[str, str]:
        """Read a checkout session's state.

        Returns:
            (status, payment_status), e.g. ("complete", "paid")

        Raises:
            StripeCheckoutError: If Stripe rejects the request
        """
        try:
            session = await asyncio.to_thread(
                stripe.checkout.Session.retrieve, session_id, api_key=self.api_key
            )
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve checkout session {session_id}: {e}")
            raise StripeCheckoutError(str(e)) from e

        return session.status, session.payment_status

    def construct_event(self, payload: bytes, signature: str) -> Any:
        """Verify and parse a webhook payload.

        Raises:
            StripeCheckoutError: If the signature or payload is invalid
        """
        try:
            return stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except (ValueError, stripe.SignatureVerificationError) as e:
            logger.warning(f"Rejected Stripe webhook: {e}")
            raise StripeCheckoutError(str(e)) from e


# Singleton
_client: Optional[StripeCheckoutClient] = None


def get_stripe_client() -> StripeCheckoutClient:
    """Get singleton StripeCheckoutClient."""
    global _client
    if _client is None:
        _client = StripeCheckoutClient()
    return _client
