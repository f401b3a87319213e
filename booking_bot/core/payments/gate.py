"""
Payment gate for provisional bookings.

Bookings for a paid service are created as pending, a checkout link is
sent to the customer, and the conversation waits. The link and its
bookings settle together: paid confirms all of them, expired or failed
cancels all of them.
"""

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from booking_bot.config import Settings, get_settings
from booking_bot.infra.messaging import MessagingClient, get_messaging_client
from booking_bot.infra.stripe_checkout import (
    StripeCheckoutClient,
    StripeCheckoutError,
    get_stripe_client,
)
from booking_bot.models.database import PaymentLinkStatus
from booking_bot.core.booking.context import (
    ConversationContext,
    MultiSessionStep,
    PaymentStatus,
)
from booking_bot.core.booking.errors import BookingPersistenceError, PaymentLinkError
from booking_bot.core.booking.policy import BookingPolicy
from booking_bot.core.booking.repository import BookingRepository, get_booking_repository
from booking_bot.core.scheduling.types import ServiceConfig

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


PAYMENT_LINK_SENT = (
    "I've sent you a secure payment link via WhatsApp. Please complete the "
    "payment to confirm your booking. I'll be here when you're ready! 😊"
)
PAYMENT_CONFIRMED = (
    "✅ Payment confirmed! Your booking is now complete. You'll receive a "
    "confirmation email shortly. Looking forward to seeing you!"
)
PAYMENT_EXPIRED = (
    "⏰ Your payment link has expired. To proceed with the booking, please "
    "start over and I'll generate a new payment link for you."
)
PAYMENT_FAILED = (
    "❌ There was an issue with your payment. Please try booking again, and "
    "I'll assist you with a new payment link."
)
PAYMENT_UNAVAILABLE = (
    "I'm sorry, our payment system is temporarily unavailable. Please try "
    "again later or contact our support team."
)

_LINK_TO_PAYMENT_STATUS = {
    PaymentLinkStatus.PENDING: PaymentStatus.PENDING,
    PaymentLinkStatus.PAID: PaymentStatus.PAID,
    PaymentLinkStatus.EXPIRED: PaymentStatus.EXPIRED,
    PaymentLinkStatus.FAILED: PaymentStatus.FAILED,
    PaymentLinkStatus.CANCELLED: PaymentStatus.FAILED,
}

_WEBHOOK_STATUS = {
    "checkout.session.completed": PaymentLinkStatus.PAID,
    "checkout.session.async_payment_succeeded": PaymentLinkStatus.PAID,
    "checkout.session.expired": PaymentLinkStatus.EXPIRED,
    "checkout.session.async_payment_failed": PaymentLinkStatus.FAILED,
    "payment_intent.payment_failed": PaymentLinkStatus.FAILED,
}


@dataclass(frozen=True)
class PaymentRequirement:
    """Whether a service must be paid upfront, and how much."""

    required: bool
    amount: float = 0.0
    deposit_amount: float = 0.0

    @property
    def charge_per_session(self) -> float:
        """Deposit when one is configured, otherwise the full price."""
        return self.deposit_amount if self.deposit_amount > 0 else self.amount


@dataclass
class PaymentResolution:
    """Reply for a conversation that is waiting on a payment."""

    status: PaymentStatus
    reply: str

    @property
    def terminal(self) -> bool:
        """True when the conversation is finished."""
        return self.status != PaymentStatus.PENDING


def payment_requirement_for(service: ServiceConfig) -> PaymentRequirement:
    """Payment requirement of a catalog service."""
    if not service.requires_payment:
        return PaymentRequirement(required=False)
    return PaymentRequirement(
        required=True,
        amount=service.cost,
        deposit_amount=service.deposit_amount,
    )


def format_payment_message(description: str, amount: float, url: str, ttl_hours: int) -> str:
    """Outbound message carrying the checkout link."""
    return (
        f"💳 *Payment Required*\n\n"
        f"To confirm your {description}, please complete the payment of "
        f"CHF {amount:.2f}.\n\n"
        f"Click here to pay securely with Stripe:\n{url}\n\n"
        f"Payment link expires in {ttl_hours} hours.\n\n"
        f"Once payment is confirmed, I'll finalize your booking! 🎉"
    )


class PaymentGate:
    """
    Decides, requests and interprets payments for provisional bookings.

    Status changes arrive either from the customer's next message (lazy
    check, including expiry) or from a processor webhook. Both go through
    check_status and settle the link together with its bookings.
    """

    def __init__(
        self,
        repository: Optional[BookingRepository] = None,
        stripe_client: Optional[StripeCheckoutClient] = None,
        messaging: Optional[MessagingClient] = None,
        config: Optional[Settings] = None,
    ):
        """Initialize gate with optional dependencies.

        Args:
            repository: Booking repository
            stripe_client: Stripe checkout client
            messaging: Outbound messaging client
            config: Settings (defaults to cached settings)
        """
        self._repository = repository
        self._stripe = stripe_client
        self._messaging = messaging
        self._config = config if config is not None else get_settings()

    def _get_repository(self) -> BookingRepository:
        if self._repository is None:
            self._repository = get_booking_repository()
        return self._repository

    def _get_stripe(self) -> StripeCheckoutClient:
        if self._stripe is None:
            self._stripe = get_stripe_client()
        return self._stripe

    def _get_messaging(self) -> MessagingClient:
        if self._messaging is None:
            self._messaging = get_messaging_client()
        return self._messaging

    def is_payment_enabled(self, policy: BookingPolicy) -> bool:
        """Payments are on and a processor key is configured."""
        return policy.payments_enabled and bool(self._config.stripe_api_key)

    async def requires_payment(self, service_id: str) -> PaymentRequirement:
        """Payment requirement for a service by ID."""
        service = await self._get_repository().get_service(service_id)
        if service is None:
            logger.warning(f"Service {service_id} not found, no payment required")
            return PaymentRequirement(required=False)
        return payment_requirement_for(service)

    async def create_and_send_link(
        self,
        context: ConversationContext,
        booking_ids: list[str],
        description: str,
        amount: float,
        now: Optional[datetime] = None,
    ) -> str:
        """Create a checkout link for provisional bookings and send it.

        On success the context enters awaiting_payment.

        Args:
            context: Conversation context (mutated)
            booking_ids: Pending bookings covered by this payment
            description: What is being paid for
            amount: Total amount to charge

        Returns:
            Confirmation text for the customer

        Raises:
            PaymentLinkError: If the link cannot be created
        """
        now = now if now is not None else _utcnow()
        repository = self._get_repository()
        ttl_hours = self._config.payment_link_ttl_hours
        expires_at = now + timedelta(hours=ttl_hours)

        link_id: Optional[str] = None
        try:
            link_id = await repository.create_payment_link(
                contact_id=context.contact_id,
                booking_ids=booking_ids,
                amount=amount,
                currency=self._config.payment_currency,
                description=description,
                expires_at=expires_at,
                conversation_id=context.conversation_id,
            )
            session = await self._get_stripe().create_checkout_session(
                amount=amount,
                currency=self._config.payment_currency,
                description=description,
                expires_at=expires_at,
                metadata={
                    "payment_link_id": link_id,
                    "conversation_id": context.conversation_id,
                    "booking_ids": ",".join(booking_ids),
                },
            )
            await repository.update_payment_link(
                link_id,
                checkout_session_id=session.id,
                checkout_url=session.url,
            )
        except (StripeCheckoutError, BookingPersistenceError) as e:
            if link_id is not None:
                await self._mark_link_failed(link_id)
            raise PaymentLinkError(f"Could not create payment link: {e}") from e

        context.payment_link_id = link_id
        context.payment_status = PaymentStatus.PENDING
        context.payment_expires_at = expires_at
        context.pending_booking_ids = list(booking_ids)
        context.requires_payment = True
        context.payment_amount = amount
        context.multi_session_step = MultiSessionStep.AWAITING_PAYMENT

        text = format_payment_message(description, amount, session.url, ttl_hours)
        message_id = await self._get_messaging().send(context.phone_number, text)
        if message_id is None:
            logger.warning(
                f"Payment link {link_id} not delivered to {context.phone_number}, "
                f"returning it in the reply"
            )
            return text

        logger.info(
            f"Payment link {link_id} sent for {len(booking_ids)} bookings "
            f"({amount:.2f} {self._config.payment_currency})"
        )
        return PAYMENT_LINK_SENT

    async def _mark_link_failed(self, link_id: str) -> None:
        # Bookings stay pending: the caller applies the enforcement policy
        try:
            await self._get_repository().update_payment_link(
                link_id, status=PaymentLinkStatus.FAILED
            )
        except BookingPersistenceError:
            logger.error(f"Could not mark payment link {link_id} as failed", exc_info=True)

    async def check_status(
        self,
        payment_link_id: str,
        now: Optional[datetime] = None,
    ) -> PaymentStatus:
        """Current status of a payment link.

        A pending link past its expiry is expired here. A pending link with a
        checkout session is polled at the processor.
        """
        now = now if now is not None else _utcnow()
        repository = self._get_repository()

        link = await repository.get_payment_link(payment_link_id)
        if link is None:
            logger.warning(f"Payment link {payment_link_id} not found")
            return PaymentStatus.FAILED

        if link.status != PaymentLinkStatus.PENDING:
            return _LINK_TO_PAYMENT_STATUS[link.status]

        if now > link.expires_at:
            await repository.settle_payment_link(
                link.id, PaymentLinkStatus.EXPIRED, reason="Payment link expired", now=now
            )
            return PaymentStatus.EXPIRED

        if link.checkout_session_id:
            polled = await self._poll_processor(link.checkout_session_id)
            if polled is not None:
                await repository.settle_payment_link(link.id, polled, now=now)
                return _LINK_TO_PAYMENT_STATUS[polled]

        return PaymentStatus.PENDING

    async def _poll_processor(self, checkout_session_id: str) -> Optional[PaymentLinkStatus]:
        try:
            status, payment_status = await self._get_stripe().retrieve_checkout_session(
                checkout_session_id
            )
        except StripeCheckoutError:
            # Processor unreachable: keep waiting, next message checks again
            return None

        if payment_status == "paid":
            return PaymentLinkStatus.PAID
        if status == "expired":
            return PaymentLinkStatus.EXPIRED
        return None

    async def resolve(
        self,
        context: ConversationContext,
        now: Optional[datetime] = None,
    ) -> PaymentResolution:
        """Answer a message in a conversation that awaits payment."""
        now = now if now is not None else _utcnow()

        if context.payment_link_id is None:
            # Awaiting payment without a link: nothing can be paid
            if context.pending_booking_ids:
                await self._get_repository().cancel_pending_bookings(
                    context.pending_booking_ids, "Payment link missing"
                )
            return PaymentResolution(PaymentStatus.FAILED, PAYMENT_FAILED)

        status = await self.check_status(context.payment_link_id, now=now)
        context.payment_status = status

        if status == PaymentStatus.PAID:
            logger.info(f"Payment confirmed for conversation {context.conversation_id}")
            return PaymentResolution(status, PAYMENT_CONFIRMED)
        if status == PaymentStatus.EXPIRED:
            return PaymentResolution(status, PAYMENT_EXPIRED)
        if status == PaymentStatus.FAILED:
            return PaymentResolution(status, PAYMENT_FAILED)

        return PaymentResolution(status, self._pending_reply(context, now))

    def _pending_reply(self, context: ConversationContext, now: datetime) -> str:
        expires_at = context.payment_expires_at or now
        minutes = max(1, math.ceil((expires_at - now).total_seconds() / 60))
        return (
            f"I'm still waiting for your payment confirmation. You have {minutes} "
            f"minutes remaining to complete the payment. Once done, your booking "
            f"will be automatically confirmed! 💳"
        )

    async def handle_webhook_event(self, event: Any) -> Optional[PaymentStatus]:
        """Apply a processor event to its payment link.

        Returns:
            The status applied, or None if the event was ignored
        """
        event_type = event["type"]
        link_status = _WEBHOOK_STATUS.get(event_type)
        if link_status is None:
            logger.debug(f"Ignoring Stripe event {event_type}")
            return None

        obj = event["data"]["object"]
        if event_type == "checkout.session.completed" and obj.get("payment_status") != "paid":
            # Delayed payment methods complete later via async_payment_succeeded
            return None

        link_id = (obj.get("metadata") or {}).get("payment_link_id")
        if not link_id and obj.get("object") == "checkout.session":
            link = await self._get_repository().get_payment_link_by_checkout_session(obj["id"])
            link_id = link.id if link else None
        if not link_id:
            logger.warning(f"Stripe event {event_type} has no matching payment link")
            return None

        settled = await self._get_repository().settle_payment_link(
            link_id, link_status, reason=f"Payment {link_status.value} ({event_type})"
        )
        if not settled:
            logger.info(f"Payment link {link_id} already settled, ignoring {event_type}")
        return _LINK_TO_PAYMENT_STATUS[link_status]

    async def cancel_payment_link(self, payment_link_id: str) -> bool:
        """Withdraw a pending link and release its bookings."""
        repository = self._get_repository()
        link = await repository.get_payment_link(payment_link_id)
        if link is None or link.status != PaymentLinkStatus.PENDING:
            return False

        if link.checkout_session_id:
            try:
                await self._get_stripe().expire_checkout_session(link.checkout_session_id)
            except StripeCheckoutError:
                logger.warning(
                    f"Checkout session for link {payment_link_id} could not be expired"
                )

        return await repository.settle_payment_link(
            payment_link_id, PaymentLinkStatus.CANCELLED, reason="Payment link cancelled"
        )

    async def sweep_expired_links(self, now: Optional[datetime] = None) -> int:
        """Expire every overdue pending link and release its bookings.

        Returns:
            Number of links expired by this sweep
        """
        now = now if now is not None else _utcnow()
        repository = self._get_repository()
        expired = 0

        for link in await repository.list_expired_pending_links(now):
            if await repository.settle_payment_link(
                link.id, PaymentLinkStatus.EXPIRED, reason="Payment link expired", now=now
            ):
                expired += 1

        if expired:
            logger.info(f"Expired {expired} overdue payment links")
        return expired


# Singleton
_gate: Optional[PaymentGate] = None


def get_payment_gate() -> PaymentGate:
    """Get singleton PaymentGate."""
    global _gate
    if _gate is None:
        _gate = PaymentGate()
    return _gate
