"""
Booking intent router.

Top-level dispatcher for booking conversations. An existing context always
wins over a fresh intent classification; a context awaiting payment is
answered by the payment gate before anything else.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Union

from booking_bot.config import Settings, get_settings
from booking_bot.core.payments import PaymentGate, get_payment_gate
from booking_bot.infra.background import BackgroundTasks, get_background_tasks
from booking_bot.infra.redis import append_analytics_event
from .context import BookingIntent, ConversationContext, MultiSessionStep
from .email_guard import EmailCollectionGuard
from .extractor import BookingExtractor, get_booking_extractor
from .flows import (
    CancellationHandler,
    FlowResult,
    MultiSessionHandler,
    NewBookingHandler,
    ReschedulingHandler,
)
from .flows.base import FlowHandler
from .messages import CONTEXT_LOST, TURN_FAILED
from .policy import PolicyProvider
from .repository import BookingRepository, get_booking_repository
from .store import ContextStore, get_context_store

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


@dataclass
class TurnResult:
    """Reply for one inbound message plus where the conversation stands."""

    reply: str
    conversation_id: str
    intent: Optional[BookingIntent] = None
    step: Optional[str] = None
    finished: bool = False


class BookingIntentRouter:
    """
    Routes each inbound message to the sub-flow that owns the conversation.

    Usage:
        router = get_booking_router()
        reply = await router.route("conv-1", "cancel please", "cancel",
                                   contact_id="...", phone_number="+41...")
    """

    def __init__(
        self,
        store: Optional[ContextStore] = None,
        repository: Optional[BookingRepository] = None,
        extractor: Optional[BookingExtractor] = None,
        payment_gate: Optional[PaymentGate] = None,
        policy_provider: Optional[PolicyProvider] = None,
        email_guard: Optional[EmailCollectionGuard] = None,
        background: Optional[BackgroundTasks] = None,
        config: Optional[Settings] = None,
    ):
        """Initialize router with optional dependencies (for testing).

        Args:
            store: Context store
            repository: Booking repository
            extractor: NLU extractor
            payment_gate: Payment gate
            policy_provider: Policy settings provider
            email_guard: Email collection guard
            background: Side-channel task dispatcher
            config: Settings
        """
        self._store = store if store is not None else get_context_store()
        self._repository = repository if repository is not None else get_booking_repository()
        self._extractor = extractor if extractor is not None else get_booking_extractor()
        self._payment_gate = payment_gate if payment_gate is not None else get_payment_gate()
        self._policy_provider = (
            policy_provider if policy_provider is not None else PolicyProvider(self._repository)
        )
        self._background = background if background is not None else get_background_tasks()
        config = config if config is not None else get_settings()

        shared = dict(repository=self._repository, extractor=self._extractor, config=config)
        multi_session = MultiSessionHandler(payment_gate=self._payment_gate, **shared)
        self._handlers: dict[BookingIntent, FlowHandler] = {
            BookingIntent.CANCEL: CancellationHandler(**shared),
            BookingIntent.RESCHEDULE: ReschedulingHandler(**shared),
            BookingIntent.NEW: NewBookingHandler(
                email_guard=email_guard or EmailCollectionGuard(self._repository),
                multi_session=multi_session,
                **shared,
            ),
        }

    async def route(
        self,
        conversation_id: str,
        message: str,
        detected_intent: Optional[Union[BookingIntent, str]] = None,
        contact_id: Optional[str] = None,
        phone_number: Optional[str] = None,
    ) -> str:
        """Handle one inbound message and return the reply text."""
        result = await self.process_turn(
            conversation_id,
            message,
            detected_intent=detected_intent,
            contact_id=contact_id,
            phone_number=phone_number,
        )
        return result.reply

    async def process_turn(
        self,
        conversation_id: str,
        message: str,
        detected_intent: Optional[Union[BookingIntent, str]] = None,
        contact_id: Optional[str] = None,
        phone_number: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> TurnResult:
        """Handle one inbound message.

        Any failure is logged, the context is cleared and an apology is
        returned; a turn never raises.

        Args:
            conversation_id: Conversation identifier
            message: Inbound text
            detected_intent: Upstream intent (cancel/reschedule/new), if any
            contact_id: Contact the conversation belongs to
            phone_number: Contact phone number for outbound messages
            now: Current time (for testing)

        Returns:
            TurnResult with the reply
        """
        now = now if now is not None else _utcnow()
        try:
            result = await self._process(
                conversation_id, message, detected_intent, contact_id, phone_number, now
            )
        except Exception as e:
            logger.error(f"Booking turn failed for {conversation_id}: {e}", exc_info=True)
            await self._discard(conversation_id)
            result = TurnResult(
                reply=TURN_FAILED, conversation_id=conversation_id, finished=True
            )

        self._record_turn(result)
        return result

    async def _process(
        self,
        conversation_id: str,
        message: str,
        detected_intent: Optional[Union[BookingIntent, str]],
        contact_id: Optional[str],
        phone_number: Optional[str],
        now: datetime,
    ) -> TurnResult:
        context = await self._store.get(conversation_id)

        if context is None:
            intent = await self._resolve_intent(message, detected_intent)
            if intent is None or not contact_id:
                logger.info(f"No booking context for {conversation_id}, asking to start over")
                return TurnResult(
                    reply=CONTEXT_LOST, conversation_id=conversation_id, finished=True
                )
            context = await self._create_context(
                conversation_id, contact_id, phone_number or "", intent, now
            )

        policy = await self._policy_provider.load()

        if context.awaiting_payment:
            # Payment status pre-empts every other conversation step
            resolution = await self._payment_gate.resolve(context, now=now)
            outcome = FlowResult(
                reply=resolution.reply,
                step=MultiSessionStep.AWAITING_PAYMENT.value,
                finished=resolution.terminal,
            )
        else:
            handler = self._handlers[context.intent]
            outcome = await handler.handle(context, message, policy, now)

        if outcome.finished:
            await self._store.delete(conversation_id)
        else:
            await self._store.set(context)

        return TurnResult(
            reply=outcome.reply,
            conversation_id=conversation_id,
            intent=context.intent,
            step=outcome.step,
            finished=outcome.finished,
        )

    async def _resolve_intent(
        self,
        message: str,
        detected_intent: Optional[Union[BookingIntent, str]],
    ) -> Optional[BookingIntent]:
        if detected_intent:
            try:
                return BookingIntent(detected_intent)
            except ValueError:
                logger.warning(f"Ignoring unknown booking intent {detected_intent!r}")
                return None
        return await self._extractor.classify_intent(message)

    async def _create_context(
        self,
        conversation_id: str,
        contact_id: str,
        phone_number: str,
        intent: BookingIntent,
        now: datetime,
    ) -> ConversationContext:
        context = ConversationContext(
            conversation_id=conversation_id,
            contact_id=contact_id,
            phone_number=phone_number,
            intent=intent,
        )
        if intent in (BookingIntent.CANCEL, BookingIntent.RESCHEDULE):
            # Snapshot for the selection menu; not refreshed mid-flow
            context.current_bookings = await self._repository.list_upcoming_bookings(
                contact_id, now=now
            )
        logger.info(f"Booking context created: {conversation_id} ({intent.value})")
        return context

    async def _discard(self, conversation_id: str) -> None:
        try:
            await self._store.delete(conversation_id)
        except Exception as e:
            logger.error(f"Could not clear context {conversation_id}: {e}")

    def _record_turn(self, result: TurnResult) -> None:
        """Best-effort analytics; never awaited by the turn."""
        payload = {
            "conversation_id": result.conversation_id,
            "intent": result.intent.value if result.intent else None,
            "step": result.step,
            "finished": result.finished,
        }
        self._background.submit(
            append_analytics_event("booking_turn", payload),
            name=f"analytics:{result.conversation_id}",
        )


# Singleton
_router: Optional[BookingIntentRouter] = None


def get_booking_router() -> BookingIntentRouter:
    """Get singleton BookingIntentRouter."""
    global _router
    if _router is None:
        _router = BookingIntentRouter()
    return _router
