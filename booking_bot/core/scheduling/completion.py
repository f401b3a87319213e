"""
Session completion trigger.

When a sequential plan's session is marked completed and sessions remain
to be booked, the customer is invited to book the next one and a booking
context is prepared so their reply continues the plan.
"""

import logging
from typing import Optional

from booking_bot.core.booking.context import BookingIntent, ConversationContext
from booking_bot.core.booking.messages import next_session_prompt
from booking_bot.core.booking.errors import BookingPersistenceError
from booking_bot.core.booking.repository import (
    BookingDetail,
    BookingRepository,
    get_booking_repository,
)
from booking_bot.core.booking.store import ContextStore, get_context_store
from booking_bot.infra.messaging import MessagingClient, get_messaging_client
from .engine import (
    MultiSessionSchedulingEngine,
    generate_progress_message,
    get_scheduling_engine,
)
from .types import MultiSessionStrategy, ServiceConfig

logger = logging.getLogger(__name__)


class SessionCompletionTrigger:
    """Prompts the next session of a sequential plan."""

    def __init__(
        self,
        repository: Optional[BookingRepository] = None,
        messaging: Optional[MessagingClient] = None,
        store: Optional[ContextStore] = None,
        engine: Optional[MultiSessionSchedulingEngine] = None,
    ):
        self._repository = repository if repository is not None else get_booking_repository()
        self._messaging = messaging if messaging is not None else get_messaging_client()
        self._store = store if store is not None else get_context_store()
        self._engine = engine if engine is not None else get_scheduling_engine()

    async def on_booking_completed(self, booking_id: str) -> Optional[str]:
        """Mark a booking completed and prompt the next session if due.

        Args:
            booking_id: Completed booking

        Returns:
            The prompt sent, or None when no prompt was due

        Raises:
            BookingPersistenceError: If the booking does not exist
        """
        completed = await self._repository.mark_completed(booking_id)

        detail = await self._repository.get_booking_detail(booking_id)
        if detail is None:
            raise BookingPersistenceError(f"Booking {booking_id} not found")
        if not completed:
            # Repeated or out-of-order completion; the prompt went out the first time
            logger.info(
                f"Completion trigger: booking {booking_id} is {detail.status.value}, "
                f"nothing to prompt"
            )
            return None
        if not detail.is_multi_session:
            return None

        override = await self._repository.get_customer_override(
            detail.contact_id, detail.service.id
        )
        service = self._engine.apply_customer_override(detail.service, override)
        if service.multi_session_strategy != MultiSessionStrategy.SEQUENTIAL:
            return None

        progress = await self._repository.get_session_progress(detail.contact_id, service)
        if not self._engine.should_prompt_next_session(service.multi_session_strategy, progress):
            logger.debug(f"Completion trigger: nothing to prompt for booking {booking_id}")
            return None

        message = next_session_prompt(
            service,
            detail.session_number or progress.completed_sessions,
            generate_progress_message(progress),
        )
        message_id = await self._messaging.send(detail.phone_number, message)
        if message_id is None:
            logger.warning(
                f"Next-session prompt for booking {booking_id} was not delivered; "
                f"manual follow-up needed for {detail.phone_number}"
            )

        if detail.conversation_id:
            await self._prepare_context(detail, service)

        logger.info(
            f"Next-session prompt for {service.name} session "
            f"{progress.booked_sessions + 1}/{progress.total_sessions} sent to "
            f"{detail.phone_number}"
        )
        return message

    async def _prepare_context(self, detail: BookingDetail, service: ServiceConfig) -> None:
        """Store a context that continues the plan, unless a flow is already active."""
        existing = await self._store.get(detail.conversation_id)
        if existing is not None:
            # An awaiting-payment or in-progress flow keeps priority
            logger.info(
                f"Conversation {detail.conversation_id} has an active "
                f"{existing.intent.value} context, next-session context not stored"
            )
            return

        await self._store.set(
            ConversationContext(
                conversation_id=detail.conversation_id,
                contact_id=detail.contact_id,
                phone_number=detail.phone_number,
                intent=BookingIntent.NEW,
                multi_session_service=service,
            )
        )


# Singleton
_trigger: Optional[SessionCompletionTrigger] = None


def get_completion_trigger() -> SessionCompletionTrigger:
    """Get singleton SessionCompletionTrigger."""
    global _trigger
    if _trigger is None:
        _trigger = SessionCompletionTrigger()
    return _trigger
