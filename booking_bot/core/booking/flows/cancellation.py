"""
Cancellation flow.

no bookings -> finish
select booking (auto when only one)
collect reason (asked until given; declining records a default reason)
commit: cancel with late-cancellation policy, suggest rebooking, finish
"""

import logging
import random
import re
from datetime import datetime
from enum import Enum
from typing import Optional

from ..context import ConversationContext
from ..errors import BookingPersistenceError
from ..messages import (
    CANCELLATION_FAILED,
    CANCELLATION_REASON_PROMPT,
    DEFAULT_CANCELLATION_REASON,
    NO_BOOKINGS_TO_CANCEL,
    REBOOKING_SUGGESTIONS,
    cancellation_confirmation,
)
from ..policy import BookingPolicy
from .base import ActionType, Fact, FlowAction, FlowHandler, FlowResult, TurnEvent, action
from .selection import ExistingBookingFlow

logger = logging.getLogger(__name__)

_DECLINE_REASON = re.compile(
    r"\b(skip|no reason|rather not|prefer not|not say|doesn't matter|personal)\b",
    re.IGNORECASE,
)


class CancelStep(str, Enum):
    """Steps of the cancellation flow."""

    NO_BOOKINGS = "no_bookings"
    SELECT_BOOKING = "select_booking"
    COLLECT_REASON = "collect_reason"
    COMMIT = "commit_cancellation"


class CancellationFlow(ExistingBookingFlow):
    """Pure cancellation state machine."""

    verb = "cancel"

    def step(self, context: ConversationContext) -> CancelStep:
        """Current step, derived from which slots are filled."""
        if context.selected_booking is None:
            if not context.current_bookings:
                return CancelStep.NO_BOOKINGS
            return CancelStep.SELECT_BOOKING
        if context.cancellation_reason is None:
            return CancelStep.COLLECT_REASON
        return CancelStep.COMMIT

    def needs(self, context: ConversationContext) -> Fact:
        step = self.step(context)
        if step == CancelStep.SELECT_BOOKING and len(context.current_bookings) > 1:
            return Fact.SELECTION
        if step == CancelStep.COLLECT_REASON:
            return Fact.REASON
        return Fact.NONE

    def next_prompt(self, context: ConversationContext) -> str:
        return CANCELLATION_REASON_PROMPT

    def process(self, context: ConversationContext, event: TurnEvent) -> FlowAction:
        step = self.step(context)

        if step == CancelStep.NO_BOOKINGS:
            return action(ActionType.FINISH, step, NO_BOOKINGS_TO_CANCEL)

        if step == CancelStep.SELECT_BOOKING:
            return self.select(context, event, step)

        if step == CancelStep.COLLECT_REASON:
            if event.reason:
                context.cancellation_reason = event.reason
            elif _DECLINE_REASON.search(event.message or ""):
                context.cancellation_reason = DEFAULT_CANCELLATION_REASON
            else:
                return action(ActionType.PROMPT, step, CANCELLATION_REASON_PROMPT)
            return action(ActionType.CONTINUE, step)

        return action(ActionType.COMMIT, step)


class CancellationHandler(FlowHandler):
    """Runs the cancellation flow and commits cancellations."""

    def __init__(self, *args, rng: Optional[random.Random] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.flow = CancellationFlow(self.tz)
        self._rng = rng or random.Random()

    async def commit(
        self,
        context: ConversationContext,
        action: FlowAction,
        policy: BookingPolicy,
        now: datetime,
    ) -> FlowResult:
        booking = context.selected_booking

        try:
            result = await self._get_repository().cancel_booking(
                booking.id,
                context.cancellation_reason or DEFAULT_CANCELLATION_REASON,
                policy,
                now=now,
            )
        except BookingPersistenceError:
            logger.error(
                f"Cancellation of booking {booking.id} failed for conversation "
                f"{context.conversation_id}",
                exc_info=True,
            )
            return FlowResult(CANCELLATION_FAILED, action.step, finished=True)

        suggestion = self._rng.choice(REBOOKING_SUGGESTIONS)
        reply = cancellation_confirmation(booking, result, policy, self.tz, suggestion)
        logger.info(
            f"Booking {booking.id} cancelled via conversation {context.conversation_id}"
        )
        return FlowResult(reply, action.step, finished=True)
