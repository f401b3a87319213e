"""
Rescheduling flow.

no bookings -> finish
select booking (auto when only one)
collect new date/time (must be in the future; never stored otherwise)
commit: record the change request for staff, finish
"""

import logging
from datetime import datetime
from enum import Enum

from ..context import ConversationContext
from ..errors import BookingPersistenceError
from ..messages import (
    NO_BOOKINGS_TO_RESCHEDULE,
    PAST_DATETIME,
    RESCHEDULE_FAILED,
    UNPARSEABLE_DATETIME,
    reschedule_confirmation,
    reschedule_datetime_prompt,
)
from ..policy import BookingPolicy
from .base import ActionType, Fact, FlowAction, FlowHandler, FlowResult, TurnEvent, action
from .selection import ExistingBookingFlow

logger = logging.getLogger(__name__)


class RescheduleStep(str, Enum):
    """Steps of the rescheduling flow."""

    NO_BOOKINGS = "no_bookings"
    SELECT_BOOKING = "select_booking"
    COLLECT_DATETIME = "collect_datetime"
    COMMIT = "commit_reschedule"


class ReschedulingFlow(ExistingBookingFlow):
    """Pure rescheduling state machine."""

    verb = "reschedule"

    def step(self, context: ConversationContext) -> RescheduleStep:
        """Current step, derived from which slots are filled."""
        if context.selected_booking is None:
            if not context.current_bookings:
                return RescheduleStep.NO_BOOKINGS
            return RescheduleStep.SELECT_BOOKING
        if context.proposed_datetime is None:
            return RescheduleStep.COLLECT_DATETIME
        return RescheduleStep.COMMIT

    def needs(self, context: ConversationContext) -> Fact:
        step = self.step(context)
        if step == RescheduleStep.SELECT_BOOKING and len(context.current_bookings) > 1:
            return Fact.SELECTION
        if step == RescheduleStep.COLLECT_DATETIME:
            return Fact.DATETIME
        return Fact.NONE

    def next_prompt(self, context: ConversationContext) -> str:
        return reschedule_datetime_prompt(context.selected_booking.service_name)

    def process(self, context: ConversationContext, event: TurnEvent) -> FlowAction:
        step = self.step(context)

        if step == RescheduleStep.NO_BOOKINGS:
            return action(ActionType.FINISH, step, NO_BOOKINGS_TO_RESCHEDULE)

        if step == RescheduleStep.SELECT_BOOKING:
            return self.select(context, event, step)

        if step == RescheduleStep.COLLECT_DATETIME:
            proposed = event.proposed_datetime
            if proposed is None:
                if event.datetime_mentioned:
                    return action(ActionType.PROMPT, step, UNPARSEABLE_DATETIME)
                return action(ActionType.PROMPT, step, self.next_prompt(context))
            if proposed <= event.now:
                return action(ActionType.PROMPT, step, PAST_DATETIME)
            context.proposed_datetime = proposed
            return action(ActionType.CONTINUE, step)

        return action(ActionType.COMMIT, step)


class ReschedulingHandler(FlowHandler):
    """Runs the rescheduling flow and records change requests."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.flow = ReschedulingFlow(self.tz)

    async def commit(
        self,
        context: ConversationContext,
        action: FlowAction,
        policy: BookingPolicy,
        now: datetime,
    ) -> FlowResult:
        booking = context.selected_booking

        try:
            await self._get_repository().record_reschedule_request(
                context.conversation_id, booking, context.proposed_datetime
            )
        except BookingPersistenceError:
            logger.error(
                f"Reschedule request for booking {booking.id} failed for "
                f"conversation {context.conversation_id}",
                exc_info=True,
            )
            return FlowResult(RESCHEDULE_FAILED, action.step, finished=True)

        reply = reschedule_confirmation(booking, context.proposed_datetime, self.tz)
        return FlowResult(reply, action.step, finished=True)
