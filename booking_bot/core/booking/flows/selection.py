"""Booking selection shared by the cancel and reschedule flows."""

from abc import abstractmethod
from enum import Enum
from typing import Optional
from zoneinfo import ZoneInfo

from ..context import ConversationContext
from ..messages import format_booking_list, invalid_selection
from .base import ActionType, BookingFlow, FlowAction, TurnEvent, action, selection_remainder


class ExistingBookingFlow(BookingFlow):
    """
    Base for flows that act on one of the contact's existing bookings.

    A single booking is selected automatically. With several, a number in
    range selects by 1-based index and any other text in the same message
    goes on to the next step; anything else re-renders the menu without
    touching the context.
    """

    # "cancel" / "reschedule", used in the selection menu
    verb: str = ""

    def __init__(self, tz: ZoneInfo):
        self.tz = tz

    @abstractmethod
    def next_prompt(self, context: ConversationContext) -> str:
        """Question asked right after a booking is picked from the menu."""

    def select(
        self,
        context: ConversationContext,
        event: TurnEvent,
        step: Enum,
    ) -> FlowAction:
        bookings = context.current_bookings

        if len(bookings) == 1:
            context.selected_booking_id = bookings[0].id
            return action(ActionType.CONTINUE, step)

        index: Optional[int] = event.selection
        if index is None:
            return action(
                ActionType.PROMPT, step, format_booking_list(bookings, self.tz, self.verb)
            )
        if not 1 <= index <= len(bookings):
            return action(ActionType.PROMPT, step, invalid_selection(len(bookings)))

        context.selected_booking_id = bookings[index - 1].id
        if selection_remainder(event.message):
            # "2, I'm sick": the rest of the message answers the next step
            return action(ActionType.CONTINUE, step)
        # A bare number is never read as a reason or a date
        return action(ActionType.PROMPT, step, self.next_prompt(context))
