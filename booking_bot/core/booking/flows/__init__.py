"""Booking sub-flows: pure state machines plus their async handlers."""

from .base import (
    ActionType,
    Fact,
    FlowAction,
    FlowResult,
    TurnEvent,
    parse_confirmation,
    parse_selection,
    resolve_datetime,
)
from .cancellation import CancelStep, CancellationFlow, CancellationHandler
from .rescheduling import RescheduleStep, ReschedulingFlow, ReschedulingHandler
from .multi_session import MultiSessionFlow, MultiSessionHandler, PlanStep
from .new_booking import NewBookingFlow, NewBookingHandler, NewBookingStep, match_service

__all__ = [
    # Base
    "ActionType",
    "Fact",
    "FlowAction",
    "FlowResult",
    "TurnEvent",
    "parse_confirmation",
    "parse_selection",
    "resolve_datetime",
    # Cancellation
    "CancelStep",
    "CancellationFlow",
    "CancellationHandler",
    # Rescheduling
    "RescheduleStep",
    "ReschedulingFlow",
    "ReschedulingHandler",
    # Multi-session
    "MultiSessionFlow",
    "MultiSessionHandler",
    "PlanStep",
    # New booking
    "NewBookingFlow",
    "NewBookingHandler",
    "NewBookingStep",
    "match_service",
]
