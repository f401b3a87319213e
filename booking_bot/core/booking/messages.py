"""
Customer-facing reply templates for the booking flows.

All dates are rendered in the business timezone.
"""

from datetime import datetime
from typing import Optional
from zoneinfo import ZoneInfo

from booking_bot.core.scheduling.types import ServiceConfig, SessionScheduleEntry
from .context import BookingSnapshot
from .policy import BookingPolicy, CancellationResult

DATETIME_EXAMPLES = '(e.g., "next Monday at 2pm" or "December 15th at 10am")'

# === Cancellation ===

NO_BOOKINGS_TO_CANCEL = (
    "I checked your account and you don't have any upcoming appointments to "
    "cancel. Would you like to book a new appointment instead?"
)
CANCELLATION_REASON_PROMPT = (
    "I understand you want to cancel this appointment. Could you briefly tell "
    "me why? This helps us improve our service."
)
CANCELLATION_FAILED = (
    "I'm sorry, there was an error cancelling your appointment. Please contact "
    "our support team for assistance."
)
DEFAULT_CANCELLATION_REASON = "Customer requested cancellation"

REBOOKING_SUGGESTIONS = (
    "Would you like to reschedule your {service} appointment for a different time?",
    "If you'd like to book another {service} session in the future, just let me know!",
    "Need to reschedule? I'm here to help you find a new time that works better for you.",
)

# === Rescheduling ===

NO_BOOKINGS_TO_RESCHEDULE = (
    "I checked your account and you don't have any upcoming appointments to "
    "reschedule. Would you like to book a new appointment?"
)
PAST_DATETIME = (
    "The time you suggested has already passed. Could you please provide a "
    "future date and time?"
)
UNPARSEABLE_DATETIME = (
    "I couldn't understand the date and time you mentioned. Could you please "
    "provide it again? For example: 'next Monday at 2pm' or 'December 15th at 10:30am'."
)
RESCHEDULE_FAILED = (
    "I'm sorry, I couldn't record your reschedule request. Please contact our "
    "support team for assistance."
)

# === New booking / multi-session ===

BOOKING_DECLINED = (
    "No problem! If you'd like to book at a different time, just let me know."
)
BOOKING_FAILED = (
    "I'm sorry, I couldn't complete your booking. Please try again or contact "
    "our support team for assistance."
)
CONFIRMATION_HINT = "Please reply *yes* to confirm or *no* to cancel."

# === Router ===

CONTEXT_LOST = (
    "I'm sorry, I seem to have lost track of our conversation. Could you "
    "please start over?"
)
TURN_FAILED = (
    "I'm sorry, something went wrong while handling your request. Let's start "
    "over - how can I help you with your appointment?"
)


def format_date(value: datetime, tz: ZoneInfo) -> str:
    """e.g. 'Monday, Dec 15'."""
    local = value.astimezone(tz)
    return f"{local:%A, %b} {local.day}"


def format_time(value: datetime, tz: ZoneInfo) -> str:
    """24-hour clock, e.g. '14:30'."""
    return value.astimezone(tz).strftime("%H:%M")


def format_booking_list(bookings: list[BookingSnapshot], tz: ZoneInfo, action: str) -> str:
    """Numbered selection menu for cancel/reschedule."""
    lines = [
        f"{idx}. {b.service_name} on {format_date(b.start_time, tz)} at "
        f"{format_time(b.start_time, tz)}"
        for idx, b in enumerate(bookings, start=1)
    ]
    return (
        f"You have {len(bookings)} upcoming appointments:\n\n"
        + "\n".join(lines)
        + f"\n\nWhich appointment would you like to {action}? "
        f"Please reply with the number (1, 2, etc.)"
    )


def invalid_selection(count: int) -> str:
    return f"Please enter a valid number between 1 and {count}."


def cancellation_confirmation(
    booking: BookingSnapshot,
    result: CancellationResult,
    policy: BookingPolicy,
    tz: ZoneInfo,
    suggestion: str,
) -> str:
    """Confirmation for a committed cancellation, with any fee."""
    reply = (
        f"✅ Your appointment for {booking.service_name} on "
        f"{format_date(booking.start_time, tz)} has been cancelled."
    )
    if result.penalty_applied:
        reply += (
            f"\n\n⚠️ Note: Since this cancellation was made within "
            f"{policy.cancellation_policy_hours} hours of your appointment, a "
            f"cancellation fee of CHF {result.penalty_fee:.2f} will be applied "
            f"as per our policy."
        )
    return f"{reply}\n\n{suggestion.format(service=booking.service_name)}"


def reschedule_datetime_prompt(service_name: str) -> str:
    return (
        f"Great! I'll help you reschedule your {service_name} appointment. When "
        f"would you prefer to have it instead? Please let me know your preferred "
        f"date and time {DATETIME_EXAMPLES}."
    )


def reschedule_confirmation(
    booking: BookingSnapshot,
    new_start: datetime,
    tz: ZoneInfo,
) -> str:
    local = new_start.astimezone(tz)
    return (
        f"Perfect! I'll reschedule your {booking.service_name} appointment from "
        f"{format_date(booking.start_time, tz)} to {local:%A, %B} {local.day}, "
        f"{local.year} at {format_time(new_start, tz)}.\n\n"
        f"✅ Your request has been noted. Our team will confirm availability and "
        f"update your booking shortly. You'll receive a confirmation message once "
        f"it's finalized.\n\nIs there anything else I can help you with?"
    )


def format_recommendations(services: list[ServiceConfig]) -> str:
    """Recommendation block, empty when there is nothing to suggest."""
    if not services:
        return ""
    lines = [f"{idx}. {s.name}" for idx, s in enumerate(services, start=1)]
    return "✨ *Recommended Services:*\n" + "\n".join(lines)


def service_selected(service: ServiceConfig, recommendations: list[ServiceConfig]) -> str:
    reply = f"Great choice! I can help you book a {service.name} appointment.\n\n"
    block = format_recommendations(recommendations)
    if block:
        reply += f"{block}\n\n"
    return reply + "What date and time works best for you?"


def service_menu(services: list[ServiceConfig], recommendations: list[ServiceConfig]) -> str:
    reply = "I'd love to help you book an appointment! "
    if services:
        reply += "Here are our available services:\n\n"
        reply += "".join(f"{idx}. {s.name}\n" for idx, s in enumerate(services[:5], start=1))
        reply += "\n"
    block = format_recommendations(recommendations)
    if block:
        reply += f"{block}\n\n"
    return reply + "Which service interests you, and when would you like to come in?"


def format_schedule(entries: list[SessionScheduleEntry], tz: ZoneInfo) -> str:
    """One '📅 Session n: date at time' line per entry."""
    return "\n".join(
        f"📅 Session {e.session_number}: {format_date(e.start_time, tz)} at "
        f"{format_time(e.start_time, tz)}"
        for e in entries
    )


def schedule_preview(
    service: ServiceConfig,
    entries: list[SessionScheduleEntry],
    tz: ZoneInfo,
) -> str:
    """Consolidated schedule asking for a single confirmation."""
    count = len(entries)
    noun = "session" if count == 1 else f"all {count} sessions"
    return (
        f"Here's your {service.name} schedule:\n\n"
        f"{format_schedule(entries, tz)}\n\n"
        f"Shall I book {noun}? {CONFIRMATION_HINT}"
    )


def start_date_prompt(service: ServiceConfig) -> str:
    return (
        f"Your {service.name} treatment has {service.total_sessions_required} "
        f"sessions. When would you like to start? I'll schedule the rest for you "
        f"{DATETIME_EXAMPLES}."
    )


def session_date_prompt(service: ServiceConfig, session_number: int) -> str:
    return (
        f"When would you like to schedule Session {session_number} of "
        f"{service.total_sessions_required} of your {service.name} treatment? "
        f"{DATETIME_EXAMPLES}"
    )


def session_order_prompt(session_number: int, previous: datetime, tz: ZoneInfo) -> str:
    return (
        f"Session {session_number} needs to be after session {session_number - 1} "
        f"({format_date(previous, tz)} at {format_time(previous, tz)}). Could you "
        f"pick a later date?"
    )


def session_count_prompt(service: ServiceConfig, remaining: int) -> str:
    return (
        f"You have {remaining} {service.name} sessions left to book. How many "
        f"would you like to book now? (1-{remaining})"
    )


def invalid_session_count(remaining: int) -> str:
    return f"Please choose a number of sessions between 1 and {remaining}."


def sequential_blocked(progress_message: str) -> str:
    return (
        f"{progress_message}\n\n"
        f"I'll send you a reminder to book your next session after you complete "
        f"the current one. Is there anything else I can help with?"
    )


def plan_complete(progress_message: str) -> str:
    return f"{progress_message}\n\nIs there anything else I can help with?"


def sessions_booked(
    service: ServiceConfig,
    entries: list[SessionScheduleEntry],
    tz: ZoneInfo,
    note: Optional[str] = None,
) -> str:
    """Confirmation for a committed batch of sessions."""
    reply = (
        f"✅ You're all set! Your {service.name} booking is confirmed:\n\n"
        f"{format_schedule(entries, tz)}"
    )
    if note:
        reply += f"\n\n{note}"
    return reply + "\n\nLooking forward to seeing you! 😊"


def next_session_prompt(
    service: ServiceConfig,
    completed_number: int,
    progress_message: str,
) -> str:
    return (
        f"🎉 Congratulations on completing Session {completed_number} of your "
        f"{service.name} treatment!\n\n{progress_message}\n\n"
        f"When would you like to schedule Session {completed_number + 1}? Just let "
        f"me know your preferred date and time, and I'll book it for you!"
    )
