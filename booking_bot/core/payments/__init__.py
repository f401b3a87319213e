"""
Payments Module

Payment-gated confirmation for provisional bookings.

Usage:
    from booking_bot.core.payments import get_payment_gate

    gate = get_payment_gate()
    requirement = await gate.requires_payment(service_id)
    if requirement.required:
        reply = await gate.create_and_send_link(context, ids, "Massage", 90.0)
"""

from .gate import (
    PaymentGate,
    PaymentRequirement,
    PaymentResolution,
    payment_requirement_for,
    format_payment_message,
    get_payment_gate,
    PAYMENT_UNAVAILABLE,
)

__all__ = [
    "PaymentGate",
    "PaymentRequirement",
    "PaymentResolution",
    "payment_requirement_for",
    "format_payment_message",
    "get_payment_gate",
    "PAYMENT_UNAVAILABLE",
]
