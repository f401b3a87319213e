"""
Business policy settings consumed at booking decision points.

Defaults come from environment settings; the `settings` table can override
any of them per business.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from booking_bot.config import Settings, get_settings

if TYPE_CHECKING:
    from .repository import BookingRepository

logger = logging.getLogger(__name__)

EMAIL_MODES = ("mandatory", "gentle", "skip")


@dataclass(frozen=True)
class BookingPolicy:
    """Read-only policy snapshot for one turn."""

    email_collection_mode: str = "gentle"
    email_prompt_gentle: str = ""
    email_prompt_mandatory: str = ""
    strict_payment_enforcement: bool = True
    payments_enabled: bool = False
    cancellation_policy_hours: int = 24
    late_cancellation_penalty_type: str = "fixed"
    late_cancellation_penalty_amount: float = 50.0

    @classmethod
    def from_settings(cls, config: Settings) -> "BookingPolicy":
        """Build the default policy from environment settings."""
        return cls(
            email_collection_mode=config.email_collection_mode,
            email_prompt_gentle=config.email_prompt_gentle,
            email_prompt_mandatory=config.email_prompt_mandatory,
            strict_payment_enforcement=config.strict_payment_enforcement,
            payments_enabled=config.payments_enabled and bool(config.stripe_api_key),
            cancellation_policy_hours=config.cancellation_policy_hours,
            late_cancellation_penalty_type=config.late_cancellation_penalty_type,
            late_cancellation_penalty_amount=config.late_cancellation_penalty_amount,
        )


@dataclass(frozen=True)
class CancellationResult:
    """Outcome of a committed cancellation."""

    penalty_applied: bool = False
    penalty_fee: float = 0.0


def _as_bool(value: str) -> bool:
    return value.strip().lower() in ("true", "1", "yes", "on")


def compute_cancellation_penalty(
    start_time: datetime,
    now: datetime,
    policy: BookingPolicy,
    service_cost: float = 0.0,
) -> CancellationResult:
    """Apply the late-cancellation policy.

    A cancellation is late when fewer than `cancellation_policy_hours`
    remain before the appointment.

    Args:
        start_time: Appointment start
        now: Time of the cancellation
        policy: Active booking policy
        service_cost: Cost used for percentage penalties

    Returns:
        CancellationResult with any fee
    """
    hours_until = (start_time - now).total_seconds() / 3600
    if hours_until >= policy.cancellation_policy_hours:
        return CancellationResult()

    if policy.late_cancellation_penalty_type == "percentage":
        fee = round(service_cost * policy.late_cancellation_penalty_amount / 100, 2)
    else:
        fee = round(policy.late_cancellation_penalty_amount, 2)

    return CancellationResult(penalty_applied=fee > 0, penalty_fee=fee)


class PolicyProvider:
    """Loads BookingPolicy with per-business overrides."""

    def __init__(
        self,
        repository: Optional["BookingRepository"] = None,
        config: Optional[Settings] = None,
    ):
        self._repository = repository
        self._config = config if config is not None else get_settings()

    async def load(self) -> BookingPolicy:
        """Return the effective policy for this turn."""
        policy = BookingPolicy.from_settings(self._config)
        if self._repository is None:
            return policy

        overrides = await self._repository.get_settings()
        if not overrides:
            return policy

        mode = overrides.get("email_collection_mode", policy.email_collection_mode)
        if mode == "disabled":
            mode = "skip"
        if mode not in EMAIL_MODES:
            logger.warning(f"Unknown email_collection_mode {mode!r}, using gentle")
            mode = "gentle"

        payments_enabled = policy.payments_enabled
        if "payments_enabled" in overrides:
            payments_enabled = (
                _as_bool(overrides["payments_enabled"]) and bool(self._config.stripe_api_key)
            )

        return BookingPolicy(
            email_collection_mode=mode,
            email_prompt_gentle=overrides.get("email_prompt_gentle") or policy.email_prompt_gentle,
            email_prompt_mandatory=(
                overrides.get("email_prompt_mandatory") or policy.email_prompt_mandatory
            ),
            strict_payment_enforcement=(
                _as_bool(overrides["strict_payment_enforcement"])
                if "strict_payment_enforcement" in overrides
                else policy.strict_payment_enforcement
            ),
            payments_enabled=payments_enabled,
            cancellation_policy_hours=int(
                overrides.get("cancellation_policy_hours", policy.cancellation_policy_hours)
            ),
            late_cancellation_penalty_type=overrides.get(
                "late_cancellation_penalty_type", policy.late_cancellation_penalty_type
            ),
            late_cancellation_penalty_amount=float(
                overrides.get(
                    "late_cancellation_penalty_amount",
                    policy.late_cancellation_penalty_amount,
                )
            ),
        )
