"""
Multi-session scheduling engine.

Pure computation: turns a strategy, a start time, a buffer configuration
and a session count into an ordered list of session slots. No I/O.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Any, Optional

from .types import (
    MultiSessionStrategy,
    ServiceConfig,
    SessionProgress,
    SessionScheduleEntry,
)

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_DAYS = 7

# Uniform spacing keys, checked in priority order
UNIFORM_BUFFER_KEYS = ("minimum_days", "recommended_days", "default_days")


class MultiSessionSchedulingEngine:
    """
    Computes session schedules for multi-session services.

    Buffer configuration shapes:
    - immediate: {"session_1_to_2_days": 7, "session_2_to_3_days": 14}
      with optional uniform fallback keys
    - sequential / flexible: {"minimum_days": 7, "recommended_days": 14}
    """

    def get_buffer_days(
        self,
        strategy: MultiSessionStrategy,
        buffer_config: Optional[dict[str, Any]],
        session_number: int,
    ) -> int:
        """Days between session `session_number` and the next one.

        Args:
            strategy: Multi-session strategy
            buffer_config: Service buffer configuration
            session_number: 1-based number of the earlier session

        Returns:
            Gap in days
        """
        if not buffer_config:
            return DEFAULT_BUFFER_DAYS

        if strategy == MultiSessionStrategy.IMMEDIATE:
            named = buffer_config.get(f"session_{session_number}_to_{session_number + 1}_days")
            if named is not None:
                return int(named)

        for key in UNIFORM_BUFFER_KEYS:
            value = buffer_config.get(key)
            if value is not None:
                return int(value)

        return DEFAULT_BUFFER_DAYS

    def calculate_schedule(
        self,
        strategy: MultiSessionStrategy,
        start_time: datetime,
        buffer_config: Optional[dict[str, Any]],
        session_count: int,
        duration_minutes: int,
        first_session_number: int = 1,
    ) -> list[SessionScheduleEntry]:
        """Compute consecutive session slots by walking the buffer config.

        Args:
            strategy: Multi-session strategy
            start_time: Start of the first session in this batch
            buffer_config: Service buffer configuration
            session_count: Number of sessions to compute
            duration_minutes: Length of each session
            first_session_number: Number of the first session in this batch

        Returns:
            Ordered list of SessionScheduleEntry

        Raises:
            ValueError: If session_count or duration_minutes is not positive
        """
        if session_count < 1:
            raise ValueError(f"session_count must be positive, got {session_count}")
        if duration_minutes < 1:
            raise ValueError(f"duration_minutes must be positive, got {duration_minutes}")

        duration = timedelta(minutes=duration_minutes)
        schedule: list[SessionScheduleEntry] = []
        current = start_time

        for offset in range(session_count):
            number = first_session_number + offset
            schedule.append(
                SessionScheduleEntry(
                    session_number=number,
                    start_time=current,
                    end_time=current + duration,
                )
            )
            current = current + timedelta(
                days=self.get_buffer_days(strategy, buffer_config, number)
            )

        return schedule

    def schedule_from_dates(
        self,
        dates: list[datetime],
        duration_minutes: int,
        first_session_number: int = 1,
    ) -> list[SessionScheduleEntry]:
        """Build entries for customer-chosen dates (flexible strategy)."""
        duration = timedelta(minutes=duration_minutes)
        return [
            SessionScheduleEntry(
                session_number=first_session_number + idx,
                start_time=start,
                end_time=start + duration,
            )
            for idx, start in enumerate(dates)
        ]

    def apply_customer_override(
        self,
        service: ServiceConfig,
        override: Optional[dict[str, Any]],
    ) -> ServiceConfig:
        """Return the service with a customer-specific plan applied."""
        if not override:
            return service

        changes: dict[str, Any] = {}
        if override.get("total_sessions_override"):
            changes["total_sessions_required"] = int(override["total_sessions_override"])
        if override.get("strategy_override"):
            changes["multi_session_strategy"] = MultiSessionStrategy(
                override["strategy_override"]
            )
        if override.get("buffer_config_override"):
            changes["session_buffer_config"] = dict(override["buffer_config_override"])

        if changes:
            logger.debug(f"Customer override for service {service.id}: {sorted(changes)}")
        return replace(service, **changes)

    def should_prompt_next_session(
        self,
        strategy: Optional[MultiSessionStrategy],
        progress: SessionProgress,
    ) -> bool:
        """Whether a completed sequential session should prompt the next one."""
        return (
            strategy == MultiSessionStrategy.SEQUENTIAL
            and progress.upcoming_sessions == 0
            and progress.booked_sessions < progress.total_sessions
        )


def generate_progress_message(progress: SessionProgress) -> str:
    """Human-readable summary of a contact's multi-session progress."""
    total = progress.total_sessions
    booked = progress.booked_sessions
    completed = progress.completed_sessions

    if total > 0 and completed >= total:
        return f"🏆 Congratulations! You've completed all {total} sessions!"

    if completed > 0 and completed == total // 2:
        return (
            f"🎉 Milestone! You're halfway through - {completed} of {total} "
            f"sessions complete!"
        )

    if completed == total - 1:
        return (
            f"Almost there! Session {completed} of {total} complete. "
            f"Just 1 more to go!"
        )

    if progress.remaining_to_book > 0:
        return (
            f"Progress: {completed} completed, {booked - completed} upcoming, "
            f"{progress.remaining_to_book} still to book"
        )

    return (
        f"Progress: {completed} of {total} sessions complete. "
        f"{total - completed} sessions to go!"
    )


# Singleton
_engine: Optional[MultiSessionSchedulingEngine] = None


def get_scheduling_engine() -> MultiSessionSchedulingEngine:
    """Get singleton MultiSessionSchedulingEngine."""
    global _engine
    if _engine is None:
        _engine = MultiSessionSchedulingEngine()
    return _engine
