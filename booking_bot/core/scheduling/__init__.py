"""
Scheduling Module

Multi-session scheduling engine: computes session slots for treatment plans
and summarizes a customer's progress through one. The completion trigger
that prompts the next sequential session lives in
`booking_bot.core.scheduling.completion`.

Usage:
    from booking_bot.core.scheduling import (
        MultiSessionStrategy,
        get_scheduling_engine,
    )

    engine = get_scheduling_engine()
    schedule = engine.calculate_schedule(
        strategy=MultiSessionStrategy.IMMEDIATE,
        start_time=start,
        buffer_config={"session_1_to_2_days": 14},
        session_count=3,
        duration_minutes=60,
    )
"""

# Types
from booking_bot.core.scheduling.types import (
    MultiSessionStrategy,
    ServiceConfig,
    SessionProgress,
    SessionScheduleEntry,
)

# Engine
from booking_bot.core.scheduling.engine import (
    DEFAULT_BUFFER_DAYS,
    MultiSessionSchedulingEngine,
    generate_progress_message,
    get_scheduling_engine,
)

__all__ = [
    # Types
    "MultiSessionStrategy",
    "ServiceConfig",
    "SessionProgress",
    "SessionScheduleEntry",
    # Engine
    "DEFAULT_BUFFER_DAYS",
    "MultiSessionSchedulingEngine",
    "generate_progress_message",
    "get_scheduling_engine",
]
