"""Types shared by the multi-session scheduling engine and the booking flows."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class MultiSessionStrategy(str, Enum):
    """How the sessions of a treatment plan are booked."""

    IMMEDIATE = "immediate"    # All sessions at once from one start date
    SEQUENTIAL = "sequential"  # Next session only after the current one completes
    FLEXIBLE = "flexible"      # Customer picks a batch size and each date


@dataclass(frozen=True)
class SessionScheduleEntry:
    """One computed session slot. Numbering is 1-based and contiguous."""

    session_number: int
    start_time: datetime
    end_time: datetime

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "session_number": self.session_number,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
        }


@dataclass
class ServiceConfig:
    """Catalog view of a bookable service."""

    id: str
    name: str
    duration_minutes: int = 60
    cost: float = 0.0
    requires_payment: bool = False
    deposit_amount: float = 0.0
    requires_multiple_sessions: bool = False
    total_sessions_required: int = 1
    multi_session_strategy: Optional[MultiSessionStrategy] = None
    session_buffer_config: dict[str, Any] = field(default_factory=dict)

    @property
    def is_multi_session(self) -> bool:
        """True when the service books as a multi-session plan."""
        return (
            self.requires_multiple_sessions
            and self.total_sessions_required > 1
            and self.multi_session_strategy is not None
        )

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "duration_minutes": self.duration_minutes,
            "cost": self.cost,
            "requires_payment": self.requires_payment,
            "deposit_amount": self.deposit_amount,
            "requires_multiple_sessions": self.requires_multiple_sessions,
            "total_sessions_required": self.total_sessions_required,
            "multi_session_strategy": (
                self.multi_session_strategy.value if self.multi_session_strategy else None
            ),
            "session_buffer_config": self.session_buffer_config,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ServiceConfig":
        """Create from dictionary."""
        strategy = data.get("multi_session_strategy")
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            duration_minutes=int(data.get("duration_minutes") or 60),
            cost=float(data.get("cost") or 0),
            requires_payment=bool(data.get("requires_payment", False)),
            deposit_amount=float(data.get("deposit_amount") or 0),
            requires_multiple_sessions=bool(data.get("requires_multiple_sessions", False)),
            total_sessions_required=int(data.get("total_sessions_required") or 1),
            multi_session_strategy=MultiSessionStrategy(strategy) if strategy else None,
            session_buffer_config=dict(data.get("session_buffer_config") or {}),
        )


@dataclass(frozen=True)
class SessionProgress:
    """Progress of a contact through a multi-session plan."""

    total_sessions: int
    booked_sessions: int
    completed_sessions: int
    session_group_id: Optional[str] = None

    @property
    def remaining_to_book(self) -> int:
        """Sessions not booked yet."""
        return max(0, self.total_sessions - self.booked_sessions)

    @property
    def upcoming_sessions(self) -> int:
        """Booked sessions not completed yet."""
        return max(0, self.booked_sessions - self.completed_sessions)

    @property
    def is_complete(self) -> bool:
        """True when every session of the plan is completed."""
        return self.total_sessions > 0 and self.completed_sessions >= self.total_sessions
