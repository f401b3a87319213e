"""
Conversation context for booking flows.

One context exists per active conversation. It records which sub-flow owns
the conversation and every slot collected so far, and is stored as JSON.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from booking_bot.core.scheduling.types import ServiceConfig


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _dt(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class BookingIntent(str, Enum):
    """Top-level booking intent that owns a context."""

    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    NEW = "new"


class MultiSessionStep(str, Enum):
    """Steps of the multi-session booking flow."""

    CONFIRM_STRATEGY = "confirm_strategy"
    COLLECT_DATES = "collect_dates"
    CONFIRM_ALL = "confirm_all"
    AWAITING_PAYMENT = "awaiting_payment"


class PaymentStatus(str, Enum):
    """Payment status as seen by a conversation."""

    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    FAILED = "failed"


@dataclass
class BookingSnapshot:
    """A contact's active booking, captured when the context is created."""

    id: str
    service_name: str
    start_time: datetime
    status: str = "confirmed"
    service_id: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "service_name": self.service_name,
            "start_time": self.start_time.isoformat(),
            "status": self.status,
            "service_id": self.service_id,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "BookingSnapshot":
        """Create from dictionary."""
        return cls(
            id=data["id"],
            service_name=data.get("service_name", ""),
            start_time=datetime.fromisoformat(data["start_time"]),
            status=data.get("status", "confirmed"),
            service_id=data.get("service_id"),
        )


@dataclass
class ConversationContext:
    """
    Mutable state of one booking conversation.

    `intent` is fixed at creation and decides routing until the context is
    cleared. Slot fields are filled at most once; a filled slot is never
    asked for again.
    """

    # Identifiers
    conversation_id: str
    contact_id: str
    phone_number: str = ""
    intent: BookingIntent = BookingIntent.NEW

    # Cancel / reschedule
    current_bookings: list[BookingSnapshot] = field(default_factory=list)
    selected_booking_id: Optional[str] = None
    cancellation_reason: Optional[str] = None
    proposed_datetime: Optional[datetime] = None

    # Email collection
    email_collection_asked: bool = False
    contact_email: Optional[str] = None
    deferred_message: Optional[str] = None  # Message held back by the email guard

    # Multi-session
    multi_session_service: Optional[ServiceConfig] = None
    multi_session_step: Optional[MultiSessionStep] = None
    sessions_to_book: Optional[int] = None
    first_session_number: int = 1
    session_group_id: Optional[str] = None
    collected_dates: list[datetime] = field(default_factory=list)

    # Payment
    payment_link_id: Optional[str] = None
    payment_status: Optional[PaymentStatus] = None
    payment_expires_at: Optional[datetime] = None
    pending_booking_ids: list[str] = field(default_factory=list)
    requires_payment: bool = False
    payment_amount: Optional[float] = None

    # Metadata
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def selected_booking(self) -> Optional[BookingSnapshot]:
        """The booking chosen for cancel/reschedule, if any."""
        for booking in self.current_bookings:
            if booking.id == self.selected_booking_id:
                return booking
        return None

    @property
    def awaiting_payment(self) -> bool:
        """True while a payment link gates this conversation."""
        return (
            self.multi_session_step == MultiSessionStep.AWAITING_PAYMENT
            or self.payment_link_id is not None
        )

    def to_dict(self) -> dict:
        """Convert to a JSON-compatible dictionary."""
        return {
            "conversation_id": self.conversation_id,
            "contact_id": self.contact_id,
            "phone_number": self.phone_number,
            "intent": self.intent.value,
            "current_bookings": [b.to_dict() for b in self.current_bookings],
            "selected_booking_id": self.selected_booking_id,
            "cancellation_reason": self.cancellation_reason,
            "proposed_datetime": (
                self.proposed_datetime.isoformat() if self.proposed_datetime else None
            ),
            "email_collection_asked": self.email_collection_asked,
            "contact_email": self.contact_email,
            "deferred_message": self.deferred_message,
            "multi_session_service": (
                self.multi_session_service.to_dict() if self.multi_session_service else None
            ),
            "multi_session_step": (
                self.multi_session_step.value if self.multi_session_step else None
            ),
            "sessions_to_book": self.sessions_to_book,
            "first_session_number": self.first_session_number,
            "session_group_id": self.session_group_id,
            "collected_dates": [d.isoformat() for d in self.collected_dates],
            "payment_link_id": self.payment_link_id,
            "payment_status": self.payment_status.value if self.payment_status else None,
            "payment_expires_at": (
                self.payment_expires_at.isoformat() if self.payment_expires_at else None
            ),
            "pending_booking_ids": list(self.pending_booking_ids),
            "requires_payment": self.requires_payment,
            "payment_amount": self.payment_amount,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    def to_json(self) -> str:
        """Convert to JSON string for storage."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: dict) -> "ConversationContext":
        """Create from dictionary."""
        service = data.get("multi_session_service")
        step = data.get("multi_session_step")
        payment_status = data.get("payment_status")
        return cls(
            conversation_id=data["conversation_id"],
            contact_id=data["contact_id"],
            phone_number=data.get("phone_number", ""),
            intent=BookingIntent(data.get("intent", BookingIntent.NEW.value)),
            current_bookings=[
                BookingSnapshot.from_dict(b) for b in data.get("current_bookings", [])
            ],
            selected_booking_id=data.get("selected_booking_id"),
            cancellation_reason=data.get("cancellation_reason"),
            proposed_datetime=_dt(data.get("proposed_datetime")),
            email_collection_asked=data.get("email_collection_asked", False),
            contact_email=data.get("contact_email"),
            deferred_message=data.get("deferred_message"),
            multi_session_service=ServiceConfig.from_dict(service) if service else None,
            multi_session_step=MultiSessionStep(step) if step else None,
            sessions_to_book=data.get("sessions_to_book"),
            first_session_number=data.get("first_session_number", 1),
            session_group_id=data.get("session_group_id"),
            collected_dates=[
                datetime.fromisoformat(d) for d in data.get("collected_dates", [])
            ],
            payment_link_id=data.get("payment_link_id"),
            payment_status=PaymentStatus(payment_status) if payment_status else None,
            payment_expires_at=_dt(data.get("payment_expires_at")),
            pending_booking_ids=list(data.get("pending_booking_ids", [])),
            requires_payment=data.get("requires_payment", False),
            payment_amount=data.get("payment_amount"),
            created_at=_dt(data.get("created_at")) or _utcnow(),
            updated_at=_dt(data.get("updated_at")) or _utcnow(),
        )

    @classmethod
    def from_json(cls, json_str: str) -> "ConversationContext":
        """Create from JSON string."""
        return cls.from_dict(json.loads(json_str))
