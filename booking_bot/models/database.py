"""
Database Models

SQLAlchemy ORM models for contacts, services, bookings and payment links.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON, Boolean, DateTime, ForeignKey, Index, Integer, Numeric, String, Text, Uuid,
    Enum as SQLEnum, text
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=text("CURRENT_TIMESTAMP"),
        nullable=False
    )


class BookingStatus(str, Enum):
    """Booking status enumeration."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"


class PaymentLinkStatus(str, Enum):
    """Payment link lifecycle states."""
    PENDING = "pending"
    PAID = "paid"
    EXPIRED = "expired"
    CANCELLED = "cancelled"
    FAILED = "failed"


class Contact(Base, TimestampMixin):
    """A customer reachable over the messaging channel."""

    __tablename__ = "contacts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    phone_number: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    bookings: Mapped[list["Booking"]] = relationship(back_populates="contact")


class Service(Base, TimestampMixin):
    """
    Bookable service from the catalog.

    Multi-session services carry total_sessions_required, a strategy
    (immediate, sequential, flexible) and a strategy-specific
    session_buffer_config.
    """

    __tablename__ = "services"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=60, nullable=False)
    cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    requires_payment: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    deposit_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    requires_multiple_sessions: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    total_sessions_required: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    multi_session_strategy: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    session_buffer_config: Mapped[dict] = mapped_column(JSON, default=dict)


class Booking(Base, TimestampMixin):
    """
    Appointment record.

    Sessions of one treatment plan share a session_group_id and are
    numbered 1..total_sessions.
    """

    __tablename__ = "bookings"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False
    )
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("services.id"),
        nullable=False
    )
    conversation_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        SQLEnum(BookingStatus),
        default=BookingStatus.PENDING,
        nullable=False
    )
    is_multi_session: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    session_group_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )
    session_number: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    total_sessions: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    penalty_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), default=0, nullable=False)
    payment_link_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True
    )

    contact: Mapped["Contact"] = relationship(back_populates="bookings")
    service: Mapped["Service"] = relationship()

    __table_args__ = (
        Index("ix_bookings_contact_start", "contact_id", "start_time"),
        Index("ix_bookings_session_group", "session_group_id"),
    )


class PaymentLink(Base, TimestampMixin):
    """Checkout link covering one or more provisional bookings."""

    __tablename__ = "payment_links"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    conversation_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False
    )
    booking_ids: Mapped[list] = mapped_column(JSON, default=list)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), default="chf", nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    status: Mapped[PaymentLinkStatus] = mapped_column(
        SQLEnum(PaymentLinkStatus),
        default=PaymentLinkStatus.PENDING,
        nullable=False
    )
    checkout_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    checkout_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_payment_links_status_expires", "status", "expires_at"),
        Index("ix_payment_links_checkout_session", "checkout_session_id"),
    )


class Setting(Base, TimestampMixin):
    """Business-level key/value policy override."""

    __tablename__ = "settings"

    key: Mapped[str] = mapped_column(String(100), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


class ConversationNote(Base, TimestampMixin):
    """System note attached to a conversation (e.g. a reschedule request)."""

    __tablename__ = "conversation_notes"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4
    )
    conversation_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    kind: Mapped[str] = mapped_column(String(50), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)


class CustomerMultiSessionConfig(Base, TimestampMixin):
    """Per-customer override of a service's multi-session plan."""

    __tablename__ = "customer_multisession_configs"

    contact_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        primary_key=True
    )
    service_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("services.id", ondelete="CASCADE"),
        primary_key=True
    )
    total_sessions_override: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    strategy_override: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    buffer_config_override: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
