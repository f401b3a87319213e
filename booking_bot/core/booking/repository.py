"""
Booking persistence.

SQLAlchemy-backed access to services, contacts, bookings and payment links.
Every multi-row transition runs inside a single transaction so a batch is
applied completely or not at all.
"""

import logging
import uuid
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from booking_bot.infra.database import get_db_context
from booking_bot.models.database import (
    Booking,
    BookingStatus,
    Contact,
    ConversationNote,
    CustomerMultiSessionConfig,
    PaymentLink,
    PaymentLinkStatus,
    Service,
    Setting,
)
from booking_bot.core.scheduling.types import (
    ServiceConfig,
    SessionProgress,
    SessionScheduleEntry,
)
from .context import BookingSnapshot
from .errors import BookingPersistenceError, BookingValidationError
from .policy import BookingPolicy, CancellationResult, compute_cancellation_penalty

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.PENDING)
PROGRESS_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.COMPLETED)


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


def _uuid(value: str | uuid.UUID) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise BookingPersistenceError(f"Unknown id {value!r}") from e


@dataclass
class PaymentLinkRecord:
    """Stored payment link."""

    id: str
    contact_id: str
    booking_ids: list[str]
    amount: float
    status: PaymentLinkStatus
    expires_at: datetime
    conversation_id: Optional[str] = None
    currency: str = "chf"
    checkout_session_id: Optional[str] = None
    checkout_url: Optional[str] = None


@dataclass
class BookingDetail:
    """A booking with its service and contact, for completion triggers."""

    id: str
    contact_id: str
    phone_number: str
    status: BookingStatus
    service: ServiceConfig
    is_multi_session: bool = False
    session_group_id: Optional[str] = None
    session_number: Optional[int] = None
    total_sessions: Optional[int] = None
    conversation_id: Optional[str] = None


@dataclass
class NewBookingBatch:
    """Input for an atomic batch insert."""

    contact_id: str
    service: ServiceConfig
    entries: list[SessionScheduleEntry]
    status: BookingStatus = BookingStatus.PENDING
    conversation_id: Optional[str] = None
    session_group_id: Optional[str] = None
    total_sessions: Optional[int] = None
    multi_session: bool = True


def _service_config(service: Service) -> ServiceConfig:
    return ServiceConfig.from_dict(
        {
            "id": str(service.id),
            "name": service.name,
            "duration_minutes": service.duration_minutes,
            "cost": service.cost,
            "requires_payment": service.requires_payment,
            "deposit_amount": service.deposit_amount,
            "requires_multiple_sessions": service.requires_multiple_sessions,
            "total_sessions_required": service.total_sessions_required,
            "multi_session_strategy": service.multi_session_strategy,
            "session_buffer_config": service.session_buffer_config,
        }
    )


def _payment_link_record(link: PaymentLink) -> PaymentLinkRecord:
    return PaymentLinkRecord(
        id=str(link.id),
        contact_id=str(link.contact_id),
        booking_ids=[str(b) for b in link.booking_ids or []],
        amount=float(link.amount),
        status=link.status,
        expires_at=link.expires_at,
        conversation_id=link.conversation_id,
        currency=link.currency,
        checkout_session_id=link.checkout_session_id,
        checkout_url=link.checkout_url,
    )


def validate_batch(entries: list[SessionScheduleEntry], now: datetime) -> None:
    """Reject a batch before any row is written.

    Raises:
        BookingValidationError: On an empty batch, a past start, an end not
            after its start, or non-contiguous session numbers
    """
    if not entries:
        raise BookingValidationError("Batch contains no sessions")

    first = entries[0].session_number
    for offset, entry in enumerate(entries):
        if entry.start_time <= now:
            raise BookingValidationError(
                f"Session {entry.session_number} starts in the past"
            )
        if entry.end_time <= entry.start_time:
            raise BookingValidationError(
                f"Session {entry.session_number} ends before it starts"
            )
        if entry.session_number != first + offset:
            raise BookingValidationError("Session numbers must be contiguous")


class BookingRepository:
    """Persistence operations used by the booking engine."""

    @asynccontextmanager
    async def _unit_of_work(self, operation: str) -> AsyncGenerator[AsyncSession, None]:
        """One transaction; database errors surface as BookingPersistenceError."""
        try:
            async with get_db_context() as db:
                yield db
        except SQLAlchemyError as e:
            logger.error(f"{operation} failed: {e}", exc_info=True)
            raise BookingPersistenceError(f"{operation} failed") from e

    # === Catalog ===

    async def list_active_services(self) -> list[ServiceConfig]:
        """All bookable services, by name."""
        async with self._unit_of_work("list_active_services") as db:
            result = await db.execute(
                select(Service).where(Service.is_active.is_(True)).order_by(Service.name)
            )
            return [_service_config(s) for s in result.scalars().all()]

    async def get_service(self, service_id: str) -> Optional[ServiceConfig]:
        """Service by ID."""
        async with self._unit_of_work("get_service") as db:
            service = await db.get(Service, _uuid(service_id))
            return _service_config(service) if service else None

    async def get_customer_override(
        self,
        contact_id: str,
        service_id: str,
    ) -> Optional[dict]:
        """Customer-specific multi-session plan, if one exists."""
        async with self._unit_of_work("get_customer_override") as db:
            override = await db.get(
                CustomerMultiSessionConfig, (_uuid(contact_id), _uuid(service_id))
            )
            if override is None:
                return None
            return {
                "total_sessions_override": override.total_sessions_override,
                "strategy_override": override.strategy_override,
                "buffer_config_override": override.buffer_config_override,
            }

    async def get_frequent_services(
        self,
        contact_id: str,
        exclude_service_id: Optional[str] = None,
        limit: int = 3,
    ) -> list[ServiceConfig]:
        """Active services the contact booked before, most frequent first."""
        async with self._unit_of_work("get_frequent_services") as db:
            result = await db.execute(
                select(Booking.service_id).where(
                    Booking.contact_id == _uuid(contact_id),
                    Booking.status.in_((BookingStatus.CONFIRMED, BookingStatus.COMPLETED)),
                )
            )
            counts = Counter(str(sid) for sid in result.scalars().all())
            if exclude_service_id:
                counts.pop(str(exclude_service_id), None)
            if not counts:
                return []

            ranked = [sid for sid, _ in counts.most_common(limit)]
            services = await db.execute(
                select(Service).where(
                    Service.id.in_([_uuid(sid) for sid in ranked]),
                    Service.is_active.is_(True),
                )
            )
            by_id = {str(s.id): _service_config(s) for s in services.scalars().all()}
            return [by_id[sid] for sid in ranked if sid in by_id]

    # === Settings ===

    async def get_settings(self) -> dict[str, str]:
        """Business-level policy overrides."""
        async with self._unit_of_work("get_settings") as db:
            result = await db.execute(select(Setting))
            return {row.key: row.value for row in result.scalars().all()}

    # === Contacts ===

    async def get_contact_email(self, contact_id: str) -> Optional[str]:
        """Stored email address of a contact."""
        async with self._unit_of_work("get_contact_email") as db:
            contact = await db.get(Contact, _uuid(contact_id))
            return contact.email if contact else None

    async def save_contact_email(self, contact_id: str, email: str) -> None:
        """Store a contact's email address."""
        async with self._unit_of_work("save_contact_email") as db:
            await db.execute(
                update(Contact).where(Contact.id == _uuid(contact_id)).values(email=email)
            )
        logger.info(f"Saved email for contact {contact_id}")

    # === Bookings ===

    async def list_upcoming_bookings(
        self,
        contact_id: str,
        now: Optional[datetime] = None,
    ) -> list[BookingSnapshot]:
        """Confirmed or pending bookings starting from now, soonest first."""
        now = now or _utcnow()
        async with self._unit_of_work("list_upcoming_bookings") as db:
            result = await db.execute(
                select(Booking)
                .options(selectinload(Booking.service))
                .where(
                    Booking.contact_id == _uuid(contact_id),
                    Booking.status.in_(ACTIVE_STATUSES),
                    Booking.start_time >= now,
                )
                .order_by(Booking.start_time.asc())
            )
            return [
                BookingSnapshot(
                    id=str(b.id),
                    service_name=b.service.name if b.service else b.title,
                    start_time=b.start_time,
                    status=b.status.value,
                    service_id=str(b.service_id),
                )
                for b in result.scalars().all()
            ]

    async def get_booking_detail(self, booking_id: str) -> Optional[BookingDetail]:
        """Booking with service and contact."""
        async with self._unit_of_work("get_booking_detail") as db:
            result = await db.execute(
                select(Booking)
                .options(selectinload(Booking.service), selectinload(Booking.contact))
                .where(Booking.id == _uuid(booking_id))
            )
            booking = result.scalar_one_or_none()
            if booking is None:
                return None
            return BookingDetail(
                id=str(booking.id),
                contact_id=str(booking.contact_id),
                phone_number=booking.contact.phone_number,
                status=booking.status,
                service=_service_config(booking.service),
                is_multi_session=booking.is_multi_session,
                session_group_id=(
                    str(booking.session_group_id) if booking.session_group_id else None
                ),
                session_number=booking.session_number,
                total_sessions=booking.total_sessions,
                conversation_id=booking.conversation_id,
            )

    async def cancel_booking(
        self,
        booking_id: str,
        reason: str,
        policy: BookingPolicy,
        now: Optional[datetime] = None,
    ) -> CancellationResult:
        """Cancel a booking and apply the late-cancellation policy.

        Raises:
            BookingPersistenceError: If the booking is missing or not active
        """
        now = now or _utcnow()
        async with self._unit_of_work("cancel_booking") as db:
            result = await db.execute(
                select(Booking)
                .options(selectinload(Booking.service))
                .where(Booking.id == _uuid(booking_id))
                .with_for_update()
            )
            booking = result.scalar_one_or_none()
            if booking is None or booking.status not in ACTIVE_STATUSES:
                raise BookingPersistenceError(f"Booking {booking_id} is not active")

            outcome = compute_cancellation_penalty(
                start_time=booking.start_time,
                now=now,
                policy=policy,
                service_cost=float(booking.service.cost) if booking.service else 0.0,
            )
            booking.status = BookingStatus.CANCELLED
            booking.cancellation_reason = reason
            booking.cancelled_at = now
            booking.penalty_fee = outcome.penalty_fee

        logger.info(
            f"Booking {booking_id} cancelled (penalty={outcome.penalty_fee:.2f})"
        )
        return outcome

    async def record_reschedule_request(
        self,
        conversation_id: str,
        booking: BookingSnapshot,
        new_start: datetime,
    ) -> None:
        """Leave a system note for staff to move the booking."""
        content = (
            f"RESCHEDULE REQUEST: {booking.service_name} from "
            f"{booking.start_time.isoformat()} to {new_start.isoformat()}"
        )
        async with self._unit_of_work("record_reschedule_request") as db:
            db.add(
                ConversationNote(
                    conversation_id=conversation_id,
                    kind="reschedule_request",
                    content=content,
                )
            )
        logger.info(f"Reschedule request recorded for booking {booking.id}")

    async def create_booking_batch(
        self,
        batch: NewBookingBatch,
        now: Optional[datetime] = None,
    ) -> list[str]:
        """Insert every session of a batch in one transaction.

        Returns:
            IDs of the created bookings, in session order

        Raises:
            BookingValidationError: If the batch is invalid (nothing written)
            BookingPersistenceError: If the insert fails (nothing written)
        """
        validate_batch(batch.entries, now or _utcnow())

        group_id = _uuid(batch.session_group_id) if batch.session_group_id else uuid.uuid4()
        total = batch.total_sessions or batch.service.total_sessions_required
        service = batch.service

        rows = [
            Booking(
                id=uuid.uuid4(),
                contact_id=_uuid(batch.contact_id),
                service_id=_uuid(service.id),
                conversation_id=batch.conversation_id,
                title=(
                    f"{service.name} - Session {entry.session_number}/{total}"
                    if batch.multi_session
                    else service.name
                ),
                start_time=entry.start_time,
                end_time=entry.end_time,
                status=batch.status,
                is_multi_session=batch.multi_session,
                session_group_id=group_id if batch.multi_session else None,
                session_number=entry.session_number if batch.multi_session else None,
                total_sessions=total if batch.multi_session else None,
            )
            for entry in batch.entries
        ]

        async with self._unit_of_work("create_booking_batch") as db:
            db.add_all(rows)
            await db.flush()

        ids = [str(row.id) for row in rows]
        logger.info(
            f"Created {len(ids)} {batch.status.value} bookings for {service.name} "
            f"(group {group_id})"
        )
        return ids

    async def confirm_bookings(self, booking_ids: list[str]) -> int:
        """Confirm every still-pending booking in one transaction."""
        return await self._transition_pending(
            booking_ids, {"status": BookingStatus.CONFIRMED}, "confirm_bookings"
        )

    async def cancel_pending_bookings(self, booking_ids: list[str], reason: str) -> int:
        """Cancel every still-pending booking in one transaction."""
        return await self._transition_pending(
            booking_ids,
            {
                "status": BookingStatus.CANCELLED,
                "cancellation_reason": reason,
                "cancelled_at": _utcnow(),
            },
            "cancel_pending_bookings",
        )

    async def delete_bookings(self, booking_ids: list[str]) -> int:
        """Delete provisional bookings in one transaction."""
        if not booking_ids:
            return 0
        async with self._unit_of_work("delete_bookings") as db:
            result = await db.execute(
                delete(Booking).where(
                    Booking.id.in_([_uuid(b) for b in booking_ids]),
                    Booking.status == BookingStatus.PENDING,
                )
            )
        logger.info(f"Deleted {result.rowcount} provisional bookings")
        return result.rowcount

    async def mark_completed(self, booking_id: str) -> bool:
        """Mark a confirmed booking as completed."""
        async with self._unit_of_work("mark_completed") as db:
            result = await db.execute(
                update(Booking)
                .where(
                    Booking.id == _uuid(booking_id),
                    Booking.status == BookingStatus.CONFIRMED,
                )
                .values(status=BookingStatus.COMPLETED)
            )
        return result.rowcount > 0

    async def _transition_pending(
        self,
        booking_ids: list[str],
        values: dict,
        operation: str,
    ) -> int:
        if not booking_ids:
            return 0
        async with self._unit_of_work(operation) as db:
            result = await db.execute(
                update(Booking)
                .where(
                    Booking.id.in_([_uuid(b) for b in booking_ids]),
                    Booking.status == BookingStatus.PENDING,
                )
                .values(**values)
            )
        logger.info(f"{operation}: {result.rowcount} of {len(booking_ids)} bookings")
        return result.rowcount

    async def get_session_progress(
        self,
        contact_id: str,
        service: ServiceConfig,
    ) -> SessionProgress:
        """Progress through the contact's latest plan for a service."""
        async with self._unit_of_work("get_session_progress") as db:
            latest = await db.execute(
                select(Booking.session_group_id)
                .where(
                    Booking.contact_id == _uuid(contact_id),
                    Booking.service_id == _uuid(service.id),
                    Booking.is_multi_session.is_(True),
                    Booking.status.in_(PROGRESS_STATUSES),
                )
                .order_by(Booking.created_at.desc())
                .limit(1)
            )
            group_id = latest.scalar_one_or_none()
            if group_id is None:
                return SessionProgress(
                    total_sessions=service.total_sessions_required,
                    booked_sessions=0,
                    completed_sessions=0,
                )

            result = await db.execute(
                select(Booking).where(
                    Booking.session_group_id == group_id,
                    Booking.status.in_(PROGRESS_STATUSES),
                )
            )
            rows = result.scalars().all()

        total = max(
            [r.total_sessions or 0 for r in rows] + [service.total_sessions_required]
        )
        return SessionProgress(
            total_sessions=total,
            booked_sessions=len(rows),
            completed_sessions=sum(1 for r in rows if r.status == BookingStatus.COMPLETED),
            session_group_id=str(group_id),
        )

    # === Payment links ===

    async def create_payment_link(
        self,
        contact_id: str,
        booking_ids: list[str],
        amount: float,
        currency: str,
        description: str,
        expires_at: datetime,
        conversation_id: Optional[str] = None,
    ) -> str:
        """Store a pending payment link and attach it to its bookings."""
        link_id = uuid.uuid4()
        async with self._unit_of_work("create_payment_link") as db:
            db.add(
                PaymentLink(
                    id=link_id,
                    conversation_id=conversation_id,
                    contact_id=_uuid(contact_id),
                    booking_ids=list(booking_ids),
                    amount=amount,
                    currency=currency,
                    description=description,
                    status=PaymentLinkStatus.PENDING,
                    expires_at=expires_at,
                )
            )
            await db.flush()
            await db.execute(
                update(Booking)
                .where(Booking.id.in_([_uuid(b) for b in booking_ids]))
                .values(payment_link_id=link_id)
            )
        return str(link_id)

    async def get_payment_link(self, link_id: str) -> Optional[PaymentLinkRecord]:
        """Payment link by ID."""
        async with self._unit_of_work("get_payment_link") as db:
            link = await db.get(PaymentLink, _uuid(link_id))
            return _payment_link_record(link) if link else None

    async def get_payment_link_by_checkout_session(
        self,
        checkout_session_id: str,
    ) -> Optional[PaymentLinkRecord]:
        """Payment link by processor checkout session ID."""
        async with self._unit_of_work("get_payment_link_by_checkout_session") as db:
            result = await db.execute(
                select(PaymentLink).where(
                    PaymentLink.checkout_session_id == checkout_session_id
                )
            )
            link = result.scalar_one_or_none()
            return _payment_link_record(link) if link else None

    async def update_payment_link(self, link_id: str, **values) -> None:
        """Update payment link columns (status, checkout_url, paid_at, ...)."""
        async with self._unit_of_work("update_payment_link") as db:
            await db.execute(
                update(PaymentLink).where(PaymentLink.id == _uuid(link_id)).values(**values)
            )

    async def settle_payment_link(
        self,
        link_id: str,
        status: PaymentLinkStatus,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Move a pending link to a terminal status together with its bookings.

        Paid confirms every still-pending linked booking; any other status
        cancels them. Link and bookings change in one transaction.

        Returns:
            True if this call settled the link, False if it was already settled
        """
        if status == PaymentLinkStatus.PENDING:
            raise ValueError("Cannot settle a payment link as pending")

        now = now or _utcnow()
        async with self._unit_of_work("settle_payment_link") as db:
            result = await db.execute(
                select(PaymentLink)
                .where(PaymentLink.id == _uuid(link_id))
                .with_for_update()
            )
            link = result.scalar_one_or_none()
            if link is None or link.status != PaymentLinkStatus.PENDING:
                return False

            link.status = status
            if status == PaymentLinkStatus.PAID:
                link.paid_at = now
                values = {"status": BookingStatus.CONFIRMED}
            else:
                values = {
                    "status": BookingStatus.CANCELLED,
                    "cancellation_reason": reason or f"Payment {status.value}",
                    "cancelled_at": now,
                }

            booking_ids = [_uuid(b) for b in link.booking_ids or []]
            if booking_ids:
                await db.execute(
                    update(Booking)
                    .where(
                        Booking.id.in_(booking_ids),
                        Booking.status == BookingStatus.PENDING,
                    )
                    .values(**values)
                )

        logger.info(f"Payment link {link_id} settled as {status.value}")
        return True

    async def list_expired_pending_links(
        self,
        now: Optional[datetime] = None,
    ) -> list[PaymentLinkRecord]:
        """Pending links whose expiry has passed."""
        now = now or _utcnow()
        async with self._unit_of_work("list_expired_pending_links") as db:
            result = await db.execute(
                select(PaymentLink).where(
                    PaymentLink.status == PaymentLinkStatus.PENDING,
                    PaymentLink.expires_at < now,
                )
            )
            return [_payment_link_record(link) for link in result.scalars().all()]


# Singleton
_repository: Optional[BookingRepository] = None


def get_booking_repository() -> BookingRepository:
    """Get singleton BookingRepository."""
    global _repository
    if _repository is None:
        _repository = BookingRepository()
    return _repository
