"""Shared fixtures for booking engine tests."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from booking_bot.config import Settings
from booking_bot.core.booking.extractor import DateTimeExtraction
from booking_bot.core.booking.policy import BookingPolicy
from booking_bot.core.scheduling.types import (
    MultiSessionStrategy,
    ServiceConfig,
    SessionProgress,
)

# Wednesday, 13:00 in Zurich
NOW = datetime(2025, 12, 10, 12, 0, tzinfo=timezone.utc)


def no_datetime() -> DateTimeExtraction:
    return DateTimeExtraction()


def on(date: str, time: str = "10:00") -> DateTimeExtraction:
    """Extraction result for a date/time mentioned in a message."""
    return DateTimeExtraction(found=True, date=date, time=time)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def config():
    return Settings(
        _env_file=None,
        business_timezone="Europe/Zurich",
        stripe_api_key="sk_test_123",
        payments_enabled=True,
        payment_link_ttl_hours=24,
    )


@pytest.fixture
def policy():
    return BookingPolicy(
        email_collection_mode="skip",
        payments_enabled=True,
        strict_payment_enforcement=True,
    )


@pytest.fixture
def repository():
    """Booking repository mock with neutral defaults."""
    repo = AsyncMock()
    repo.list_active_services.return_value = []
    repo.get_customer_override.return_value = None
    repo.get_frequent_services.return_value = []
    repo.get_settings.return_value = {}
    repo.get_contact_email.return_value = None
    repo.list_upcoming_bookings.return_value = []
    repo.get_session_progress.return_value = SessionProgress(
        total_sessions=0, booked_sessions=0, completed_sessions=0
    )
    repo.create_booking_batch.return_value = []
    repo.settle_payment_link.return_value = True
    repo.list_expired_pending_links.return_value = []
    repo.mark_completed.return_value = True
    return repo


@pytest.fixture
def extractor():
    """Booking extractor mock; nothing is found unless a test says so."""
    mock = MagicMock()
    mock.extract_datetime = AsyncMock(return_value=no_datetime())
    mock.extract_reason = AsyncMock(return_value=None)
    mock.extract_session_count = AsyncMock(return_value=None)
    mock.classify_intent = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def laser():
    """Paid three-session plan booked all at once."""
    return ServiceConfig(
        id="svc-laser",
        name="Laser Hair Removal",
        duration_minutes=60,
        cost=100.0,
        requires_payment=True,
        requires_multiple_sessions=True,
        total_sessions_required=3,
        multi_session_strategy=MultiSessionStrategy.IMMEDIATE,
        session_buffer_config={"session_1_to_2_days": 14, "session_2_to_3_days": 14},
    )


@pytest.fixture
def physio():
    """Free five-session plan booked one session at a time."""
    return ServiceConfig(
        id="svc-physio",
        name="Physiotherapy",
        duration_minutes=45,
        requires_multiple_sessions=True,
        total_sessions_required=5,
        multi_session_strategy=MultiSessionStrategy.SEQUENTIAL,
        session_buffer_config={"minimum_days": 7},
    )


@pytest.fixture
def peel():
    """Free four-session plan with customer-chosen dates."""
    return ServiceConfig(
        id="svc-peel",
        name="Chemical Peel",
        duration_minutes=30,
        requires_multiple_sessions=True,
        total_sessions_required=4,
        multi_session_strategy=MultiSessionStrategy.FLEXIBLE,
        session_buffer_config={"minimum_days": 14},
    )


@pytest.fixture
def massage():
    """Single-session service."""
    return ServiceConfig(id="svc-massage", name="Massage", duration_minutes=60, cost=90.0)
