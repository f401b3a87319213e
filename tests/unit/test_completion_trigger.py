"""Tests for the next-session prompt on completion."""

from dataclasses import replace
from unittest.mock import AsyncMock, MagicMock

import pytest

from booking_bot.core.booking.context import BookingIntent, ConversationContext, PaymentStatus
from booking_bot.core.booking.errors import BookingPersistenceError
from booking_bot.core.booking.repository import BookingDetail
from booking_bot.core.booking.store import InMemoryContextStore
from booking_bot.core.scheduling.completion import SessionCompletionTrigger
from booking_bot.core.scheduling.types import MultiSessionStrategy, SessionProgress
from booking_bot.models.database import BookingStatus


@pytest.fixture
def messaging():
    client = MagicMock()
    client.send = AsyncMock(return_value="msg-1")
    return client


@pytest.fixture
def store():
    return InMemoryContextStore()


@pytest.fixture
def trigger(repository, messaging, store):
    return SessionCompletionTrigger(repository=repository, messaging=messaging, store=store)


@pytest.fixture
def detail(physio):
    return BookingDetail(
        id="b2",
        contact_id="contact-1",
        phone_number="+41791234567",
        status=BookingStatus.COMPLETED,
        service=physio,
        is_multi_session=True,
        session_group_id="grp-1",
        session_number=2,
        total_sessions=5,
        conversation_id="conv-9",
    )


class TestSessionCompletionTrigger:
    """Test SessionCompletionTrigger."""

    @pytest.mark.asyncio
    async def test_prompts_next_session(self, trigger, repository, messaging, store, detail):
        """Test the customer is invited to book session 3."""
        repository.get_booking_detail.return_value = detail
        repository.get_session_progress.return_value = SessionProgress(
            total_sessions=5, booked_sessions=2, completed_sessions=2, session_group_id="grp-1"
        )

        message = await trigger.on_booking_completed("b2")

        assert "completing Session 2 of your Physiotherapy treatment" in message
        assert "schedule Session 3" in message
        repository.mark_completed.assert_awaited_once_with("b2")
        messaging.send.assert_awaited_once_with("+41791234567", message)
        context = await store.get("conv-9")
        assert context.intent == BookingIntent.NEW
        assert context.multi_session_service.id == "svc-physio"

    @pytest.mark.asyncio
    async def test_no_prompt_with_upcoming_session(self, trigger, repository, messaging, detail):
        """Test nothing is sent while another session is booked."""
        repository.get_booking_detail.return_value = detail
        repository.get_session_progress.return_value = SessionProgress(
            total_sessions=5, booked_sessions=3, completed_sessions=2
        )

        assert await trigger.on_booking_completed("b2") is None
        messaging.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_not_sequential(self, trigger, repository, messaging, detail):
        """Test other strategies are not prompted."""
        detail.service = replace(
            detail.service, multi_session_strategy=MultiSessionStrategy.FLEXIBLE
        )
        repository.get_booking_detail.return_value = detail

        assert await trigger.on_booking_completed("b2") is None
        repository.get_session_progress.assert_not_called()

    @pytest.mark.asyncio
    async def test_repeated_completion(self, trigger, repository, messaging, detail):
        """Test a booking completed earlier does not prompt again."""
        repository.mark_completed.return_value = False
        repository.get_booking_detail.return_value = detail

        assert await trigger.on_booking_completed("b2") is None
        messaging.send.assert_not_called()
        repository.get_session_progress.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_booking(self, trigger, repository, messaging):
        """Test a missing booking raises instead of reporting success."""
        repository.mark_completed.return_value = False
        repository.get_booking_detail.return_value = None

        with pytest.raises(BookingPersistenceError):
            await trigger.on_booking_completed("missing")
        messaging.send.assert_not_called()

    @pytest.mark.asyncio
    async def test_keeps_active_context(self, trigger, repository, messaging, store, detail):
        """Test an awaiting-payment context is not replaced by the next-session context."""
        await store.set(ConversationContext(
            conversation_id="conv-9",
            contact_id="contact-1",
            intent=BookingIntent.NEW,
            payment_link_id="link-1",
            payment_status=PaymentStatus.PENDING,
            pending_booking_ids=["b7"],
        ))
        repository.get_booking_detail.return_value = detail
        repository.get_session_progress.return_value = SessionProgress(
            total_sessions=5, booked_sessions=2, completed_sessions=2
        )

        assert await trigger.on_booking_completed("b2") is not None

        context = await store.get("conv-9")
        assert context.payment_link_id == "link-1"
        assert context.awaiting_payment
        assert context.multi_session_service is None

    @pytest.mark.asyncio
    async def test_uses_injected_empty_store(self, repository, messaging, detail):
        """Test an empty in-memory store is kept rather than replaced by the default."""
        store = InMemoryContextStore()
        trigger = SessionCompletionTrigger(repository=repository, messaging=messaging, store=store)
        repository.get_booking_detail.return_value = detail
        repository.get_session_progress.return_value = SessionProgress(
            total_sessions=5, booked_sessions=2, completed_sessions=2
        )

        await trigger.on_booking_completed("b2")

        assert len(store) == 1

    @pytest.mark.asyncio
    async def test_undelivered_prompt(self, trigger, repository, messaging, store, detail):
        """Test the context is prepared even when delivery fails."""
        repository.get_booking_detail.return_value = detail
        repository.get_session_progress.return_value = SessionProgress(
            total_sessions=5, booked_sessions=2, completed_sessions=2
        )
        messaging.send.return_value = None

        assert await trigger.on_booking_completed("b2") is not None
        assert await store.get("conv-9") is not None
