"""Tests for multi-session booking."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from booking_bot.core.booking.context import ConversationContext, MultiSessionStep
from booking_bot.core.booking.errors import BookingPersistenceError, PaymentLinkError
from booking_bot.core.booking.flows import MultiSessionHandler
from booking_bot.core.booking.messages import BOOKING_DECLINED, BOOKING_FAILED
from booking_bot.core.booking.policy import BookingPolicy
from booking_bot.core.payments import PAYMENT_UNAVAILABLE
from booking_bot.core.scheduling.types import SessionProgress
from booking_bot.models.database import BookingStatus
from tests.conftest import NOW, on


@pytest.fixture
def gate():
    mock = MagicMock()
    mock.is_payment_enabled = MagicMock(return_value=True)
    mock.create_and_send_link = AsyncMock(return_value="I've sent you a secure payment link.")
    return mock


@pytest.fixture
def handler(repository, extractor, config, gate):
    return MultiSessionHandler(
        repository=repository, extractor=extractor, config=config, payment_gate=gate
    )


@pytest.fixture
def context():
    return ConversationContext(
        conversation_id="conv-1",
        contact_id="contact-1",
        phone_number="+41791234567",
    )


async def preview_immediate(handler, extractor, context, service, policy):
    """Start an immediate plan and reach the confirmation step."""
    await handler.start(context, service)
    extractor.extract_datetime.return_value = on("2025-12-15", "10:00")
    return await handler.handle(context, "Start on December 15 at 10am", policy, NOW)


class TestImmediateStrategy:
    """Test immediate plans: one start date, all sessions at once."""

    @pytest.mark.asyncio
    async def test_preview(self, handler, extractor, context, laser, policy):
        """Test the whole schedule is previewed from one start date."""
        result = await preview_immediate(handler, extractor, context, laser, policy)

        assert result.step == "confirm_all"
        assert not result.finished
        assert "📅 Session 1: Monday, Dec 15 at 10:00" in result.reply
        assert "📅 Session 2: Monday, Dec 29 at 10:00" in result.reply
        assert "📅 Session 3: Monday, Jan 12 at 10:00" in result.reply
        assert context.multi_session_step == MultiSessionStep.CONFIRM_ALL

    @pytest.mark.asyncio
    async def test_start_date_prompt(self, handler, context, laser, policy):
        """Test the start date is asked when none was given."""
        await handler.start(context, laser)

        result = await handler.handle(context, "sounds interesting", policy, NOW)

        assert "When would you like to start?" in result.reply
        assert context.multi_session_step == MultiSessionStep.COLLECT_DATES

    @pytest.mark.asyncio
    async def test_paid_batch_is_pending(
        self, handler, repository, extractor, gate, context, laser, policy
    ):
        """Test all sessions are created together as pending and a link is requested."""
        repository.create_booking_batch.return_value = ["b1", "b2", "b3"]
        await preview_immediate(handler, extractor, context, laser, policy)

        result = await handler.handle(context, "yes", policy, NOW)

        batch = repository.create_booking_batch.call_args.args[0]
        assert batch.status == BookingStatus.PENDING
        assert [e.session_number for e in batch.entries] == [1, 2, 3]
        assert gate.create_and_send_link.call_args.args[1] == ["b1", "b2", "b3"]
        assert gate.create_and_send_link.call_args.kwargs["amount"] == 300.0
        assert result.step == "awaiting_payment"
        assert not result.finished

    @pytest.mark.asyncio
    async def test_strict_payment_failure_removes_all(
        self, handler, repository, extractor, gate, context, laser, policy
    ):
        """Test no booking survives a failed link under strict enforcement."""
        repository.create_booking_batch.return_value = ["b1", "b2", "b3"]
        gate.create_and_send_link.side_effect = PaymentLinkError("stripe down")
        await preview_immediate(handler, extractor, context, laser, policy)

        result = await handler.handle(context, "yes", policy, NOW)

        repository.delete_bookings.assert_awaited_once_with(["b1", "b2", "b3"])
        repository.confirm_bookings.assert_not_called()
        assert result.reply == PAYMENT_UNAVAILABLE
        assert result.finished

    @pytest.mark.asyncio
    async def test_lenient_payment_failure_confirms_all(
        self, handler, repository, extractor, gate, context, laser
    ):
        """Test all bookings stand unpaid under lenient enforcement."""
        lenient = BookingPolicy(
            email_collection_mode="skip",
            payments_enabled=True,
            strict_payment_enforcement=False,
        )
        repository.create_booking_batch.return_value = ["b1", "b2", "b3"]
        gate.create_and_send_link.side_effect = PaymentLinkError("stripe down")
        await preview_immediate(handler, extractor, context, laser, lenient)

        result = await handler.handle(context, "yes", lenient, NOW)

        repository.confirm_bookings.assert_awaited_once_with(["b1", "b2", "b3"])
        repository.delete_bookings.assert_not_called()
        assert "Payment can be settled at your first visit." in result.reply
        assert result.finished

    @pytest.mark.asyncio
    async def test_payments_disabled_confirms(
        self, handler, repository, extractor, gate, context, laser, policy
    ):
        """Test a paid service is confirmed directly when payments are off."""
        gate.is_payment_enabled.return_value = False
        repository.create_booking_batch.return_value = ["b1", "b2", "b3"]
        await preview_immediate(handler, extractor, context, laser, policy)

        result = await handler.handle(context, "yes", policy, NOW)

        assert repository.create_booking_batch.call_args.args[0].status == BookingStatus.CONFIRMED
        gate.create_and_send_link.assert_not_called()
        assert "You're all set" in result.reply
        assert result.finished

    @pytest.mark.asyncio
    async def test_batch_failure(self, handler, repository, extractor, gate, context, laser, policy):
        """Test a rejected batch ends with an apology and no payment."""
        repository.create_booking_batch.side_effect = BookingPersistenceError("conflict")
        await preview_immediate(handler, extractor, context, laser, policy)

        result = await handler.handle(context, "yes", policy, NOW)

        assert result.reply == BOOKING_FAILED
        assert result.finished
        gate.create_and_send_link.assert_not_called()

    @pytest.mark.asyncio
    async def test_declined(self, handler, repository, extractor, context, laser, policy):
        """Test saying no books nothing."""
        await preview_immediate(handler, extractor, context, laser, policy)

        result = await handler.handle(context, "no thanks", policy, NOW)

        assert result.reply == BOOKING_DECLINED
        assert result.finished
        repository.create_booking_batch.assert_not_called()

    @pytest.mark.asyncio
    async def test_unclear_answer_repeats_preview(
        self, handler, repository, extractor, context, laser, policy
    ):
        """Test an unclear reply shows the schedule again."""
        await preview_immediate(handler, extractor, context, laser, policy)

        result = await handler.handle(context, "maybe", policy, NOW)

        assert result.step == "confirm_all"
        assert "Shall I book all 3 sessions?" in result.reply
        repository.create_booking_batch.assert_not_called()

    @pytest.mark.asyncio
    async def test_customer_override(self, handler, repository, extractor, context, laser, policy):
        """Test a customer override changes the session count."""
        repository.get_customer_override.return_value = {"total_sessions_override": 2}

        result = await preview_immediate(handler, extractor, context, laser, policy)

        assert "Session 2:" in result.reply
        assert "Session 3:" not in result.reply


class TestSequentialStrategy:
    """Test sequential plans: one session at a time."""

    @pytest.mark.asyncio
    async def test_blocked_while_session_upcoming(
        self, handler, repository, context, physio, policy
    ):
        """Test the next session cannot be booked before the current one completes."""
        repository.get_session_progress.return_value = SessionProgress(
            total_sessions=5, booked_sessions=2, completed_sessions=1
        )
        await handler.start(context, physio)

        result = await handler.handle(context, "book my next session", policy, NOW)

        assert result.finished
        assert result.step == "sequential_blocked"
        assert "Progress: 1 completed, 1 upcoming, 3 still to book" in result.reply
        repository.create_booking_batch.assert_not_called()

    @pytest.mark.asyncio
    async def test_books_next_session(
        self, handler, repository, extractor, context, physio, policy
    ):
        """Test the next session joins the existing plan."""
        repository.get_session_progress.return_value = SessionProgress(
            total_sessions=5, booked_sessions=2, completed_sessions=2, session_group_id="grp-1"
        )
        repository.create_booking_batch.return_value = ["b3"]
        extractor.extract_datetime.return_value = on("2025-12-17", "09:00")
        await handler.start(context, physio)

        preview = await handler.handle(context, "Wednesday 9am", policy, NOW)
        assert "📅 Session 3: Wednesday, Dec 17 at 09:00" in preview.reply

        result = await handler.handle(context, "yes", policy, NOW)

        batch = repository.create_booking_batch.call_args.args[0]
        assert batch.session_group_id == "grp-1"
        assert [e.session_number for e in batch.entries] == [3]
        assert batch.status == BookingStatus.CONFIRMED
        assert result.finished

    @pytest.mark.asyncio
    async def test_plan_complete(self, handler, repository, context, physio, policy):
        """Test a finished plan books nothing."""
        repository.get_session_progress.return_value = SessionProgress(
            total_sessions=5, booked_sessions=5, completed_sessions=5
        )
        await handler.start(context, physio)

        result = await handler.handle(context, "another session", policy, NOW)

        assert result.step == "plan_complete"
        assert "completed all 5 sessions" in result.reply


class TestFlexibleStrategy:
    """Test flexible plans: customer picks the count and each date."""

    @pytest.mark.asyncio
    async def test_full_flow(self, handler, repository, extractor, context, peel, policy):
        """Test count, ordered dates, preview and commit."""
        repository.get_session_progress.return_value = SessionProgress(
            total_sessions=4, booked_sessions=1, completed_sessions=1, session_group_id="grp-2"
        )
        repository.create_booking_batch.return_value = ["b2", "b3"]
        await handler.start(context, peel)

        asked = await handler.handle(context, "Chemical Peel please", policy, NOW)
        assert "You have 3 Chemical Peel sessions left to book" in asked.reply

        extractor.extract_session_count.return_value = 5
        invalid = await handler.handle(context, "5", policy, NOW)
        assert invalid.reply == "Please choose a number of sessions between 1 and 3."

        extractor.extract_session_count.return_value = 2
        first = await handler.handle(context, "2", policy, NOW)
        assert "Session 2 of 4" in first.reply
        extractor.extract_datetime.assert_not_called()

        extractor.extract_datetime.return_value = on("2025-12-20", "11:00")
        second = await handler.handle(context, "Dec 20 at 11", policy, NOW)
        assert "Session 3 of 4" in second.reply

        extractor.extract_datetime.return_value = on("2025-12-18", "11:00")
        out_of_order = await handler.handle(context, "Dec 18", policy, NOW)
        assert "Session 3 needs to be after session 2" in out_of_order.reply
        assert len(context.collected_dates) == 1

        extractor.extract_datetime.return_value = on("2026-01-05", "11:00")
        preview = await handler.handle(context, "Jan 5", policy, NOW)
        assert "📅 Session 2: Saturday, Dec 20 at 11:00" in preview.reply
        assert "📅 Session 3: Monday, Jan 5 at 11:00" in preview.reply

        result = await handler.handle(context, "yes please", policy, NOW)

        batch = repository.create_booking_batch.call_args.args[0]
        assert [e.session_number for e in batch.entries] == [2, 3]
        assert batch.session_group_id == "grp-2"
        assert result.finished
