"""Tests for the new booking flow and its email gate."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from booking_bot.core.booking.context import BookingIntent, ConversationContext
from booking_bot.core.booking.email_guard import EmailCollectionGuard
from booking_bot.core.booking.errors import BookingPersistenceError
from booking_bot.core.booking.flows import NewBookingHandler
from booking_bot.core.booking.flows.new_booking import match_service
from booking_bot.core.booking.policy import BookingPolicy
from booking_bot.core.scheduling.types import ServiceConfig
from tests.conftest import NOW

MANDATORY = BookingPolicy(
    email_collection_mode="mandatory", email_prompt_mandatory="Your email, please?"
)


@pytest.fixture
def multi_session():
    handler = MagicMock()
    handler.start = AsyncMock()
    handler.handle = AsyncMock()
    return handler


@pytest.fixture
def handler(repository, extractor, config, multi_session):
    return NewBookingHandler(
        repository=repository,
        extractor=extractor,
        config=config,
        email_guard=EmailCollectionGuard(repository),
        multi_session=multi_session,
    )


@pytest.fixture
def context():
    return ConversationContext(
        conversation_id="conv-1", contact_id="contact-1", intent=BookingIntent.NEW
    )


class TestMatchService:
    """Test service name matching."""

    def test_longest_name_wins(self):
        """Test a more specific service name is preferred."""
        services = [
            ServiceConfig(id="1", name="Massage"),
            ServiceConfig(id="2", name="Hot Stone Massage"),
        ]

        assert match_service("a hot stone massage please", services).id == "2"

    def test_no_match(self):
        """Test unknown services."""
        assert match_service("a haircut", [ServiceConfig(id="1", name="Massage")]) is None


class TestNewBookingHandler:
    """Test NewBookingHandler."""

    @pytest.mark.asyncio
    async def test_service_selected(self, handler, repository, context, massage, policy):
        """Test a single-session service with recommendations."""
        repository.list_active_services.return_value = [massage]
        repository.get_frequent_services.return_value = [ServiceConfig(id="x", name="Facial")]

        result = await handler.handle(context, "I'd like a massage", policy, NOW)

        assert result.finished
        assert "book a Massage appointment" in result.reply
        assert "✨ *Recommended Services:*\n1. Facial" in result.reply
        repository.get_frequent_services.assert_awaited_once_with(
            "contact-1", exclude_service_id="svc-massage"
        )

    @pytest.mark.asyncio
    async def test_service_menu(self, handler, repository, context, massage, policy):
        """Test the menu when no service is named."""
        repository.list_active_services.return_value = [massage]

        result = await handler.handle(context, "I want to book something", policy, NOW)

        assert "1. Massage" in result.reply
        assert result.step == "service_menu"

    @pytest.mark.asyncio
    async def test_recommendations_unavailable(self, handler, repository, context, massage, policy):
        """Test a history lookup failure still answers."""
        repository.list_active_services.return_value = [massage]
        repository.get_frequent_services.side_effect = BookingPersistenceError("db down")

        result = await handler.handle(context, "massage please", policy, NOW)

        assert "Recommended" not in result.reply
        assert result.finished

    @pytest.mark.asyncio
    async def test_multi_session_handoff(
        self, handler, repository, multi_session, context, laser, policy
    ):
        """Test a multi-session service starts the plan on the same message."""
        repository.list_active_services.return_value = [laser]
        multi_session.handle.return_value = MagicMock(reply="preview", step="confirm_all")

        result = await handler.handle(context, "Laser Hair Removal on Monday", policy, NOW)

        multi_session.start.assert_awaited_once_with(context, laser)
        assert multi_session.handle.call_args.args[1] == "Laser Hair Removal on Monday"
        assert result.reply == "preview"

    @pytest.mark.asyncio
    async def test_plan_in_progress_goes_to_multi_session(
        self, handler, repository, multi_session, context, laser, policy
    ):
        """Test later turns skip service resolution."""
        context.multi_session_service = laser
        multi_session.handle.return_value = MagicMock(reply="next", step="collect_dates")

        await handler.handle(context, "Tuesday", policy, NOW)

        repository.list_active_services.assert_not_called()
        multi_session.handle.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_email_gate_holds_message(self, handler, repository, context, massage):
        """Test the held-back request is used once the email arrives."""
        repository.list_active_services.return_value = [massage]

        blocked = await handler.handle(context, "Book a massage", MANDATORY, NOW)
        assert blocked.reply == "Your email, please?"
        assert blocked.step == "collect_email"
        assert not blocked.finished

        again = await handler.handle(context, "why do you need it?", MANDATORY, NOW)
        assert again.reply == "Your email, please?"
        assert context.deferred_message == "Book a massage"

        result = await handler.handle(context, "jane@example.com", MANDATORY, NOW)

        assert "book a Massage appointment" in result.reply
        assert context.deferred_message is None
        repository.save_contact_email.assert_awaited_once_with("contact-1", "jane@example.com")
