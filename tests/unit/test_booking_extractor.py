"""Tests for Claude-backed booking extraction."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from booking_bot.core.booking.context import BookingIntent
from booking_bot.core.booking.extractor import BookingExtractor, parse_number
from booking_bot.infra.claude import ClaudeClientError


@pytest.fixture
def claude():
    client = MagicMock()
    client.generate_json = AsyncMock()
    return client


@pytest.fixture
def extractor(claude):
    return BookingExtractor(claude_client=claude)


class TestParseNumber:
    """Test parse_number."""

    def test_digits(self):
        """Test numeric input."""
        assert parse_number("I'd like 3 sessions") == 3

    def test_words(self):
        """Test number words."""
        assert parse_number("Two please") == 2

    def test_none(self):
        """Test messages without numbers."""
        assert parse_number("as many as possible") is None


class TestExtractDatetime:
    """Test date/time extraction."""

    @pytest.mark.asyncio
    async def test_found(self, extractor, claude):
        """Test a complete date and time."""
        claude.generate_json.return_value = {
            "has_datetime": True, "date": "2025-12-20", "time": "14:30",
        }

        result = await extractor.extract_datetime("December 20 at 2:30pm")

        assert result.found
        assert result.date == "2025-12-20"
        assert result.time == "14:30"

    @pytest.mark.asyncio
    async def test_time_defaults(self, extractor, claude):
        """Test a date without a time gets the default time."""
        claude.generate_json.return_value = {
            "has_datetime": True, "date": "2025-12-20", "time": None,
        }

        result = await extractor.extract_datetime("next Saturday")

        assert result.time == "10:00"

    @pytest.mark.asyncio
    async def test_not_found(self, extractor, claude):
        """Test no date mentioned."""
        claude.generate_json.return_value = {"has_datetime": False}

        result = await extractor.extract_datetime("whenever works")

        assert not result.found

    @pytest.mark.asyncio
    async def test_api_error(self, extractor, claude):
        """Test API failure is reported as not found."""
        claude.generate_json.side_effect = ClaudeClientError("boom")

        result = await extractor.extract_datetime("tomorrow at 3")

        assert not result.found

    @pytest.mark.asyncio
    async def test_empty_message_skips_call(self, extractor, claude):
        """Test blank input never calls the model."""
        result = await extractor.extract_datetime("   ")

        assert not result.found
        claude.generate_json.assert_not_called()


class TestExtractReason:
    """Test cancellation reason extraction."""

    @pytest.mark.asyncio
    async def test_reason(self, extractor, claude):
        """Test a stated reason."""
        claude.generate_json.return_value = {"reason": "Feeling unwell"}

        assert await extractor.extract_reason("I'm sick") == "Feeling unwell"

    @pytest.mark.asyncio
    async def test_not_specified(self, extractor, claude):
        """Test the sentinel maps to None."""
        claude.generate_json.return_value = {"reason": "not_specified"}

        assert await extractor.extract_reason("ok") is None


class TestExtractSessionCount:
    """Test session count extraction."""

    @pytest.mark.asyncio
    async def test_number_in_text(self, extractor, claude):
        """Test no model call when a number is present."""
        assert await extractor.extract_session_count("2") == 2
        claude.generate_json.assert_not_called()

    @pytest.mark.asyncio
    async def test_model_fallback(self, extractor, claude):
        """Test the model is asked for written-out counts."""
        claude.generate_json.return_value = {"count": 4}

        assert await extractor.extract_session_count("a handful") == 4

    @pytest.mark.asyncio
    async def test_invalid_model_value(self, extractor, claude):
        """Test non-integer replies are ignored."""
        claude.generate_json.return_value = {"count": "lots"}

        assert await extractor.extract_session_count("lots") is None


class TestClassifyIntent:
    """Test intent classification."""

    @pytest.mark.asyncio
    async def test_known_intent(self, extractor, claude):
        """Test a recognised intent."""
        claude.generate_json.return_value = {"intent": "reschedule"}

        assert await extractor.classify_intent("can we move it?") == BookingIntent.RESCHEDULE

    @pytest.mark.asyncio
    async def test_none_intent(self, extractor, claude):
        """Test unrelated messages."""
        claude.generate_json.return_value = {"intent": "none"}

        assert await extractor.classify_intent("hello") is None
