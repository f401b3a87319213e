"""Tests for the multi-session scheduling engine."""

from datetime import datetime, timedelta, timezone

import pytest

from booking_bot.core.scheduling import (
    DEFAULT_BUFFER_DAYS,
    MultiSessionSchedulingEngine,
    MultiSessionStrategy,
    ServiceConfig,
    SessionProgress,
    generate_progress_message,
)


@pytest.fixture
def engine():
    return MultiSessionSchedulingEngine()


@pytest.fixture
def start():
    return datetime(2025, 12, 15, 10, 0, tzinfo=timezone.utc)


class TestGetBufferDays:
    """Test buffer lookup."""

    def test_named_gap_for_immediate(self, engine):
        """Test immediate plans use the per-gap key."""
        config = {"session_1_to_2_days": 7, "session_2_to_3_days": 14}

        assert engine.get_buffer_days(MultiSessionStrategy.IMMEDIATE, config, 1) == 7
        assert engine.get_buffer_days(MultiSessionStrategy.IMMEDIATE, config, 2) == 14

    def test_uniform_fallback_priority(self, engine):
        """Test minimum_days wins over recommended_days and default_days."""
        config = {"default_days": 21, "recommended_days": 14, "minimum_days": 10}

        assert engine.get_buffer_days(MultiSessionStrategy.SEQUENTIAL, config, 1) == 10

    def test_named_gap_ignored_for_sequential(self, engine):
        """Test per-gap keys only apply to immediate plans."""
        config = {"session_1_to_2_days": 3, "recommended_days": 14}

        assert engine.get_buffer_days(MultiSessionStrategy.SEQUENTIAL, config, 1) == 14

    def test_default_when_missing(self, engine):
        """Test the default gap when nothing is configured."""
        assert engine.get_buffer_days(MultiSessionStrategy.FLEXIBLE, None, 1) == DEFAULT_BUFFER_DAYS
        assert engine.get_buffer_days(MultiSessionStrategy.IMMEDIATE, {"other": 1}, 4) == DEFAULT_BUFFER_DAYS


class TestCalculateSchedule:
    """Test schedule computation."""

    def test_immediate_schedule(self, engine, start):
        """Test three sessions spaced by the configured gaps."""
        schedule = engine.calculate_schedule(
            strategy=MultiSessionStrategy.IMMEDIATE,
            start_time=start,
            buffer_config={"session_1_to_2_days": 7, "session_2_to_3_days": 14},
            session_count=3,
            duration_minutes=60,
        )

        assert [e.session_number for e in schedule] == [1, 2, 3]
        assert schedule[0].start_time == start
        assert schedule[1].start_time == start + timedelta(days=7)
        assert schedule[2].start_time == start + timedelta(days=21)
        assert schedule[2].end_time == schedule[2].start_time + timedelta(minutes=60)

    def test_first_session_number_offset(self, engine, start):
        """Test numbering continues from an offset."""
        schedule = engine.calculate_schedule(
            strategy=MultiSessionStrategy.FLEXIBLE,
            start_time=start,
            buffer_config={"minimum_days": 10},
            session_count=2,
            duration_minutes=30,
            first_session_number=3,
        )

        assert [e.session_number for e in schedule] == [3, 4]
        assert schedule[1].start_time - schedule[0].start_time == timedelta(days=10)

    def test_invalid_count(self, engine, start):
        """Test a non-positive session count is rejected."""
        with pytest.raises(ValueError):
            engine.calculate_schedule(
                MultiSessionStrategy.IMMEDIATE, start, None, 0, 60
            )

    def test_invalid_duration(self, engine, start):
        """Test a non-positive duration is rejected."""
        with pytest.raises(ValueError):
            engine.calculate_schedule(
                MultiSessionStrategy.IMMEDIATE, start, None, 2, 0
            )

    def test_schedule_from_dates(self, engine, start):
        """Test customer-chosen dates keep their order and numbering."""
        dates = [start, start + timedelta(days=9)]

        schedule = engine.schedule_from_dates(dates, 45, first_session_number=2)

        assert [e.session_number for e in schedule] == [2, 3]
        assert schedule[1].end_time == dates[1] + timedelta(minutes=45)


class TestCustomerOverride:
    """Test per-customer plan overrides."""

    def test_no_override(self, engine):
        """Test the service is returned unchanged."""
        service = ServiceConfig(id="s1", name="Laser")

        assert engine.apply_customer_override(service, None) is service

    def test_override_fields(self, engine):
        """Test sessions, strategy and buffers are replaced."""
        service = ServiceConfig(
            id="s1",
            name="Laser",
            requires_multiple_sessions=True,
            total_sessions_required=6,
            multi_session_strategy=MultiSessionStrategy.IMMEDIATE,
        )

        result = engine.apply_customer_override(
            service,
            {
                "total_sessions_override": 4,
                "strategy_override": "sequential",
                "buffer_config_override": {"minimum_days": 21},
            },
        )

        assert result.total_sessions_required == 4
        assert result.multi_session_strategy == MultiSessionStrategy.SEQUENTIAL
        assert result.session_buffer_config == {"minimum_days": 21}
        assert service.total_sessions_required == 6


class TestShouldPromptNextSession:
    """Test sequential prompting rule."""

    def test_prompt_when_nothing_upcoming(self, engine):
        """Test prompting after the booked session completed."""
        progress = SessionProgress(total_sessions=5, booked_sessions=2, completed_sessions=2)

        assert engine.should_prompt_next_session(MultiSessionStrategy.SEQUENTIAL, progress)

    def test_no_prompt_with_upcoming(self, engine):
        """Test no prompt while a session is still upcoming."""
        progress = SessionProgress(total_sessions=5, booked_sessions=2, completed_sessions=1)

        assert not engine.should_prompt_next_session(MultiSessionStrategy.SEQUENTIAL, progress)

    def test_no_prompt_for_other_strategies(self, engine):
        """Test only sequential plans prompt."""
        progress = SessionProgress(total_sessions=5, booked_sessions=2, completed_sessions=2)

        assert not engine.should_prompt_next_session(MultiSessionStrategy.FLEXIBLE, progress)

    def test_no_prompt_when_all_booked(self, engine):
        """Test no prompt once every session is booked."""
        progress = SessionProgress(total_sessions=3, booked_sessions=3, completed_sessions=3)

        assert not engine.should_prompt_next_session(MultiSessionStrategy.SEQUENTIAL, progress)


class TestProgressMessage:
    """Test progress summaries."""

    def test_in_progress(self):
        """Test the generic summary with sessions still to book."""
        progress = SessionProgress(total_sessions=5, booked_sessions=2, completed_sessions=1)

        assert generate_progress_message(progress) == (
            "Progress: 1 completed, 1 upcoming, 3 still to book"
        )

    def test_complete(self):
        """Test the completion message."""
        progress = SessionProgress(total_sessions=3, booked_sessions=3, completed_sessions=3)

        assert "completed all 3 sessions" in generate_progress_message(progress)

    def test_halfway(self):
        """Test the halfway milestone."""
        progress = SessionProgress(total_sessions=6, booked_sessions=3, completed_sessions=3)

        assert "halfway" in generate_progress_message(progress)

    def test_almost_there(self):
        """Test one session to go."""
        progress = SessionProgress(total_sessions=5, booked_sessions=5, completed_sessions=4)

        assert "Just 1 more to go" in generate_progress_message(progress)

    def test_all_booked(self):
        """Test the summary once nothing is left to book."""
        progress = SessionProgress(total_sessions=5, booked_sessions=5, completed_sessions=1)

        assert generate_progress_message(progress) == (
            "Progress: 1 of 5 sessions complete. 4 sessions to go!"
        )

    def test_progress_properties(self):
        """Test derived counts."""
        progress = SessionProgress(total_sessions=5, booked_sessions=2, completed_sessions=1)

        assert progress.remaining_to_book == 3
        assert progress.upcoming_sessions == 1
        assert not progress.is_complete
