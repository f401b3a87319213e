"""Tests for conversation contexts and their storage."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest

from booking_bot.core.booking.context import (
    BookingIntent,
    BookingSnapshot,
    ConversationContext,
    MultiSessionStep,
    PaymentStatus,
)
from booking_bot.core.booking.store import InMemoryContextStore, RedisContextStore
from booking_bot.core.scheduling.types import MultiSessionStrategy, ServiceConfig


@pytest.fixture
def context():
    return ConversationContext(
        conversation_id="conv-1",
        contact_id="contact-1",
        phone_number="+41791234567",
        intent=BookingIntent.CANCEL,
        current_bookings=[
            BookingSnapshot(
                id="b1",
                service_name="Massage",
                start_time=datetime(2025, 12, 15, 9, 0, tzinfo=timezone.utc),
            )
        ],
    )


class TestConversationContext:
    """Test ConversationContext serialization."""

    def test_json_round_trip(self, context):
        """Test every populated field survives storage."""
        context.selected_booking_id = "b1"
        context.multi_session_service = ServiceConfig(
            id="s1",
            name="Laser",
            requires_multiple_sessions=True,
            total_sessions_required=3,
            multi_session_strategy=MultiSessionStrategy.FLEXIBLE,
            session_buffer_config={"minimum_days": 10},
        )
        context.multi_session_step = MultiSessionStep.COLLECT_DATES
        context.collected_dates = [datetime(2025, 12, 20, 10, 0, tzinfo=timezone.utc)]
        context.payment_status = PaymentStatus.PENDING
        context.pending_booking_ids = ["p1", "p2"]

        restored = ConversationContext.from_json(context.to_json())

        assert restored.intent == BookingIntent.CANCEL
        assert restored.selected_booking.service_name == "Massage"
        assert restored.multi_session_service.multi_session_strategy == MultiSessionStrategy.FLEXIBLE
        assert restored.multi_session_service.session_buffer_config == {"minimum_days": 10}
        assert restored.multi_session_step == MultiSessionStep.COLLECT_DATES
        assert restored.collected_dates == context.collected_dates
        assert restored.payment_status == PaymentStatus.PENDING
        assert restored.pending_booking_ids == ["p1", "p2"]

    def test_selected_booking_none(self, context):
        """Test no selection yields None."""
        assert context.selected_booking is None

    def test_awaiting_payment(self, context):
        """Test the payment gate flag."""
        assert not context.awaiting_payment

        context.payment_link_id = "link-1"

        assert context.awaiting_payment

    def test_from_dict_defaults(self):
        """Test minimal data gets defaults."""
        restored = ConversationContext.from_dict(
            {"conversation_id": "c", "contact_id": "x"}
        )

        assert restored.intent == BookingIntent.NEW
        assert restored.current_bookings == []
        assert restored.first_session_number == 1


class TestInMemoryContextStore:
    """Test the process-local store."""

    @pytest.mark.asyncio
    async def test_set_get_delete(self, context):
        """Test basic lifecycle."""
        store = InMemoryContextStore()

        await store.set(context)
        loaded = await store.get("conv-1")

        assert loaded.contact_id == "contact-1"
        assert len(store) == 1
        assert await store.delete("conv-1") is True
        assert await store.get("conv-1") is None
        assert await store.delete("conv-1") is False

    @pytest.mark.asyncio
    async def test_contexts_are_independent(self, context):
        """Test stored copies are not shared with the caller."""
        store = InMemoryContextStore()
        await store.set(context)

        context.cancellation_reason = "changed"
        loaded = await store.get("conv-1")

        assert loaded.cancellation_reason is None


class TestRedisContextStore:
    """Test the Redis-backed store."""

    @pytest.mark.asyncio
    async def test_set_uses_ttl(self, context):
        """Test contexts are written with a TTL."""
        redis = AsyncMock()
        store = RedisContextStore(ttl_seconds=120)

        with patch("booking_bot.core.booking.store.get_redis", AsyncMock(return_value=redis)):
            await store.set(context)

        key, ttl, payload = redis.setex.call_args.args
        assert key.endswith("booking:context:conv-1")
        assert ttl == 120
        assert ConversationContext.from_json(payload).conversation_id == "conv-1"

    @pytest.mark.asyncio
    async def test_get_from_redis(self, context):
        """Test reading a stored context."""
        redis = AsyncMock()
        redis.get.return_value = context.to_json()
        store = RedisContextStore(ttl_seconds=120)

        with patch("booking_bot.core.booking.store.get_redis", AsyncMock(return_value=redis)):
            loaded = await store.get("conv-1")

        assert loaded.intent == BookingIntent.CANCEL

    @pytest.mark.asyncio
    async def test_fallback_when_redis_down(self, context):
        """Test the in-memory fallback is used without Redis."""
        store = RedisContextStore(ttl_seconds=120)

        with patch("booking_bot.core.booking.store.get_redis", AsyncMock(return_value=None)):
            await store.set(context)
            loaded = await store.get("conv-1")
            deleted = await store.delete("conv-1")

        assert loaded.conversation_id == "conv-1"
        assert deleted is True
