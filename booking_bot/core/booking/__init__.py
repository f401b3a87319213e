"""
Booking Module

Conversation context, context storage, extraction, policy and persistence
for the conversational booking engine. The sub-flows live in
`booking_bot.core.booking.flows` and the dispatcher in
`booking_bot.core.booking.router`.

Usage:
    from booking_bot.core.booking.router import get_booking_router

    router = get_booking_router()
    reply = await router.route(
        conversation_id="conv-123",
        message="I need to cancel my appointment",
        detected_intent="cancel",
        contact_id="...",
        phone_number="+41790000000",
    )
"""

# Context
from booking_bot.core.booking.context import (
    BookingIntent,
    BookingSnapshot,
    ConversationContext,
    MultiSessionStep,
    PaymentStatus,
)

# Storage
from booking_bot.core.booking.store import (
    ContextStore,
    InMemoryContextStore,
    RedisContextStore,
    get_context_store,
)

# Errors
from booking_bot.core.booking.errors import (
    BookingError,
    BookingPersistenceError,
    BookingValidationError,
    PaymentLinkError,
)

# Policy
from booking_bot.core.booking.policy import (
    BookingPolicy,
    CancellationResult,
    PolicyProvider,
    compute_cancellation_penalty,
)

# Extraction
from booking_bot.core.booking.extractor import (
    BookingExtractor,
    DateTimeExtraction,
    get_booking_extractor,
)

# Persistence
from booking_bot.core.booking.repository import (
    BookingRepository,
    NewBookingBatch,
    get_booking_repository,
)

# Email guard
from booking_bot.core.booking.email_guard import EmailCollectionGuard

__all__ = [
    # Context
    "BookingIntent",
    "BookingSnapshot",
    "ConversationContext",
    "MultiSessionStep",
    "PaymentStatus",
    # Storage
    "ContextStore",
    "InMemoryContextStore",
    "RedisContextStore",
    "get_context_store",
    # Errors
    "BookingError",
    "BookingPersistenceError",
    "BookingValidationError",
    "PaymentLinkError",
    # Policy
    "BookingPolicy",
    "CancellationResult",
    "PolicyProvider",
    "compute_cancellation_penalty",
    # Extraction
    "BookingExtractor",
    "DateTimeExtraction",
    "get_booking_extractor",
    # Persistence
    "BookingRepository",
    "NewBookingBatch",
    "get_booking_repository",
    # Email guard
    "EmailCollectionGuard",
]
