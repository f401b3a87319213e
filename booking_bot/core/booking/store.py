"""Conversation context storage keyed by conversation ID."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Optional

from booking_bot.config import settings
from booking_bot.infra.redis import get_redis, redis_key
from .context import ConversationContext

logger = logging.getLogger(__name__)

CONTEXT_PREFIX = redis_key("booking", "context") + ":"


def _utcnow() -> datetime:
    """Get current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class ContextStore(ABC):
    """
    Get/set/delete access to conversation contexts.

    Each key is independent; no operation touches more than one
    conversation.
    """

    @abstractmethod
    async def get(self, conversation_id: str) -> Optional[ConversationContext]:
        """Return the context for a conversation, or None."""

    @abstractmethod
    async def set(self, context: ConversationContext) -> None:
        """Store (create or replace) a context."""

    @abstractmethod
    async def delete(self, conversation_id: str) -> bool:
        """Remove a context. Returns True if one existed."""


class InMemoryContextStore(ContextStore):
    """Process-local store for single-instance deployments and tests."""

    def __init__(self):
        self._contexts: dict[str, str] = {}

    async def get(self, conversation_id: str) -> Optional[ConversationContext]:
        data = self._contexts.get(conversation_id)
        return ConversationContext.from_json(data) if data else None

    async def set(self, context: ConversationContext) -> None:
        context.updated_at = _utcnow()
        # Stored serialized so callers never share a live object
        self._contexts[context.conversation_id] = context.to_json()

    async def delete(self, conversation_id: str) -> bool:
        return self._contexts.pop(conversation_id, None) is not None

    def __len__(self) -> int:
        return len(self._contexts)


class RedisContextStore(ContextStore):
    """
    Redis-backed context store for multi-instance deployments.

    Key pattern: bookingbot:v1:booking:context:{conversation_id}

    Gracefully handles Redis unavailability with an in-memory fallback.
    """

    def __init__(self, ttl_seconds: Optional[int] = None):
        """Initialize store.

        Args:
            ttl_seconds: Idle lifetime of a context (defaults to settings)
        """
        self._ttl = ttl_seconds or settings.context_ttl_seconds
        self._fallback = InMemoryContextStore()

    def _key(self, conversation_id: str) -> str:
        """Generate Redis key."""
        return f"{CONTEXT_PREFIX}{conversation_id}"

    async def get(self, conversation_id: str) -> Optional[ConversationContext]:
        redis = await get_redis()

        if redis:
            data = await redis.get(self._key(conversation_id))
            if data:
                return ConversationContext.from_json(data)
            return None

        return await self._fallback.get(conversation_id)

    async def set(self, context: ConversationContext) -> None:
        context.updated_at = _utcnow()
        redis = await get_redis()

        if redis:
            await redis.setex(
                self._key(context.conversation_id),
                self._ttl,
                context.to_json(),
            )
            logger.debug(f"Context saved: {context.conversation_id}")
        else:
            logger.warning(
                f"Redis unavailable, using in-memory fallback for context "
                f"{context.conversation_id}"
            )
            await self._fallback.set(context)

    async def delete(self, conversation_id: str) -> bool:
        redis = await get_redis()

        if redis:
            deleted = await redis.delete(self._key(conversation_id))
            if deleted:
                logger.debug(f"Context cleared: {conversation_id}")
            return bool(deleted)

        return await self._fallback.delete(conversation_id)


# Singleton
_store: Optional[ContextStore] = None


def get_context_store() -> ContextStore:
    """Get singleton ContextStore (Redis-backed)."""
    global _store
    if _store is None:
        _store = RedisContextStore()
    return _store
