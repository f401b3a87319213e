"""
Redis access for conversation contexts and booking analytics.

One lazily created client is shared by the process. When Redis cannot be
reached, get_redis() returns None and callers keep working locally: the
context store switches to memory and analytics events are dropped.
"""

import json
import logging
from typing import Any, Optional

import redis.asyncio as redis
from redis.asyncio import Redis
from redis.asyncio.retry import Retry
from redis.backoff import ExponentialBackoff
from redis.exceptions import RedisError

from booking_bot.config import settings

logger = logging.getLogger(__name__)

# Bump the version segment when the stored context shape changes
APP_PREFIX = "bookingbot:v1:"

ANALYTICS_STREAM_MAXLEN = 10000


def redis_key(*parts: str) -> str:
    """Build a namespaced key, e.g. redis_key("analytics") -> "bookingbot:v1:analytics"."""
    return APP_PREFIX + ":".join(parts)


ANALYTICS_STREAM = redis_key("analytics")

_client: Optional[Redis] = None


async def get_redis() -> Optional[Redis]:
    """
    Return the shared client, connecting on first use.

    A failed connection is not cached, so the next call tries again.

    Returns:
        Redis client, or None while Redis is unreachable
    """
    global _client
    if _client is not None:
        return _client

    client = redis.from_url(
        settings.redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5.0,
        socket_timeout=5.0,
        retry_on_timeout=True,
        retry=Retry(ExponentialBackoff(), retries=3),
    )
    try:
        await client.ping()
    except RedisError as e:
        logger.warning(f"Redis unreachable: {e}")
        await client.aclose()
        return None

    _client = client
    logger.info("Redis connection established")
    return _client


async def close_redis() -> None:
    """Close the shared client if one is open."""
    global _client
    if _client is None:
        return
    client, _client = _client, None
    try:
        await client.aclose()
    except RedisError as e:
        logger.error(f"Error closing Redis connection: {e}")


async def append_analytics_event(event: str, payload: dict[str, Any]) -> bool:
    """
    Append a booking analytics event to the capped Redis stream.

    Args:
        event: Event name (e.g. "booking_turn")
        payload: Event data; values that are not JSON types are stringified

    Returns:
        True if written, False if Redis is unavailable
    """
    client = await get_redis()
    if client is None:
        logger.debug(f"Analytics event {event} dropped, Redis unavailable")
        return False

    await client.xadd(
        ANALYTICS_STREAM,
        {"event": event, "payload": json.dumps(payload, default=str)},
        maxlen=ANALYTICS_STREAM_MAXLEN,
        approximate=True,
    )
    return True


async def check_redis_health() -> bool:
    """Ping Redis for the readiness check."""
    client = await get_redis()
    if client is None:
        return False
    try:
        return bool(await client.ping())
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}")
        return False
