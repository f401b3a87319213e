"""
LLM-based extraction of booking facts using Claude.

Extracts: proposed date/time, cancellation reason, number of sessions,
and the top-level booking intent. Every call is best-effort: API errors
and malformed replies come back as "not found".
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

from booking_bot.infra.claude import ClaudeClient, ClaudeClientError, get_claude_client
from .context import BookingIntent

logger = logging.getLogger(__name__)

DEFAULT_TIME = "10:00"

NOT_SPECIFIED = "not_specified"

DATETIME_PROMPT = """Extract the appointment date and time the customer is asking for.

Today is {today} ({weekday}).

## Message

"{message}"

## Response

Respond with ONLY valid JSON:
{{
    "has_datetime": <true if a date is mentioned, else false>,
    "date": "<YYYY-MM-DD or null>",
    "time": "<HH:MM 24-hour or null>"
}}"""

REASON_PROMPT = """A customer is cancelling an appointment. Extract the reason they give.

## Message

"{message}"

## Response

Respond with ONLY valid JSON. Use "{not_specified}" when no reason is given:
{{"reason": "<short reason or {not_specified}>"}}"""

SESSION_COUNT_PROMPT = """How many sessions does the customer want to book now?

## Message

"{message}"

## Response

Respond with ONLY valid JSON (null when no number is given):
{{"count": <integer or null>}}"""

INTENT_PROMPT = """Classify the customer's booking request.

- cancel: wants to cancel an existing appointment
- reschedule: wants to move an existing appointment
- new: wants to book a new appointment
- none: anything else

## Message

"{message}"

## Response

Respond with ONLY valid JSON:
{{"intent": "<cancel|reschedule|new|none>"}}"""

_NUMBER_WORDS = {
    "one": 1, "two": 2, "three": 3, "four": 4, "five": 5,
    "six": 6, "seven": 7, "eight": 8, "nine": 9, "ten": 10,
}
_NUMBER_PATTERN = re.compile(
    r"\b(\d+|" + "|".join(_NUMBER_WORDS) + r")\b", re.IGNORECASE
)


@dataclass
class DateTimeExtraction:
    """Date/time found in a message. Strings as returned by the model."""

    found: bool = False
    date: Optional[str] = None  # YYYY-MM-DD
    time: Optional[str] = None  # HH:MM


def parse_number(message: str) -> Optional[int]:
    """First integer (digits or a small number word) in a message."""
    match = _NUMBER_PATTERN.search(message)
    if not match:
        return None
    token = match.group(1).lower()
    return _NUMBER_WORDS.get(token) or int(token)


class BookingExtractor:
    """Claude-backed extraction for the booking flows."""

    def __init__(self, claude_client: Optional[ClaudeClient] = None):
        """Initialize extractor.

        Args:
            claude_client: Optional Claude client (for testing)
        """
        self._client = claude_client

    async def _get_client(self) -> ClaudeClient:
        """Get or create Claude client."""
        if self._client is None:
            self._client = await get_claude_client()
        return self._client

    async def _ask(self, prompt: str) -> Optional[dict]:
        client = await self._get_client()
        try:
            return await client.generate_json(prompt)
        except ClaudeClientError as e:
            logger.error(f"Extraction failed: {e}")
            return None

    async def extract_datetime(self, message: str) -> DateTimeExtraction:
        """Extract a proposed date and time.

        When only a date is given the time defaults to 10:00.
        """
        message = message.strip()
        if not message:
            return DateTimeExtraction()

        today = date.today()
        data = await self._ask(
            DATETIME_PROMPT.format(
                today=today.isoformat(),
                weekday=today.strftime("%A"),
                message=message,
            )
        )
        if not data or not data.get("has_datetime") or not data.get("date"):
            return DateTimeExtraction()

        return DateTimeExtraction(
            found=True,
            date=str(data["date"]),
            time=str(data.get("time") or DEFAULT_TIME),
        )

    async def extract_reason(self, message: str) -> Optional[str]:
        """Extract a cancellation reason, or None when none is given."""
        message = message.strip()
        if not message:
            return None

        data = await self._ask(
            REASON_PROMPT.format(message=message, not_specified=NOT_SPECIFIED)
        )
        reason = (data or {}).get("reason")
        if not reason or str(reason).strip().lower() == NOT_SPECIFIED:
            return None
        return str(reason).strip()

    async def extract_session_count(self, message: str) -> Optional[int]:
        """Extract how many sessions the customer wants to book."""
        count = parse_number(message)
        if count is not None:
            return count

        data = await self._ask(SESSION_COUNT_PROMPT.format(message=message.strip()))
        value = (data or {}).get("count")
        try:
            return int(value) if value is not None else None
        except (TypeError, ValueError):
            logger.warning(f"Invalid session count from model: {value!r}")
            return None

    async def classify_intent(self, message: str) -> Optional[BookingIntent]:
        """Classify the top-level booking intent of a message."""
        data = await self._ask(INTENT_PROMPT.format(message=message.strip()))
        value = (data or {}).get("intent")
        try:
            return BookingIntent(value)
        except ValueError:
            return None


# Singleton
_extractor: Optional[BookingExtractor] = None


def get_booking_extractor() -> BookingExtractor:
    """Get singleton BookingExtractor."""
    global _extractor
    if _extractor is None:
        _extractor = BookingExtractor()
    return _extractor
