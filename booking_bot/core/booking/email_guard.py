"""
Email collection guard.

Runs before any new-booking logic. Depending on policy it blocks until an
email address is supplied (mandatory), asks once (gentle), or does nothing
(skip).
"""

import logging
import re
from typing import Optional

from .context import ConversationContext
from .errors import BookingPersistenceError
from .policy import BookingPolicy
from .repository import BookingRepository, get_booking_repository

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

DEFAULT_GENTLE_PROMPT = (
    "By the way, could you share your email address? I'll send your booking "
    "confirmation there. (Feel free to skip if you prefer.)"
)
DEFAULT_MANDATORY_PROMPT = (
    "Before I can book your appointment, I need your email address for the "
    "confirmation. Could you please share it?"
)


def extract_email(message: str) -> Optional[str]:
    """First email address in a message."""
    match = EMAIL_PATTERN.search(message or "")
    return match.group(0) if match else None


class EmailCollectionGuard:
    """Applies the email-collection policy to a booking conversation."""

    def __init__(self, repository: Optional[BookingRepository] = None):
        self._repository = repository

    def _get_repository(self) -> BookingRepository:
        if self._repository is None:
            self._repository = get_booking_repository()
        return self._repository

    async def check(
        self,
        context: ConversationContext,
        message: str,
        policy: BookingPolicy,
    ) -> Optional[str]:
        """Return a prompt that blocks this turn, or None to proceed.

        Args:
            context: Conversation context (mutated)
            message: Inbound message
            policy: Active booking policy

        Returns:
            Email prompt, or None when the flow may continue
        """
        mode = policy.email_collection_mode
        if mode == "skip":
            return None

        if context.contact_email:
            return None

        repository = self._get_repository()
        stored = await repository.get_contact_email(context.contact_id)
        if stored:
            context.contact_email = stored
            return None

        email = extract_email(message)
        if email:
            await self._save(context, email)
            return None

        if mode == "mandatory":
            context.email_collection_asked = True
            return policy.email_prompt_mandatory or DEFAULT_MANDATORY_PROMPT

        if context.email_collection_asked:
            return None

        context.email_collection_asked = True
        return policy.email_prompt_gentle or DEFAULT_GENTLE_PROMPT

    async def _save(self, context: ConversationContext, email: str) -> None:
        context.contact_email = email
        try:
            await self._get_repository().save_contact_email(context.contact_id, email)
        except BookingPersistenceError:
            # Kept on the context; the booking can still proceed
            logger.error(
                f"Could not store email for contact {context.contact_id}", exc_info=True
            )

