"""
Outbound messaging transport.

Thin HTTP client for the messaging gateway that delivers text to a
customer's phone (e.g. WhatsApp). Delivery mechanics live in the gateway.
"""

import logging
from typing import Optional

import httpx

from booking_bot.config import get_settings

logger = logging.getLogger(__name__)


class MessagingClient:
    """
    HTTP client for the messaging gateway.

    Gateway exposes:
    - POST /api/messages - Send a text message, returns {"id": ...}
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_token: Optional[str] = None,
        timeout: float = 15.0,
    ):
        """Initialize client.

        Args:
            base_url: Gateway base URL (defaults to settings)
            api_token: Bearer token (defaults to settings)
            timeout: Request timeout in seconds
        """
        settings = get_settings()
        self.base_url = base_url or settings.messaging_api_url
        self.api_token = api_token if api_token is not None else settings.messaging_api_token
        self.timeout = timeout
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            headers = {}
            if self.api_token:
                headers["Authorization"] = f"Bearer {self.api_token}"
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
            )
        return self._client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def send(self, phone_number: str, text: str) -> Optional[str]:
        """Send a text message.

        Args:
            phone_number: Recipient in E.164 format
            text: Message body

        Returns:
            Gateway message ID, or None if delivery failed
        """
        if not phone_number:
            logger.warning("Cannot send message: no phone number")
            return None

        client = await self._get_client()

        try:
            response = await client.post(
                "/api/messages",
                json={"to": phone_number, "text": text},
            )
            response.raise_for_status()
            message_id = response.json().get("id")
            logger.debug(f"Message {message_id} sent to {phone_number}")
            return str(message_id) if message_id else None

        except httpx.HTTPError as e:
            logger.error(f"Failed to send message to {phone_number}: {e}")
            return None


# Singleton
_client: Optional[MessagingClient] = None


def get_messaging_client() -> MessagingClient:
    """Get singleton MessagingClient."""
    global _client
    if _client is None:
        _client = MessagingClient()
    return _client
