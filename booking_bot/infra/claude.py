"""
Claude client for structured booking extraction.

Every call asks for a single JSON object at temperature 0. Transient API
errors are retried with backoff on the extraction model, then the whole
request is repeated once on the fallback model.
"""

import asyncio
import json
import logging
import time
from typing import Any, Optional

from anthropic import APIConnectionError, APIError, AsyncAnthropic, RateLimitError

from booking_bot.config import settings

logger = logging.getLogger(__name__)

MAX_ATTEMPTS_PER_MODEL = 3


class ClaudeClientError(Exception):
    """Raised when no model produced a usable JSON object."""
    pass


def strip_code_fence(text: str) -> str:
    """Remove a surrounding ```json ... ``` block if present."""
    text = text.strip()
    if text.startswith("```"):
        lines = text.split("\n")[1:]
        if lines and lines[-1].strip() == "```":
            lines = lines[:-1]
        text = "\n".join(lines)
    return text.strip()


def parse_json_object(text: str) -> dict[str, Any]:
    """
    Parse a model reply into a dict.

    Raises:
        ClaudeClientError: If the reply is not a JSON object
    """
    try:
        data = json.loads(strip_code_fence(text))
    except json.JSONDecodeError as e:
        raise ClaudeClientError(f"Malformed JSON from model: {text!r}") from e
    if not isinstance(data, dict):
        raise ClaudeClientError(f"Expected JSON object, got {type(data).__name__}")
    return data


class ClaudeClient:
    """Async wrapper around AsyncAnthropic used by BookingExtractor."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        anthropic_client: Optional[AsyncAnthropic] = None,
    ):
        if anthropic_client is None:
            api_key = api_key or settings.anthropic_api_key
            if not api_key:
                raise ValueError("Anthropic API key is required")
            anthropic_client = AsyncAnthropic(api_key=api_key)

        self._client = anthropic_client
        self._models = [settings.claude_extraction_model]
        if settings.claude_fallback_model not in self._models:
            self._models.append(settings.claude_fallback_model)

    async def generate_json(
        self,
        prompt: str,
        system_prompt: Optional[str] = None,
        max_tokens: int = 256,
    ) -> dict[str, Any]:
        """
        Run an extraction prompt and parse its JSON reply.

        Args:
            prompt: Extraction prompt including the customer message
            system_prompt: Optional system prompt
            max_tokens: Reply token limit

        Returns:
            Parsed JSON object

        Raises:
            ClaudeClientError: If every model failed or replied with non-JSON
        """
        last_error: Optional[Exception] = None

        for model in self._models:
            try:
                text = await self._create(model, prompt, system_prompt, max_tokens)
            except (APIError, ClaudeClientError) as e:
                logger.warning(f"Extraction with {model} failed: {e}")
                last_error = e
                continue
            return parse_json_object(text)

        raise ClaudeClientError(f"Claude API call failed: {last_error}")

    async def _create(
        self,
        model: str,
        prompt: str,
        system_prompt: Optional[str],
        max_tokens: int,
    ) -> str:
        kwargs: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "temperature": 0.0,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system_prompt:
            kwargs["system"] = system_prompt

        for attempt in range(MAX_ATTEMPTS_PER_MODEL):
            started = time.monotonic()
            try:
                response = await self._client.messages.create(**kwargs)
            except (RateLimitError, APIConnectionError) as e:
                if attempt == MAX_ATTEMPTS_PER_MODEL - 1:
                    raise ClaudeClientError(f"Max retries exceeded on {model}: {e}") from e
                wait_time = 2 ** attempt
                logger.warning(
                    f"{type(e).__name__} on {model}, retrying in {wait_time}s "
                    f"(attempt {attempt + 1})"
                )
                await asyncio.sleep(wait_time)
                continue

            logger.debug(
                f"{model}: {response.usage.input_tokens} in / "
                f"{response.usage.output_tokens} out tokens in "
                f"{(time.monotonic() - started) * 1000:.0f}ms"
            )
            return response.content[0].text

        raise ClaudeClientError(f"No attempts made on {model}")

    async def close(self) -> None:
        await self._client.close()


# Singleton
_claude_client: Optional[ClaudeClient] = None


async def get_claude_client() -> ClaudeClient:
    """Get the shared Claude client."""
    global _claude_client
    if _claude_client is None:
        _claude_client = ClaudeClient()
    return _claude_client


async def close_claude_client() -> None:
    """Close the shared client if it was ever created."""
    global _claude_client
    if _claude_client is not None:
        await _claude_client.close()
        _claude_client = None
