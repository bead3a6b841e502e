"""
Claude API Client

Thin async wrapper over the Anthropic Messages API with tool_use support.
Calls are not retried: a failed call surfaces as ClaudeClientError and the
caller decides what the patient sees.
"""

import logging
import time
from typing import Any, Optional

from anthropic import APIError, AsyncAnthropic

from app.config import settings

logger = logging.getLogger(__name__)


class ClaudeClientError(Exception):
    """Raised when Claude API call fails."""
    pass


class ClaudeClient:
    """
    Async Claude API client wrapper.

    Features:
    - Async API calls
    - tool_use requests
    - Latency and token logging
    """

    _instance: Optional["ClaudeClient"] = None

    def __init__(self, api_key: Optional[str] = None):
        """Initialize Claude client.

        Args:
            api_key: Anthropic API key (defaults to settings)
        """
        self.api_key = api_key or settings.anthropic_api_key
        if not self.api_key:
            raise ValueError("Anthropic API key is required")

        self._client = AsyncAnthropic(api_key=self.api_key, max_retries=0)
        self._default_model = settings.scheduling_agent_model

        logger.info(f"ClaudeClient initialized with model={self._default_model}")

    @classmethod
    def get_instance(cls) -> "ClaudeClient":
        """Get singleton instance."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset singleton instance (useful for testing)."""
        cls._instance = None

    async def create_message(
        self,
        messages: list[dict],
        system: Optional[str] = None,
        tools: Optional[list[dict]] = None,
        model: Optional[str] = None,
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> Any:
        """
        Call the Messages API once.

        Args:
            messages: Conversation turns in Anthropic format
            system: System prompt
            tools: Tool definitions (name, description, input_schema)
            model: Model to use (defaults to the scheduling agent model)
            max_tokens: Maximum tokens in response
            temperature: Sampling temperature

        Returns:
            Raw Anthropic Message (content blocks + stop_reason)

        Raises:
            ClaudeClientError: If the API call fails
        """
        kwargs: dict[str, Any] = {
            "model": model or self._default_model,
            "max_tokens": max_tokens or settings.agent_max_tokens,
            "temperature": (
                settings.agent_temperature if temperature is None else temperature
            ),
            "messages": messages,
        }
        if system:
            kwargs["system"] = system
        if tools:
            kwargs["tools"] = tools

        start_time = time.time()
        try:
            response = await self._client.messages.create(**kwargs)
        except APIError as e:
            logger.error(f"Claude API error: {e}")
            raise ClaudeClientError(f"Claude API call failed: {e}") from e

        latency_ms = (time.time() - start_time) * 1000
        logger.info(
            f"Claude call: stop_reason={response.stop_reason}, "
            f"tokens={response.usage.input_tokens}/{response.usage.output_tokens}, "
            f"latency={latency_ms:.0f}ms"
        )
        return response

    async def close(self) -> None:
        """Close the client."""
        await self._client.close()
