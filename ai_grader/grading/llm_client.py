"""
LLM Client for OpenAI-compatible endpoints.

Provides an async wrapper around the OpenAI SDK configured with a custom base URL
(the default points at Gemini's OpenAI-compatible endpoint). Provider failures are
translated into LLMError with a structured code so that retry decisions never
depend on matching error message text.
"""

import logging
from enum import Enum
from typing import Any

from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    RateLimitError,
)

from ai_grader.config import Settings, get_settings

logger = logging.getLogger(__name__)


class LLMErrorCode(str, Enum):
    """Classification of provider failures."""

    OVERLOADED = "overloaded"  # 503 / "model is overloaded"
    UNAVAILABLE = "unavailable"  # connection refused, DNS, reset
    RATE_LIMITED = "rate_limited"  # 429
    TIMEOUT = "timeout"  # per-call timeout elapsed
    BAD_REQUEST = "bad_request"  # other 4xx
    EMPTY_RESPONSE = "empty_response"
    UNKNOWN = "unknown"


TRANSIENT_CODES = frozenset(
    {
        LLMErrorCode.OVERLOADED,
        LLMErrorCode.UNAVAILABLE,
        LLMErrorCode.RATE_LIMITED,
        LLMErrorCode.TIMEOUT,
    }
)


class LLMError(Exception):
    """Raised when an LLM API call fails."""

    def __init__(
        self,
        message: str,
        code: LLMErrorCode = LLMErrorCode.UNKNOWN,
        status_code: int | None = None,
        cause: Exception | None = None,
    ):
        self.code = code
        self.status_code = status_code
        self.cause = cause
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        """Whether the failure is transient and worth retrying."""
        return self.code in TRANSIENT_CODES


class LLMClient:
    """
    Async client for an OpenAI-compatible chat completion API.

    Each call is a single attempt bounded by the configured timeout;
    retrying is the caller's concern (see ai_grader.grading.retry).
    """

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None):
        """
        Initialize the LLM client.

        Args:
            settings: Configuration settings. Uses global settings if not provided.
            client: Preconfigured SDK client, mainly for tests.

        Raises:
            ConfigurationError: If no API key is configured and no client is given.
        """
        self._settings = settings or get_settings()
        self._client = client or AsyncOpenAI(
            api_key=self._settings.require_api_key(),
            base_url=self._settings.llm_base_url,
            timeout=self._settings.llm_timeout_seconds,
            max_retries=0,
        )

    @property
    def model(self) -> str:
        """Model identifier used for every call."""
        return self._settings.llm_model

    async def generate(
        self,
        content: str,
        system_instruction: str | None = None,
        response_schema: dict[str, Any] | None = None,
        temperature: float | None = None,
        max_tokens: int = 8192,
    ) -> str:
        """
        Generate a response from the LLM.

        Args:
            content: User message with the actual request.
            system_instruction: System message defining the model's role and rules.
            response_schema: A `response_format` payload constraining the output shape.
            temperature: Override temperature (uses config default if None).
            max_tokens: Maximum tokens in response.

        Returns:
            The generated text response.

        Raises:
            LLMError: If the call fails or returns no content.
        """
        temp = temperature if temperature is not None else self._settings.llm_temperature

        messages: list[dict[str, str]] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})
        messages.append({"role": "user", "content": content})

        request: dict[str, Any] = {
            "model": self._settings.llm_model,
            "messages": messages,
            "temperature": temp,
            "max_tokens": max_tokens,
        }
        if response_schema is not None:
            request["response_format"] = response_schema

        logger.debug("LLM request to %s (%d chars)", self._settings.llm_model, len(content))
        try:
            response = await self._client.chat.completions.create(**request)
        except APITimeoutError as e:
            raise LLMError(
                f"LLM call timed out after {self._settings.llm_timeout_seconds}s",
                code=LLMErrorCode.TIMEOUT,
                cause=e,
            ) from e
        except APIConnectionError as e:
            raise LLMError(
                f"Connection failed: {e}", code=LLMErrorCode.UNAVAILABLE, cause=e
            ) from e
        except RateLimitError as e:
            raise LLMError(
                f"Rate limit exceeded: {e.message}",
                code=LLMErrorCode.RATE_LIMITED,
                status_code=e.status_code,
                cause=e,
            ) from e
        except APIStatusError as e:
            raise LLMError(
                f"API error: {e.message}",
                code=classify_status(e.status_code, e.message),
                status_code=e.status_code,
                cause=e,
            ) from e

        if response.choices and response.choices[0].message.content:
            return response.choices[0].message.content

        raise LLMError("Empty response from LLM", code=LLMErrorCode.EMPTY_RESPONSE)

    async def ping(self) -> None:
        """
        Send a minimal request to verify the API is reachable.

        Raises:
            LLMError: If the API cannot be reached.
        """
        await self.generate("Ping", max_tokens=5)


def classify_status(status_code: int, message: str | None = None) -> LLMErrorCode:
    """
    Map an HTTP status (and provider message) to an error code.

    Args:
        status_code: HTTP status returned by the provider.
        message: Provider error message, if any.

    Returns:
        The matching LLMErrorCode.
    """
    text = (message or "").lower()
    if status_code == 503 or "overloaded" in text:
        return LLMErrorCode.OVERLOADED
    if status_code == 429:
        return LLMErrorCode.RATE_LIMITED
    if "unavailable" in text or status_code in (502, 504):
        return LLMErrorCode.UNAVAILABLE
    if 400 <= status_code < 500:
        return LLMErrorCode.BAD_REQUEST
    return LLMErrorCode.UNKNOWN
