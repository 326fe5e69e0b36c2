"""
Bounded exponential-backoff retry for LLM calls.

Only transient provider failures (overload, unavailability, rate limiting,
timeouts) are retried. Business-logic and malformed-response errors are
re-raised on the first occurrence.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from ai_grader.grading.llm_client import LLMError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_INITIAL_DELAY_MS = 2000

_TRANSIENT_MARKERS = ("overloaded", "unavailable")


def is_transient_error(error: BaseException) -> bool:
    """
    Decide whether an error is a transient provider failure.

    LLMError carries a structured code. Other exceptions (for example from a
    different SDK) are classified by a 503 status or an overload/unavailable
    message, matched case-insensitively.

    Args:
        error: The exception raised by an attempt.

    Returns:
        True if the operation should be retried.
    """
    if isinstance(error, LLMError):
        return error.retryable

    for attr in ("status", "status_code", "code"):
        if getattr(error, attr, None) == 503:
            return True

    message = str(error).lower()
    return any(marker in message for marker in _TRANSIENT_MARKERS)


def backoff_delay_ms(attempt: int, initial_delay_ms: int) -> int:
    """Delay before the retry that follows the given 0-indexed attempt."""
    return initial_delay_ms * (2**attempt)


async def retry_operation(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = DEFAULT_MAX_RETRIES,
    initial_delay_ms: int = DEFAULT_INITIAL_DELAY_MS,
) -> T:
    """
    Run an async operation, retrying transient failures with exponential backoff.

    Args:
        operation: Zero-argument callable returning an awaitable.
        max_retries: Retries after the first attempt (total attempts = max_retries + 1).
        initial_delay_ms: Delay before the first retry; doubled on each subsequent one.

    Returns:
        The operation's result.

    Raises:
        The last error, immediately when it is not transient or once retries run out.
    """
    for attempt in range(max_retries + 1):
        try:
            return await operation()
        except Exception as e:
            if not is_transient_error(e) or attempt >= max_retries:
                raise

            delay_ms = backoff_delay_ms(attempt, initial_delay_ms)
            logger.warning(
                "Transient LLM failure (%s), attempt %d/%d, retrying in %dms",
                e,
                attempt + 1,
                max_retries + 1,
                delay_ms,
            )
            await asyncio.sleep(delay_ms / 1000)

    # Unreachable: the final attempt either returns or raises.
    raise RuntimeError("retry_operation exhausted without a result")
