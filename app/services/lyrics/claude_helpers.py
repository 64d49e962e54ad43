"""Model selection and retry loop for Claude lyric-writing calls."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from anthropic import APIConnectionError, APITimeoutError, RateLimitError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Model constants
# ---------------------------------------------------------------------------
MODEL_SONNET = "claude-sonnet-4-20250514"

# ---------------------------------------------------------------------------
# Retry configuration
# ---------------------------------------------------------------------------
MAX_RETRIES = 3
RETRY_DELAYS = [2, 4, 8]

# Transient failures only; 4xx request errors are not retried
RETRYABLE_ERRORS = (RateLimitError, APITimeoutError, APIConnectionError)

T = TypeVar("T")


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    *,
    operation_name: str = "API call",
) -> T:
    """Execute an async function with retry on transient Anthropic errors.

    Args:
        fn: Zero-arg async callable that performs the API call.
        operation_name: Label for log messages (e.g. "Lyrics generation").

    Returns:
        The value returned by *fn* on a successful attempt.

    Raises:
        The last caught exception after all retries are exhausted.
    """
    last_error: Exception | None = None

    for attempt in range(MAX_RETRIES):
        try:
            return await fn()
        except RETRYABLE_ERRORS as e:
            last_error = e
            if attempt < MAX_RETRIES - 1:
                delay = RETRY_DELAYS[attempt]
                logger.warning(
                    f"{operation_name} error (attempt {attempt + 1}/{MAX_RETRIES}), "
                    f"retrying in {delay}s: {e}"
                )
                await asyncio.sleep(delay)
            else:
                logger.error(f"{operation_name} failed after {MAX_RETRIES} attempts: {e}")

    raise last_error or RuntimeError(f"{operation_name} failed after retries")
