"""Retry logic with exponential backoff for model calls."""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_STATUS_CODES = {408, 409, 429, 500, 502, 503, 504, 529}


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 60.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.2  # ±20% random variation


class TransientError(Exception):
    """Exception for transient errors that should be retried."""


class PermanentError(Exception):
    """Exception for permanent errors that should not be retried."""


async def retry_with_backoff(
    func: Callable[..., Awaitable[T]],
    config: RetryConfig,
    *args: Any,
    **kwargs: Any,
) -> T:
    """
    Execute an async function with exponential backoff retry logic.

    Args:
        func: Async function to execute
        config: Retry configuration
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result from successful function execution

    Raises:
        Exception: The last error once attempts are exhausted, or the first
            error that is not transient.
    """
    for attempt in range(config.max_attempts):
        try:
            result = await func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"Retry succeeded on attempt {attempt + 1}")
            return result

        except PermanentError:
            logger.error("Permanent error encountered, not retrying")
            raise

        except Exception as e:
            if not is_transient_error(e):
                raise

            if attempt == config.max_attempts - 1:
                logger.error(f"All {config.max_attempts} retry attempts failed")
                raise

            delay = compute_delay(config, attempt)
            logger.warning(f"Attempt {attempt + 1}/{config.max_attempts} failed: {e}. Retrying in {delay:.2f}s...")
            await asyncio.sleep(delay)

    raise RuntimeError("retry_with_backoff requires max_attempts >= 1")


def compute_delay(config: RetryConfig, attempt: int) -> float:
    base_delay = min(config.base_delay * (config.exponential_base**attempt), config.max_delay)
    # Jitter spreads out retries from concurrent sessions.
    jitter = base_delay * config.jitter_factor * (2 * random.random() - 1)
    return max(0.0, base_delay + jitter)


def is_transient_error(error: Exception) -> bool:
    """
    Determine if an error is transient and should be retried.

    Args:
        error: Exception to check

    Returns:
        True if error is transient, False otherwise
    """
    if isinstance(error, TransientError):
        return True

    if isinstance(error, (ConnectionError, TimeoutError, asyncio.TimeoutError, httpx.TransportError)):
        return True

    # openai and anthropic SDK errors both carry the HTTP status
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        return status_code in TRANSIENT_STATUS_CODES

    error_msg = str(error).lower()
    transient_patterns = [
        "timeout",
        "timed out",
        "connection",
        "rate limit",
        "overloaded",
        "temporarily",
        "unavailable",
        "connection reset",
        "broken pipe",
    ]
    return any(pattern in error_msg for pattern in transient_patterns)
