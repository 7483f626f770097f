"""Retry utilities for provider API calls."""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_PATTERN = re.compile(
    r"rate.?limit|too many requests|"
    r"429|500|502|503|504|"
    r"service.?unavailable|server error|"
    r"connection.?error|timed? ?out",
    re.IGNORECASE,
)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    enabled: bool = True
    max_retries: int = 2
    base_delay_ms: int = 500
    max_delay_ms: int = 4000


def is_retryable_error(error: Exception) -> bool:
    """Check if an error is transient (rate limit, 5xx, connection, timeout)."""
    if RETRYABLE_PATTERN.search(str(error)):
        return True

    error_type = type(error).__name__.lower()
    if any(t in error_type for t in ("timeout", "connection", "ratelimit")):
        return True

    return getattr(error, "status_code", None) in (429, 500, 502, 503, 504)


async def with_retry(
    func: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "provider call",
) -> T:
    """Execute an async function with exponential backoff retry.

    Raises:
        The last exception if it is not retryable or all retries fail.
    """
    config = config or RetryConfig()

    if not config.enabled:
        return await func()

    attempt = 0
    while True:
        try:
            return await func()
        except Exception as e:
            if not is_retryable_error(e) or attempt >= config.max_retries:
                if attempt:
                    logger.warning(
                        "retry_exhausted",
                        extra={
                            "operation": operation_name,
                            "attempts": attempt + 1,
                            "error.message": str(e),
                            "error.type": type(e).__name__,
                        },
                    )
                raise

            delay_s = min(config.base_delay_ms * (2**attempt), config.max_delay_ms) / 1000
            attempt += 1
            logger.info(
                "retry_attempt",
                extra={
                    "operation": operation_name,
                    "attempt": attempt,
                    "retry_delay_s": round(delay_s, 2),
                    "error.message": str(e),
                },
            )
            await asyncio.sleep(delay_s)
