"""Retry utilities for upstream HTTP calls.

Delays grow linearly: retry N waits `delay_base * N` seconds.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from fluxdigest.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_retries: int = 3
    delay_base: float = 0.5
    retryable_exceptions: tuple[type[Exception], ...] = field(default_factory=lambda: (Exception,))
    give_up: Callable[[Exception], bool] = field(default=lambda e: False)


async def retry_with_backoff(
    fn: Callable[[], Awaitable[T]],
    config: RetryConfig | None = None,
    operation_name: str = "operation",
) -> T:
    """
    Execute async function, retrying failures with a linearly growing delay.

    The call is attempted once plus up to `max_retries` more times. Retry N
    waits `delay_base * N` seconds. Exceptions for which `give_up` returns
    True are raised immediately.

    Args:
        fn: Async function to execute (no arguments)
        config: Retry configuration, uses defaults if not provided
        operation_name: Name for logging purposes

    Returns:
        Result of fn()

    Raises:
        Exception: The last exception if all retries are exhausted

    Example:
        ```python
        config = RetryConfig(
            retryable_exceptions=(httpx.HTTPError, UpstreamError),
            give_up=lambda e: isinstance(e, UpstreamAuthError),
        )
        data = await retry_with_backoff(lambda: send(request), config, "miniflux:/v1/me")
        ```
    """
    config = config or RetryConfig()

    for attempt in range(config.max_retries + 1):
        try:
            return await fn()
        except config.retryable_exceptions as e:
            if config.give_up(e):
                raise

            if attempt == config.max_retries:
                logger.bind(
                    operation=operation_name,
                    attempts=config.max_retries + 1,
                    error=str(e),
                ).error("retry_exhausted")
                raise

            delay = config.delay_base * (attempt + 1)
            logger.bind(
                operation=operation_name,
                attempt=attempt + 1,
                max_retries=config.max_retries,
                delay_seconds=delay,
                error=str(e),
            ).warning("retry_attempt")
            await asyncio.sleep(delay)

    raise RuntimeError("Unexpected state in retry_with_backoff")
