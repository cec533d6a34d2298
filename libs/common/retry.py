"""
Retry utilities for transient failures (refund compensation, provider polling).
"""

import asyncio
import random
from typing import Any, Awaitable, Callable, Optional, Sequence

from libs.common.logging import get_logger

logger = get_logger(__name__)


class RetryConfig:
    """Configuration for retry behavior"""

    def __init__(
        self,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 30.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        retryable_exceptions: Optional[Sequence[type[BaseException]]] = None,
    ):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.retryable_exceptions = tuple(retryable_exceptions or (Exception,))


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay for exponential backoff with jitter"""
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        delay *= 0.5 + random.random() * 0.5

    return delay


async def retry_async(
    func: Callable[..., Awaitable[Any]],
    config: RetryConfig,
    *args,
    on_retry: Optional[Callable[[BaseException], Awaitable[None]]] = None,
    **kwargs,
) -> Any:
    """Await ``func`` until it succeeds or ``config.max_attempts`` is reached.

    Non-retryable exceptions propagate immediately; the last retryable one is
    re-raised once attempts are exhausted. ``on_retry`` is awaited with the
    failure before each new attempt, e.g. to reset a database session.
    """
    name = getattr(func, "__name__", repr(func))
    for attempt in range(1, config.max_attempts + 1):
        try:
            return await func(*args, **kwargs)
        except config.retryable_exceptions as exc:
            if attempt == config.max_attempts:
                logger.error(
                    "Max retry attempts (%d) reached for %s: %s",
                    config.max_attempts,
                    name,
                    exc,
                )
                raise

            delay = calculate_delay(attempt, config)
            logger.warning(
                "Attempt %d/%d failed for %s: %s. Retrying in %.2fs",
                attempt,
                config.max_attempts,
                name,
                exc,
                delay,
            )
            if on_retry is not None:
                await on_retry(exc)
            await asyncio.sleep(delay)
