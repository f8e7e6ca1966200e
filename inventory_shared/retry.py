"""
Retry mechanism for resilient operations.
"""

import asyncio
import random
from typing import Any, Optional, Callable, Awaitable

from inventory_shared.logging import get_logger


class RetryConfig:
    """Configuration for retry behavior."""

    def __init__(self,
                 max_attempts: int = 3,
                 base_delay: float = 1.0,
                 max_delay: float = 60.0,
                 exponential_base: float = 2.0,
                 jitter: bool = True):
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter


class RetryError(Exception):
    """Exception raised when all retry attempts are exhausted."""
    def __init__(self, message: str, last_exception: Exception, attempts: int):
        super().__init__(message)
        self.last_exception = last_exception
        self.attempts = attempts


async def retry_async(func: Callable[[], Awaitable[Any]],
                      exceptions: tuple = (Exception,),
                      config: Optional[RetryConfig] = None,
                      name: Optional[str] = None,
                      sleep: Optional[Callable[[float], Awaitable[Any]]] = None) -> Any:
    """Await ``func`` until it succeeds or ``config.max_attempts`` is reached.

    Only exceptions listed in ``exceptions`` trigger another attempt; anything
    else propagates immediately. Exhaustion raises :class:`RetryError` with the
    attempt count and the last exception.
    """
    config = config or RetryConfig()
    name = name or getattr(func, "__name__", "operation")
    sleep = sleep or asyncio.sleep
    logger = get_logger(f"inventory.retry.{name}")

    for attempt in range(1, config.max_attempts + 1):
        try:
            result = await func()

            if attempt > 1:
                logger.info("Retry succeeded", attempt=attempt, function=name)

            return result

        except exceptions as e:
            if attempt == config.max_attempts:
                logger.error(
                    "All retry attempts exhausted",
                    attempt=attempt,
                    max_attempts=config.max_attempts,
                    function=name,
                    error=str(e)
                )
                raise RetryError(
                    f"Function {name} failed after {config.max_attempts} attempts",
                    last_exception=e,
                    attempts=config.max_attempts
                ) from e

            delay = calculate_delay(attempt, config)

            logger.warning(
                "Retry attempt failed, waiting before next attempt",
                attempt=attempt,
                delay=delay,
                function=name,
                error=str(e)
            )

            await sleep(delay)

    raise RetryError(
        f"Function {name} was not attempted",
        last_exception=RuntimeError("max_attempts must be at least 1"),
        attempts=0
    )


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """Calculate delay after the given failed attempt (1-based)."""
    delay = config.base_delay * (config.exponential_base ** (attempt - 1))
    delay = min(delay, config.max_delay)

    if config.jitter:
        jitter_amount = delay * 0.1  # 10% jitter
        delay += random.uniform(-jitter_amount, jitter_amount)

    return max(0.0, delay)
