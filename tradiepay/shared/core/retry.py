"""
Retry Logic with Exponential Backoff

Optimistic-concurrency writes retry on version conflicts; provider API
calls retry on transient transport failures.
"""
import asyncio
import logging
import random
from typing import Any, Awaitable, Callable, TypeVar
from functools import wraps
import structlog
from tenacity import (
    retry,
    stop_after_attempt,
    wait_exponential,
    retry_if_exception_type,
    before_sleep_log,
)

from tradiepay.shared.core.exceptions import ExternalAPIError, StaleWriteError

logger = structlog.get_logger()
T = TypeVar('T')

RETRY_CONFIGS: dict[str, dict[str, Any]] = {
    "optimistic_write": {
        "max_attempts": 3,
        "min_wait": 0.02,
        "max_wait": 0.5,
        "multiplier": 2.0,
        "exceptions": (StaleWriteError,),
    },
    "external_api": {
        "max_attempts": 3,
        "min_wait": 0.5,
        "max_wait": 4.0,
        "multiplier": 2.0,
        "exceptions": (ExternalAPIError, ConnectionError, asyncio.TimeoutError),
    },
}


class RetryManager:
    """Manages retry logic with configurable backoff strategies."""

    def __init__(self, operation_type: str = "optimistic_write", max_attempts: int | None = None):
        self.operation_type = operation_type
        self.config = dict(RETRY_CONFIGS[operation_type])
        if max_attempts is not None:
            self.config["max_attempts"] = max_attempts

    def _calculate_backoff(self, attempt: int) -> float:
        """Calculate exponential backoff with jitter."""
        base_delay = self.config["min_wait"]
        max_delay = self.config["max_wait"]
        multiplier = self.config["multiplier"]

        delay = min(base_delay * (multiplier ** attempt), max_delay)

        # ±25% jitter so racing redeliveries do not collide again
        jitter = delay * 0.25 * (random.random() * 2 - 1)
        return max(0.001, delay + jitter)

    async def execute_with_retry(
        self, coro: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any
    ) -> T:
        """Execute a coroutine with retry logic."""
        last_exception: BaseException | None = None

        for attempt in range(self.config["max_attempts"]):
            try:
                result = await coro(*args, **kwargs)

                if attempt > 0:
                    logger.info(
                        "operation_succeeded_after_retry",
                        operation_type=self.operation_type,
                        attempt=attempt + 1,
                        max_attempts=self.config["max_attempts"]
                    )

                return result

            except self.config["exceptions"] as e:
                last_exception = e

                if attempt < self.config["max_attempts"] - 1:
                    delay = self._calculate_backoff(attempt)
                    logger.warning(
                        "operation_failed_will_retry",
                        operation_type=self.operation_type,
                        attempt=attempt + 1,
                        max_attempts=self.config["max_attempts"],
                        delay_seconds=round(delay, 3),
                        error=str(e),
                        error_type=type(e).__name__
                    )

                    await asyncio.sleep(delay)
                else:
                    logger.error(
                        "operation_failed_all_retries_exhausted",
                        operation_type=self.operation_type,
                        total_attempts=self.config["max_attempts"],
                        error=str(e),
                        error_type=type(e).__name__
                    )

        assert last_exception is not None
        raise last_exception


def tenacity_retry(operation_type: str = "external_api") -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator using tenacity for calls to external services.
    The final failure is re-raised unchanged.
    """
    config = RETRY_CONFIGS[operation_type]

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @retry(
            stop=stop_after_attempt(config["max_attempts"]),
            wait=wait_exponential(
                multiplier=config["multiplier"],
                min=config["min_wait"],
                max=config["max_wait"]
            ),
            retry=retry_if_exception_type(config["exceptions"]),
            before_sleep=before_sleep_log(logging.getLogger(__name__), logging.WARNING),
            reraise=True,
        )
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await func(*args, **kwargs)
        return wrapper
    return decorator
