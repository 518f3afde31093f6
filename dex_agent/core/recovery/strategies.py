"""
Recovery Strategies

Retry with exponential backoff for tool backend and provider calls.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Optional, TypeVar

import structlog

from .cancellation import raise_if_cancelled, sleep_cancellable
from .errors import TurnCancelledError, classify_error

T = TypeVar("T")

FailureCallback = Callable[[int, BaseException, bool], None]


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay_seconds: float = 0.25
    max_delay_seconds: float = 30.0
    exponential_base: float = 2.0

    def get_delay(self, attempt: int) -> float:
        """Delay after the given 1-based failed attempt."""
        delay = self.initial_delay_seconds * (self.exponential_base ** (attempt - 1))
        return max(min(delay, self.max_delay_seconds), 0)


class RetryStrategy:
    """
    Retry transient failures with exponential backoff.

    An attempt is retried only while ``attempt < max_attempts`` and the error
    classifies as recoverable. Cancellation is never retried.
    """

    def __init__(self, config: Optional[RetryConfig] = None):
        self.config = config or RetryConfig()
        self.logger = structlog.stdlib.get_logger("dex_agent.retry")

    async def execute(
        self,
        operation: Callable[[], Coroutine[Any, Any, T]],
        *,
        cancel_event: Optional[asyncio.Event] = None,
        on_failure: Optional[FailureCallback] = None,
    ) -> T:
        last_error: Optional[BaseException] = None

        for attempt in range(1, self.config.max_attempts + 1):
            raise_if_cancelled(cancel_event)
            try:
                return await operation()
            except TurnCancelledError:
                raise
            except Exception as e:
                last_error = e
                retryable = self.should_retry(e, attempt)
                if on_failure is not None:
                    on_failure(attempt, e, retryable)
                if not retryable:
                    raise
                delay = self.config.get_delay(attempt)
                self.logger.debug("retry_scheduled", attempt=attempt, delay_s=delay, error=str(e))
                await sleep_cancellable(delay, cancel_event)

        raise last_error or RuntimeError("All retry attempts exhausted")

    def should_retry(self, error: BaseException, attempt: int) -> bool:
        if attempt >= self.config.max_attempts:
            return False
        return classify_error(error).recoverable
