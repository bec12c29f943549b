"""
Retry with exponential backoff for transient fetch failures.

Only RetryableError subclasses are retried. Everything else, including
ConfigMissingError and TargetNotFoundError, propagates on the first
attempt without consuming a retry.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Sequence, Tuple, TypeVar
import asyncio
import logging

from core.config import settings
from core.exceptions import RetryableError
from schemas.source import RetryConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """
    How many times to attempt a fetch and how long to wait in between.

    With an explicit ``schedule`` the delay after failed attempt N is
    schedule[N-1] (last value repeated); otherwise it is
    base_delay * multiplier ** (N-1), capped at max_delay.
    """

    max_attempts: int = 3
    base_delay: float = 2.0
    multiplier: float = 2.0
    max_delay: float = 30.0
    schedule: Tuple[float, ...] = ()

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0 or self.max_delay < 0 or self.multiplier < 1:
            raise ValueError("delays must be non-negative and multiplier at least 1")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given (1-based) failed attempt."""
        if self.schedule:
            return self.schedule[min(attempt, len(self.schedule)) - 1]
        return min(self.base_delay * (self.multiplier ** (attempt - 1)), self.max_delay)

    @classmethod
    def from_config(cls, retry: Optional[RetryConfig] = None) -> "RetryPolicy":
        """Source retry settings with global defaults from settings."""
        schedule: Sequence[float] = retry.backoff_seconds if retry else ()
        return cls(
            max_attempts=retry.max_attempts if retry else settings.FETCH_MAX_ATTEMPTS,
            base_delay=settings.FETCH_BACKOFF_SECONDS,
            max_delay=settings.FETCH_BACKOFF_MAX_SECONDS,
            schedule=tuple(schedule),
        )


async def call_with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    on_attempt: Optional[Callable[[int], Awaitable[None]]] = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    description: str = "operation",
) -> T:
    """
    Run ``operation`` under ``policy``.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Retry policy
        on_attempt: Awaited with the attempt number before each attempt
        sleep: Backoff sleep (injectable for tests)
        description: Used in log messages

    Returns:
        The operation's result

    Raises:
        The last RetryableError once attempts are exhausted, or any
        non-retryable error immediately
    """
    attempt = 0
    while True:
        attempt += 1
        if on_attempt is not None:
            await on_attempt(attempt)

        try:
            return await operation()

        except RetryableError as e:
            if attempt >= policy.max_attempts:
                logger.error(
                    f"{description} failed after {attempt} attempts: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
                raise

            delay = policy.delay_for(attempt)
            logger.warning(
                f"{description} attempt {attempt}/{policy.max_attempts} failed: {e.message}. "
                f"Retrying in {delay:.1f}s"
            )
            await sleep(delay)
