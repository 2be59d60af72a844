"""
Declarative retry policy for venue HTTP calls.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Tuple, Type, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def linear_backoff(step_seconds: float) -> Callable[[int], float]:
    """Backoff of step × attempt (attempt is 1-based): 0.25, 0.5, 0.75..."""
    return lambda attempt: step_seconds * attempt


@dataclass
class RetryPolicy:
    """
    Retry an async call up to max_attempts times.

    Only exceptions in `retry_on` are retried; anything else propagates
    immediately. The sleep function is injectable so tests don't wait.
    """
    max_attempts: int = 3
    backoff: Callable[[int], float] = field(default_factory=lambda: linear_backoff(0.25))
    retry_on: Tuple[Type[BaseException], ...] = (Exception,)
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep

    async def run(self, func: Callable[[], Awaitable[T]], description: str = "request") -> T:
        """
        Call func until it succeeds or attempts run out.

        Raises:
            The last retryable exception once all attempts are exhausted
        """
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")

        for attempt in range(1, self.max_attempts + 1):
            try:
                return await func()
            except self.retry_on as e:
                if attempt >= self.max_attempts:
                    logger.warning(f"{description} failed after {attempt} attempt(s): {e}")
                    raise
                wait_time = self.backoff(attempt)
                logger.debug(f"{description} attempt {attempt}/{self.max_attempts} failed: {e}, retrying in {wait_time:.2f}s")
                await self.sleep(wait_time)
