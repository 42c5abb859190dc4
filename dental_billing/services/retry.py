from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, TypeVar
import logging

import anyio

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _always(exc: Exception) -> bool:
    return True


@dataclass
class RetryPolicy:
    """
    Bounded retry with exponential backoff for I/O-bound lookups.

    `timeout` is a deadline over all attempts together; when it passes the
    pending attempt is cancelled and TimeoutError is raised.
    """
    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 8.0
    timeout: Optional[float] = None

    def delay_for(self, attempt: int) -> float:
        return min(self.max_delay, self.base_delay * self.multiplier ** (attempt - 1))

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        should_retry: Callable[[Exception], bool] = _always,
    ) -> T:
        with anyio.fail_after(self.timeout):
            attempt = 1
            while True:
                try:
                    return await operation()
                except Exception as exc:
                    if attempt >= self.max_attempts or not should_retry(exc):
                        raise
                    delay = self.delay_for(attempt)
                    logger.warning("Attempt %s/%s failed (%s), retrying in %.2fs", attempt, self.max_attempts, exc, delay)
                    await anyio.sleep(delay)
                    attempt += 1
