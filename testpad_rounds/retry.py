"""Rate-limit retry with exponential backoff.

``attempt_with_backoff`` returns an ``Attempt`` describing how the call ended
instead of raising, so callers branch on the outcome explicitly.
``retry_with_backoff`` is the raising shorthand.

Only ``RateLimited`` is retried. The wait before retry ``n`` (0-based) is
``max(retry_after, base_delay * 2**n)`` seconds; there is no wait after the
last attempt.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Generic, Optional, TypeVar

from testpad_rounds.config import RetryConfig
from testpad_rounds.errors import RateLimited, TestpadError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


@dataclass
class RetryPolicy:
    max_retries: int = 3
    base_delay: float = 1.0
    sleep: Sleep = field(default=asyncio.sleep, repr=False)

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")

    @classmethod
    def from_config(cls, config: RetryConfig, sleep: Optional[Sleep] = None) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay,
            sleep=sleep or asyncio.sleep,
        )

    def delay_for(self, attempt: int, error: RateLimited) -> float:
        return max(float(error.retry_after or 0), self.base_delay * (2 ** attempt))


@dataclass
class Attempt(Generic[T]):
    """Final state of a retried call."""

    value: Optional[T] = None
    error: Optional[TestpadError] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value


async def attempt_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
) -> Attempt[T]:
    """Run ``operation`` up to ``policy.max_retries`` times while rate limited."""
    policy = policy or RetryPolicy()
    last_error: Optional[TestpadError] = None

    for attempt in range(policy.max_retries):
        try:
            value = await operation()
        except RateLimited as e:
            last_error = e
            if attempt + 1 >= policy.max_retries:
                break
            delay = policy.delay_for(attempt, e)
            logger.info(
                f"Rate limited, retrying in {delay:.1f}s "
                f"(attempt {attempt + 1}/{policy.max_retries})"
            )
            await policy.sleep(delay)
            continue
        except TestpadError as e:
            return Attempt(error=e, attempts=attempt + 1)
        return Attempt(value=value, attempts=attempt + 1)

    logger.warning(f"Giving up after {policy.max_retries} rate-limited attempts")
    return Attempt(error=last_error, attempts=policy.max_retries)


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
) -> T:
    """Like ``attempt_with_backoff`` but raises the final error."""
    result = await attempt_with_backoff(operation, policy)
    return result.unwrap()
