"""Rate-limited, retried and paginated access to remote list operations.

This module centralizes call pacing and retry/backoff logic so the GitHub
client only has to describe single request attempts:

- ``RateLimiter`` enforces a minimum spacing between consecutive calls.
  Bursts queue behind each other instead of collapsing into one wait.
- ``RetryPolicy`` decides, per failed ``Attempt``, whether to try again and
  how long to back off (``base_delay * 2 ** (retry_number - 1)``).
- ``fetch_all_pages`` accumulates pages until one is shorter than ``per_page``.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar

from .errors import AuthenticationError, RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[Any]]
PageOperation = Callable[[int, int], Awaitable[List[T]]]


class RateLimiter:
    """Shared call pacing: at most one call per ``min_spacing_seconds``.

    Calls are serialized by the single-cycle invariant, so no lock is held.
    """

    def __init__(
        self,
        min_spacing_seconds: float = 1.0,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._min_spacing = min_spacing_seconds
        self._clock = clock
        self._sleep = sleep
        self._last_call: Optional[float] = None
        self.calls = 0

    async def acquire(self) -> None:
        """Suspend the caller until the next call slot, then claim it."""
        now = self._clock()
        if self._last_call is not None and now - self._last_call < self._min_spacing:
            wait_seconds = self._min_spacing - (now - self._last_call)
            self._last_call += self._min_spacing
            await self._sleep(wait_seconds)
        else:
            self._last_call = now
        self.calls += 1

    def reset_counter(self) -> None:
        self.calls = 0


@dataclass(frozen=True)
class Attempt(Generic[T]):
    """Outcome of one remote call: either ``value`` or ``error`` is set."""

    value: Optional[T] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "Attempt[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: Exception) -> "Attempt[T]":
        return cls(error=error)


@dataclass(frozen=True)
class RetryPolicy:
    """Retry up to ``max_retries`` times with exponential backoff.

    Authentication and rate-limit failures are never retried: the first needs
    new credentials and the second needs the next scheduled cycle.
    """

    max_retries: int = 3
    base_delay_seconds: float = 1.0

    def should_retry(self, error: Exception, retry_number: int) -> bool:
        if isinstance(error, (AuthenticationError, RateLimitError)):
            return False
        return retry_number < self.max_retries

    def backoff_seconds(self, retry_number: int) -> float:
        if retry_number <= 0:
            return 0.0
        return self.base_delay_seconds * 2 ** (retry_number - 1)


class Fetcher:
    """Runs single-attempt operations under the rate limiter and retry policy."""

    def __init__(
        self,
        rate_limiter: RateLimiter,
        retry_policy: Optional[RetryPolicy] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.retry_policy = retry_policy or RetryPolicy()
        self._sleep = sleep

    @property
    def calls(self) -> int:
        return self.rate_limiter.calls

    async def call(self, attempt: Callable[[], Awaitable[Attempt[T]]], description: str = "") -> T:
        """Execute ``attempt`` until it succeeds or the retry policy gives up.

        Raises:
            Exception: The last attempt's error once retries are exhausted or
                the error is not retryable.
        """
        retry_number = 0
        while True:
            if retry_number > 0:
                await self._sleep(self.retry_policy.backoff_seconds(retry_number))
            await self.rate_limiter.acquire()
            outcome = await attempt()
            error = outcome.error
            if error is None:
                return outcome.value  # type: ignore[return-value]

            if not self.retry_policy.should_retry(error, retry_number):
                if retry_number >= self.retry_policy.max_retries:
                    logger.error(
                        "The maximum number of retries reached",
                        extra={"call": description, "retries": retry_number},
                    )
                raise error

            retry_number += 1
            logger.warning(
                "Remote call failed, retrying",
                extra={"call": description, "retry_number": retry_number, "error": str(error)},
            )


async def fetch_all_pages(operation: PageOperation[T], per_page: int) -> List[T]:
    """Accumulate pages starting at page 1 until a page shorter than ``per_page``.

    An exact-multiple result set ends with one extra, empty page.
    """
    items: List[T] = []
    page = 1
    while True:
        page_items = await operation(page, per_page)
        items.extend(page_items)
        if len(page_items) < per_page:
            break
        page += 1
    return items
