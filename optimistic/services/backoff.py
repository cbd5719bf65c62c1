"""Exponential Backoff — generic retry for calls outside the per-resource RetryPolicy.

Invariants:
    - Delay before retry n (1-based) is min(initial * multiplier**(n-1), max_delay)
    - A failure is retried only if its status is in retryable_statuses, or it never reached
      the server (NETWORK with no status); everything else propagates on first occurrence
    - At most max_retries retries: the operation runs at most max_retries + 1 times
    - with_retry re-raises the last raw failure unchanged; with_retry_tracking never raises

Design Decisions:
    - Separate from RetryPolicy: no shared budgets, no session teardown, callers opt in
      for idempotent reads (exports, refreshes) where a wider status list is safe
    - Classification reuses ErrorClassifier, so httpx and SDK errors are read the same way
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from optimistic.config import Settings
from optimistic.core.domain_types import ErrorKind
from optimistic.core.error_classifier import ErrorClassifier

logger = logging.getLogger(__name__)

T = TypeVar("T")

OnRetry = Callable[[int, int, BaseException], Any]


@dataclass(frozen=True)
class BackoffOptions:
    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10_000
    multiplier: float = 2.0
    retryable_statuses: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackoffOptions":
        return cls(
            max_retries=settings.backoff_max_retries,
            initial_delay_ms=settings.backoff_initial_delay_ms,
            max_delay_ms=settings.backoff_max_delay_ms,
            multiplier=settings.backoff_multiplier,
        )

    def delay_for(self, retry: int) -> int:
        return int(min(self.initial_delay_ms * self.multiplier ** (retry - 1), self.max_delay_ms))


@dataclass
class RetryOutcome(Generic[T]):
    """Result of with_retry_tracking: either data or the final error."""
    success: bool
    attempts: int
    total_delay_ms: int
    data: T | None = None
    error: BaseException | None = None


def _should_retry(
    error: BaseException, options: BackoffOptions, classifier: ErrorClassifier,
) -> bool:
    details = classifier.parse(error)
    if details.status_code is None:
        return details.kind is ErrorKind.NETWORK
    return details.status_code in options.retryable_statuses


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    options: BackoffOptions | None = None,
    *,
    on_retry: OnRetry | None = None,
    classifier: ErrorClassifier | None = None,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """Run `operation`, retrying retryable failures with exponential backoff."""
    options = options or BackoffOptions()
    classifier = classifier or ErrorClassifier()
    retry = 0
    while True:
        try:
            return await operation()
        except Exception as e:
            retry += 1
            if retry > options.max_retries or not _should_retry(e, options, classifier):
                raise
            delay_ms = options.delay_for(retry)
            logger.warning(
                f"Retry {retry}/{options.max_retries} in {delay_ms}ms: {e}",
                extra={"attempt": retry, "delay_ms": delay_ms},
            )
            if on_retry is not None:
                on_retry(retry, delay_ms, e)
            await sleep(delay_ms / 1000)


async def with_retry_tracking(
    operation: Callable[[], Awaitable[T]],
    options: BackoffOptions | None = None,
    **kwargs: Any,
) -> RetryOutcome[T]:
    """Like with_retry, but reports attempts and total backoff instead of raising."""
    retries: list[int] = []
    caller_hook: OnRetry | None = kwargs.pop("on_retry", None)

    def track(retry: int, delay_ms: int, error: BaseException) -> None:
        retries.append(delay_ms)
        if caller_hook is not None:
            caller_hook(retry, delay_ms, error)

    try:
        data = await with_retry(operation, options, on_retry=track, **kwargs)
    except Exception as e:
        return RetryOutcome(False, len(retries) + 1, sum(retries), error=e)
    return RetryOutcome(True, len(retries) + 1, sum(retries), data=data)
