"""Retry Policy — bounded automatic retry for transient failures, keyed by operation identity.

Invariants:
    - Only RATE_LIMITED and SERVICE_UNAVAILABLE are retried; every other kind propagates at once
    - RATE_LIMITED: at most 3 retries per (method, resource), waits retry_after_ms or 1000ms
    - SERVICE_UNAVAILABLE: at most 2 retries per (method, resource), fixed 5000ms, no jitter
    - The budget for a key is deleted on every terminal outcome (success or propagated failure)
    - UNAUTHORIZED tears the session down exactly once per failure occurrence
    - All propagated failures are RequestFailedError (SessionExpiredError for UNAUTHORIZED),
      chained to the raw transport error

Design Decisions:
    - Budgets live on the policy instance, not in a module global: one policy per UI session
    - Injected sleep: tests drive retries without waiting on the real clock
    - No overall deadline and no cancellation hook: an attempt runs to completion
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from optimistic.config import Settings
from optimistic.core.domain_types import ErrorKind
from optimistic.core.error_classifier import ErrorClassifier
from optimistic.core.errors import (
    ErrorContext, ErrorDetails, RequestFailedError, SessionExpiredError,
)
from optimistic.core.protocols import CredentialStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

BudgetKey = tuple[str, str]


@dataclass
class RetryBudget:
    """Retries spent so far for one (method, resource)."""
    attempts: int = 0
    max_for_kind: int = 0

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_for_kind


@dataclass(frozen=True)
class RetryRule:
    max_retries: int
    default_delay_ms: int
    honor_retry_after: bool = True


class RetryPolicy:
    """Runs an async operation, retrying transient failures within a per-key budget."""

    def __init__(
        self,
        classifier: ErrorClassifier | None = None,
        credentials: CredentialStore | None = None,
        *,
        rate_limit_max_retries: int = 3,
        rate_limit_default_delay_ms: int = 1000,
        service_unavailable_max_retries: int = 2,
        service_unavailable_delay_ms: int = 5000,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.classifier = classifier or ErrorClassifier()
        self.credentials = credentials
        self._rules: dict[ErrorKind, RetryRule] = {
            ErrorKind.RATE_LIMITED: RetryRule(
                rate_limit_max_retries, rate_limit_default_delay_ms,
            ),
            ErrorKind.SERVICE_UNAVAILABLE: RetryRule(
                service_unavailable_max_retries, service_unavailable_delay_ms,
                honor_retry_after=False,
            ),
        }
        self._budgets: dict[BudgetKey, RetryBudget] = {}
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        classifier: ErrorClassifier | None = None,
        credentials: CredentialStore | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> "RetryPolicy":
        return cls(
            classifier,
            credentials,
            rate_limit_max_retries=settings.rate_limit_max_retries,
            rate_limit_default_delay_ms=settings.rate_limit_default_delay_ms,
            service_unavailable_max_retries=settings.service_unavailable_max_retries,
            service_unavailable_delay_ms=settings.service_unavailable_delay_ms,
            sleep=sleep,
        )

    def budget_for(self, method: str, resource: str) -> RetryBudget | None:
        """Live budget for a key, or None when no retry is in progress."""
        return self._budgets.get((method.upper(), resource))

    @property
    def active_budgets(self) -> int:
        return len(self._budgets)

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        method: str,
        resource: str,
    ) -> T:
        """Run `operation` until it succeeds or fails terminally."""
        key: BudgetKey = (method.upper(), resource)
        while True:
            try:
                result = await operation()
            except Exception as raw:
                details = self.classifier.parse(raw)
                delay_ms = self._next_delay(key, details)
                if delay_ms is None:
                    budget = self._budgets.pop(key, None)
                    raise self._terminal_error(key, details, budget) from raw
                logger.warning(
                    f"{details.kind.value} on {key[0]} {key[1]}, "
                    f"retry after {delay_ms}ms",
                    extra={
                        "method": key[0], "resource": key[1],
                        "attempt": self._budgets[key].attempts,
                        "delay_ms": delay_ms, "error_details": details,
                    },
                )
                await self._sleep(delay_ms / 1000)
                continue
            self._budgets.pop(key, None)
            return result

    def wrap(
        self,
        perform: Callable[[Any], Awaitable[T]],
        *,
        method: str,
        resource: str,
    ) -> Callable[[Any], Awaitable[T]]:
        """Bind a server call to this policy, keeping its (payload) -> result shape."""
        async def call(payload: Any) -> T:
            return await self.execute(
                lambda: perform(payload), method=method, resource=resource,
            )
        return call

    def _next_delay(self, key: BudgetKey, details: ErrorDetails) -> int | None:
        """Spend one retry and return its delay, or None when the failure is terminal."""
        rule = self._rules.get(details.kind)
        if rule is None:
            return None
        budget = self._budgets.setdefault(key, RetryBudget())
        budget.max_for_kind = rule.max_retries
        if budget.exhausted:
            return None
        budget.attempts += 1
        if rule.honor_retry_after and details.retry_after_ms is not None:
            return details.retry_after_ms
        return rule.default_delay_ms

    def _terminal_error(
        self, key: BudgetKey, details: ErrorDetails, budget: RetryBudget | None,
    ) -> RequestFailedError:
        context = ErrorContext(
            method=key[0],
            resource=key[1],
            attempts=(budget.attempts if budget else 0) + 1,
        )
        if details.kind is ErrorKind.UNAUTHORIZED:
            self._end_session()
            return SessionExpiredError(details, context)
        if budget is not None:
            logger.error(
                f"{details.kind.value} on {key[0]} {key[1]} "
                f"after {budget.attempts} retries",
                extra={"method": key[0], "resource": key[1], "error_details": details},
            )
        return RequestFailedError(details, context)

    def _end_session(self) -> None:
        end_session(self.credentials)


def end_session(credentials: CredentialStore | None) -> None:
    """Clear credentials and send the user to login. Call once per unauthorized failure."""
    logger.info("Unauthorized response, clearing credentials")
    if credentials is None:
        return
    credentials.clear()
    credentials.redirect_to_login()
