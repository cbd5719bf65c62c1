"""Exponential Backoff — tests for with_retry / with_retry_tracking.

Tests cover:
    - Delays double from the initial delay and cap at max_delay
    - Retryable statuses and no-response network failures retried; others raised at once
    - max_retries bounds the number of calls
    - Tracking variant reports attempts and total delay instead of raising
"""

import httpx
import pytest

from optimistic.config import Settings
from optimistic.services.backoff import BackoffOptions, with_retry, with_retry_tracking
from tests.fakes import ScriptedCall, http_error


def test_delays_grow_exponentially_and_cap():
    options = BackoffOptions(initial_delay_ms=1000, max_delay_ms=5000, multiplier=2)
    assert [options.delay_for(n) for n in range(1, 5)] == [1000, 2000, 4000, 5000]


async def test_retries_retryable_status_then_succeeds(sleep):
    call = ScriptedCall(http_error(502), http_error(504), "ok")
    retries = []
    result = await with_retry(
        lambda: call(), on_retry=lambda n, delay, e: retries.append((n, delay)), sleep=sleep,
    )
    assert result == "ok"
    assert retries == [(1, 1000), (2, 2000)]
    assert sleep.delays == [1.0, 2.0]


async def test_network_failure_without_response_is_retried(sleep):
    request = httpx.Request("GET", "http://test/api/teams")
    call = ScriptedCall(httpx.ConnectError("refused", request=request), [1, 2])
    assert await with_retry(lambda: call(), sleep=sleep) == [1, 2]
    assert len(call.calls) == 2


@pytest.mark.parametrize("error", [http_error(400), http_error(401), ValueError("bug")])
async def test_non_retryable_failure_raised_immediately(error, sleep):
    call = ScriptedCall(error)
    with pytest.raises(type(error)):
        await with_retry(lambda: call(), sleep=sleep)
    assert len(call.calls) == 1
    assert sleep.delays == []


async def test_gives_up_after_max_retries(sleep):
    call = ScriptedCall(http_error(500))
    options = BackoffOptions(max_retries=2, initial_delay_ms=100)
    with pytest.raises(httpx.HTTPStatusError):
        await with_retry(lambda: call(), options, sleep=sleep)
    assert len(call.calls) == 3
    assert sleep.delays == [0.1, 0.2]


async def test_custom_retryable_statuses(sleep):
    call = ScriptedCall(http_error(409), "merged")
    options = BackoffOptions(retryable_statuses=frozenset({409}))
    assert await with_retry(lambda: call(), options, sleep=sleep) == "merged"


async def test_tracking_reports_success(sleep):
    call = ScriptedCall(http_error(503), {"id": 1})
    outcome = await with_retry_tracking(lambda: call(), sleep=sleep)
    assert outcome.success
    assert outcome.data == {"id": 1}
    assert (outcome.attempts, outcome.total_delay_ms) == (2, 1000)


async def test_tracking_reports_failure_without_raising(sleep):
    seen = []
    call = ScriptedCall(http_error(500))
    outcome = await with_retry_tracking(
        lambda: call(), BackoffOptions(max_retries=1, initial_delay_ms=10),
        on_retry=lambda n, delay, e: seen.append(n), sleep=sleep,
    )
    assert not outcome.success
    assert isinstance(outcome.error, httpx.HTTPStatusError)
    assert (outcome.attempts, outcome.total_delay_ms) == (2, 10)
    assert seen == [1]


def test_options_from_settings():
    options = BackoffOptions.from_settings(
        Settings(backoff_max_retries=5, backoff_initial_delay_ms=250, backoff_multiplier=3),
    )
    assert (options.max_retries, options.initial_delay_ms, options.multiplier) == (5, 250, 3)
    assert options.max_delay_ms == 10_000
