"""Unit tests for retry/backoff and the rate limiter."""

from __future__ import annotations

import asyncio

import httpx

from peptalk.core.ratelimit import RateLimiter
from peptalk.core.retry import CallStatus, RetryPolicy, call_with_retry, is_transient

FAST = RetryPolicy(max_attempts=3, base_delay=0.0, multiplier=2.0, timeout=1.0)


def _status_error(code: int) -> httpx.HTTPStatusError:
    request = httpx.Request("GET", "https://example.test/x")
    response = httpx.Response(code, request=request)
    return httpx.HTTPStatusError(f"HTTP {code}", request=request, response=response)


async def test_success_on_first_attempt() -> None:
    async def ok() -> str:
        return "done"

    result = await call_with_retry(ok, FAST, label="ok")
    assert result.ok
    assert result.value == "done"
    assert result.attempts == 1


async def test_transient_error_is_retried_until_success() -> None:
    calls = {"n": 0}

    async def flaky() -> int:
        calls["n"] += 1
        if calls["n"] < 3:
            raise _status_error(503)
        return 42

    result = await call_with_retry(flaky, FAST, label="flaky")
    assert result.ok
    assert result.value == 42
    assert result.attempts == 3


async def test_permanent_error_fails_without_retry() -> None:
    calls = {"n": 0}

    async def broken() -> None:
        calls["n"] += 1
        raise _status_error(404)

    result = await call_with_retry(broken, FAST, label="broken")
    assert result.status is CallStatus.failure
    assert calls["n"] == 1
    assert "404" in result.error


async def test_exhausted_retries_return_failure_not_raise() -> None:
    async def down() -> None:
        raise httpx.ConnectError("connection refused")

    result = await call_with_retry(down, FAST, label="down")
    assert not result.ok
    assert result.attempts == 3
    assert "failed after 3 attempts" in result.error


async def test_each_attempt_is_bounded_by_timeout() -> None:
    policy = RetryPolicy(max_attempts=2, base_delay=0.0, timeout=0.01)

    async def hangs() -> None:
        await asyncio.sleep(5)

    result = await call_with_retry(hangs, policy, label="hangs")
    assert result.status is CallStatus.failure
    assert result.attempts == 2
    assert "timed out" in result.error


def test_backoff_grows_and_is_capped() -> None:
    policy = RetryPolicy(base_delay=2.0, multiplier=2.0, max_delay=5.0)
    assert policy.delay_for(1) == 2.0
    assert policy.delay_for(2) == 4.0
    assert policy.delay_for(3) == 5.0


def test_is_transient_classification() -> None:
    assert is_transient(_status_error(429))
    assert is_transient(_status_error(502))
    assert is_transient(httpx.ReadTimeout("slow"))
    assert not is_transient(_status_error(400))
    assert not is_transient(ValueError("bad payload"))


async def test_rate_limiter_spaces_requests() -> None:
    limiter = RateLimiter(requests_per_second=50)
    loop = asyncio.get_running_loop()
    start = loop.time()
    for _ in range(3):
        async with limiter:
            pass
    # three acquisitions at 50/s need at least two 20ms gaps
    assert loop.time() - start >= 0.035
