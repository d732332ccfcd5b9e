"""Retry with exponential backoff for every external call.

Wrapped calls never raise to the caller: ``call_with_retry`` returns a
``CallResult`` whose status tells the call site whether to continue, keep a
partial result, or fail its stage.

Usage:
    policy = RetryPolicy(max_attempts=3, base_delay=2.0, multiplier=2.0)
    result = await call_with_retry(lambda: client.get(url), policy, label="esearch")
    if result.ok:
        resp = result.value
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

import httpx
import structlog

logger = structlog.get_logger()

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_SECONDS = 2.0
DEFAULT_BACKOFF_MULTIPLIER = 2.0
DEFAULT_MAX_DELAY_SECONDS = 30.0
DEFAULT_TIMEOUT_SECONDS = 30.0

_TRANSIENT_STATUS_CODES = {408, 425, 429, 500, 502, 503, 504}


class CallStatus(str, Enum):
    success = "success"
    partial = "partial"
    failure = "failure"


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry: attempt count, backoff curve and per-attempt timeout."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    base_delay: float = DEFAULT_BASE_DELAY_SECONDS
    multiplier: float = DEFAULT_BACKOFF_MULTIPLIER
    max_delay: float = DEFAULT_MAX_DELAY_SECONDS
    timeout: float = DEFAULT_TIMEOUT_SECONDS

    def delay_for(self, attempt: int) -> float:
        """Backoff before retrying after ``attempt`` (1-based) failed."""
        delay = self.base_delay * (self.multiplier ** (attempt - 1))
        return min(delay, self.max_delay)


@dataclass
class CallResult(Generic[T]):
    status: CallStatus
    value: T | None = None
    error: str | None = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.status is CallStatus.success


def is_transient(exc: BaseException) -> bool:
    """Timeouts, connection problems, 429 and 5xx responses are worth retrying."""
    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException, httpx.TransportError)):
        return True
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in _TRANSIENT_STATUS_CODES
    status_code = getattr(exc, "status_code", None)
    if isinstance(status_code, int):
        return status_code in _TRANSIENT_STATUS_CODES
    # SDK connection/timeout errors carry no status code
    return type(exc).__name__ in {"APIConnectionError", "APITimeoutError"}


def describe_error(exc: BaseException) -> str:
    if isinstance(exc, httpx.HTTPStatusError):
        return f"HTTP {exc.response.status_code} from {exc.request.url}"
    if isinstance(exc, asyncio.TimeoutError):
        return "timed out"
    return f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    label: str,
    retry_if: Callable[[BaseException], bool] = is_transient,
) -> CallResult[T]:
    """Run ``func`` under ``policy`` and report the outcome instead of raising.

    Each attempt is bounded by ``policy.timeout``. Errors rejected by
    ``retry_if`` fail immediately; transient ones are retried until
    ``policy.max_attempts`` is exhausted.
    """
    attempts = max(policy.max_attempts, 1)
    last_error = ""

    for attempt in range(1, attempts + 1):
        try:
            value = await asyncio.wait_for(func(), timeout=policy.timeout)
            if attempt > 1:
                logger.info("call_recovered", call=label, attempt=attempt)
            return CallResult(status=CallStatus.success, value=value, attempts=attempt)
        except Exception as e:
            last_error = describe_error(e)
            if not retry_if(e):
                logger.warning(
                    "call_failed_permanently",
                    call=label,
                    attempt=attempt,
                    error=last_error,
                    exc_info=True,
                )
                return CallResult(status=CallStatus.failure, error=last_error, attempts=attempt)

            if attempt == attempts:
                break

            delay = policy.delay_for(attempt)
            logger.warning(
                "call_retrying",
                call=label,
                attempt=attempt,
                max_attempts=attempts,
                delay_s=delay,
                error=last_error,
            )
            await asyncio.sleep(delay)

    logger.error("call_retries_exhausted", call=label, attempts=attempts, error=last_error)
    return CallResult(
        status=CallStatus.failure,
        error=f"{label} failed after {attempts} attempts: {last_error}",
        attempts=attempts,
    )
