from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_not_exception_type,
    stop_after_attempt,
    stop_never,
    wait_exponential_jitter,
)

from rate_breaker.circuit_breaker.breaker import CircuitBreaker
from rate_breaker.circuit_breaker.exceptions import CircuitOpenError

T = TypeVar("T")


@dataclass(frozen=True)
class RetryBackoffPolicy:
    """Configuration for retry attempt count and backoff boundaries."""

    attempts: int | None
    min_seconds: float
    max_seconds: float

    def __post_init__(self) -> None:
        if self.attempts is not None and self.attempts < 1:
            raise ValueError("attempts must be >= 1 when provided")
        if self.min_seconds < 0:
            raise ValueError("min_seconds must be >= 0")
        if self.max_seconds < 0:
            raise ValueError("max_seconds must be >= 0")
        if self.max_seconds < self.min_seconds:
            raise ValueError("max_seconds must be >= min_seconds")


def build_breaker_retrying(
    *,
    policy: RetryBackoffPolicy,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    before_sleep: Callable[[RetryCallState], None] | None = None,
) -> AsyncRetrying:
    """Build an ``AsyncRetrying`` that backs off on operation failures.

    A ``CircuitOpenError`` is never retried: the breaker already decided the
    dependency is unhealthy, so it is re-raised on the spot.
    """
    stop = (
        stop_never if policy.attempts is None else stop_after_attempt(policy.attempts)
    )
    options: dict[str, Any] = {
        "retry": retry_if_not_exception_type(CircuitOpenError),
        "wait": wait_exponential_jitter(
            initial=policy.min_seconds,
            max=policy.max_seconds,
        ),
        "stop": stop,
        "reraise": True,
    }
    if sleep is not None:
        options["sleep"] = sleep
    if before_sleep is not None:
        options["before_sleep"] = before_sleep
    return AsyncRetrying(**options)


async def execute_with_retry(
    breaker: CircuitBreaker,
    operation: Callable[..., Awaitable[T]],
    *args: object,
    policy: RetryBackoffPolicy,
    sleep: Callable[[float], Awaitable[None]] | None = None,
    **kwargs: object,
) -> T:
    """Run ``operation`` through ``breaker``, retrying failed attempts.

    Every attempt is a separate ``execute`` call, so each failure is recorded
    by the breaker and may open it; once open, the rejection ends the loop.
    """
    retrying = build_breaker_retrying(policy=policy, sleep=sleep)
    async for attempt in retrying:
        with attempt:
            return await breaker.execute(operation, *args, **kwargs)
    raise AssertionError("unreachable: AsyncRetrying re-raises on exhaustion")
