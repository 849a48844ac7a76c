"""Core circuit breaker implementation."""

import functools
import math
import sys
import threading
import time
from collections.abc import Awaitable, Callable
from contextlib import AbstractContextManager, nullcontext
from dataclasses import dataclass
from typing import ParamSpec, TypeVar

from rate_breaker.circuit_breaker.events import (
    BreakerEvent,
    EventChannel,
    EventHandler,
)
from rate_breaker.circuit_breaker.exceptions import CircuitOpenError
from rate_breaker.circuit_breaker.state import BreakerSnapshot, CircuitState
from rate_breaker.logging import AnyLogger, get_logger, log_info, log_warning

T = TypeVar("T")
P = ParamSpec("P")

Clock = Callable[[], float]


def _make_state_lock() -> AbstractContextManager[object]:
    """Guard state mutations with a real lock only on free-threaded builds."""
    is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
    if is_gil_enabled is None or bool(is_gil_enabled()):
        return nullcontext()
    # re-entrant: handlers may read state while an event is being emitted
    return threading.RLock()


@dataclass(slots=True)
class CircuitBreakerConfig:
    """Circuit breaker configuration values.

    Durations are seconds on the breaker clock.

    Attributes:
        failure_threshold: Minimum failure rate (0..1) within the window
            required to open.
        time_window: Lifetime of a failure window, measured from its first
            failure.
        reset_timeout: Seconds to stay ``OPEN`` before allowing a trial call.
        min_attempts: Minimum outcomes in the window before the rate counts.
        min_failures: Minimum failures in the window before opening.
        min_evaluation_time: Minimum age of the window before opening.
        max_failure_count: Failure ceiling that forces a reset while
            ``CLOSED``. ``None`` means unbounded.
    """

    failure_threshold: float
    time_window: float
    reset_timeout: float
    min_attempts: int = 5
    min_failures: int = 3
    min_evaluation_time: float = 0.0
    max_failure_count: int | None = None

    def __post_init__(self) -> None:
        if not 0.0 <= self.failure_threshold <= 1.0:
            raise ValueError("failure_threshold must be between 0 and 1")
        if not math.isfinite(self.time_window) or self.time_window <= 0:
            raise ValueError("time_window must be a finite number > 0")
        if not math.isfinite(self.reset_timeout) or self.reset_timeout <= 0:
            raise ValueError("reset_timeout must be a finite number > 0")
        if self.min_attempts < 1:
            raise ValueError("min_attempts must be >= 1")
        if self.min_failures < 1:
            raise ValueError("min_failures must be >= 1")
        if (
            not math.isfinite(self.min_evaluation_time)
            or self.min_evaluation_time < 0
        ):
            raise ValueError("min_evaluation_time must be a finite number >= 0")
        if self.max_failure_count is not None and self.max_failure_count <= 0:
            raise ValueError("max_failure_count must be > 0 when provided")


class CircuitBreaker:
    """Stateful proxy around a dangerous async operation.

    Time-based transitions are evaluated lazily at the start of each
    :meth:`execute` call; nothing runs in the background.
    """

    def __init__(
        self,
        config: CircuitBreakerConfig,
        initial_state: BreakerSnapshot | None = None,
        *,
        name: str = "circuit_breaker",
        clock: Clock = time.time,
        logger: AnyLogger | None = None,
    ) -> None:
        """Build a circuit breaker, optionally resuming from a snapshot.

        Args:
            config: Breaker thresholds and timings.
            initial_state: Snapshot from :meth:`export_state` to resume from.
                Defaults to a fresh ``CLOSED`` state.
            name: Breaker name used in logs and errors.
            clock: Returns the current time in epoch seconds.
            logger: Structured logger. Defaults to this module's logger.
        """
        self.name = name
        self.config = config
        self._clock = clock
        self._logger = get_logger(__name__) if logger is None else logger
        self._events = EventChannel(logger=self._logger)
        self._lock = _make_state_lock()
        self._load(BreakerSnapshot.initial() if initial_state is None else initial_state)

    @property
    def events(self) -> EventChannel:
        return self._events

    def subscribe(self, event: BreakerEvent, handler: EventHandler) -> None:
        """Register ``handler`` for one breaker event."""
        self._events.subscribe(event, handler)

    def unsubscribe(self, event: BreakerEvent, handler: EventHandler) -> None:
        """Remove a handler registered with :meth:`subscribe`."""
        self._events.unsubscribe(event, handler)

    def get_state(self) -> CircuitState:
        """Return the current phase without reconciling against the clock.

        Right after the cooldown elapses this still reports ``OPEN``; the move
        to ``HALF_OPEN`` happens on the next :meth:`execute`.
        """
        return self._phase

    def export_state(self) -> BreakerSnapshot:
        """Return an immutable copy of the breaker state for external storage."""
        with self._lock:
            return BreakerSnapshot(
                phase=self._phase,
                failure_count=self._failure_count,
                success_count=self._success_count,
                first_failure_time=self._first_failure_time,
                last_failure_time=self._last_failure_time,
                next_attempt=self._next_attempt,
            )

    async def execute(
        self,
        operation: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        """Invoke an async callable under circuit breaker protection.

        Args:
            operation: Dangerous async callable to execute.
            *args: Positional arguments forwarded to ``operation``.
            **kwargs: Keyword arguments forwarded to ``operation``.

        Returns:
            The result of ``operation`` when allowed and successful.

        Raises:
            CircuitOpenError: When the circuit is open and the call is rejected.
            Exception: The original exception from ``operation`` when it is
                attempted and fails.
        """
        with self._lock:
            now = self._clock()
            self._reconcile(now)
            next_attempt = self._next_attempt
            # _reconcile leaves OPEN only while a cooldown is scheduled
            if self._phase == CircuitState.OPEN and next_attempt is not None:
                log_warning(
                    self._logger,
                    "circuit_breaker.rejected",
                    breaker=self.name,
                    next_attempt=next_attempt,
                )
                self._events.emit(BreakerEvent.OPEN_CIRCUIT, next_attempt)
                raise CircuitOpenError(self.name, next_attempt, now)

        try:
            result = await operation(*args, **kwargs)
        except Exception:
            with self._lock:
                self._record_failure(self._clock())
            raise

        with self._lock:
            self._record_success()
        return result

    def protect(self, func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        """Decorate ``func`` so every call goes through :meth:`execute`."""

        @functools.wraps(func)
        async def _guarded(*args: P.args, **kwargs: P.kwargs) -> T:
            return await self.execute(func, *args, **kwargs)

        return _guarded

    def _load(self, snapshot: BreakerSnapshot) -> None:
        self._phase = CircuitState(snapshot.phase)
        self._failure_count = snapshot.failure_count
        self._success_count = snapshot.success_count
        self._first_failure_time = snapshot.first_failure_time
        self._last_failure_time = snapshot.last_failure_time
        self._next_attempt = snapshot.next_attempt

    def _reset(self) -> None:
        self._load(BreakerSnapshot.initial())

    def _reconcile(self, now: float) -> None:
        first_failure_time = self._first_failure_time
        if self._phase == CircuitState.OPEN:
            if self._next_attempt is None or now >= self._next_attempt:
                self._to_half_open()
        elif (
            self._phase == CircuitState.CLOSED
            and first_failure_time is not None
            and now - first_failure_time > self.config.time_window
        ):
            log_info(
                self._logger,
                "circuit_breaker.window_reset",
                breaker=self.name,
                failure_count=self._failure_count,
                success_count=self._success_count,
            )
            self._reset()

        max_failure_count = self.config.max_failure_count
        if (
            self._phase == CircuitState.CLOSED
            and max_failure_count is not None
            and self._failure_count >= max_failure_count
        ):
            log_info(
                self._logger,
                "circuit_breaker.failure_ceiling_reset",
                breaker=self.name,
                failure_count=self._failure_count,
            )
            self._reset()

    def _record_success(self) -> None:
        self._success_count += 1
        success_count = self._success_count
        if self._phase == CircuitState.HALF_OPEN:
            self._to_closed()
        self._events.emit(BreakerEvent.SUCCESS, success_count)

    def _record_failure(self, now: float) -> None:
        self._failure_count += 1
        self._last_failure_time = now
        failure_count = self._failure_count

        if self._phase == CircuitState.CLOSED:
            if self._first_failure_time is None:
                self._first_failure_time = now
            if self._threshold_exceeded(now):
                self._to_open(now)
        elif self._phase == CircuitState.HALF_OPEN:
            self._to_open(now)

        self._events.emit(BreakerEvent.FAILURE, failure_count)

    def _threshold_exceeded(self, now: float) -> bool:
        first_failure_time = self._first_failure_time
        if first_failure_time is None:
            return False
        config = self.config
        total_attempts = self._failure_count + self._success_count
        failure_rate = self._failure_count / total_attempts
        return (
            self._failure_count >= config.min_failures
            and failure_rate >= config.failure_threshold
            and total_attempts >= config.min_attempts
            and now - first_failure_time >= config.min_evaluation_time
            and now < first_failure_time + config.time_window
        )

    def _to_open(self, now: float) -> None:
        self._phase = CircuitState.OPEN
        self._next_attempt = now + self.config.reset_timeout
        log_info(
            self._logger,
            "circuit_breaker.opened",
            breaker=self.name,
            failure_count=self._failure_count,
            success_count=self._success_count,
            next_attempt=self._next_attempt,
        )
        self._events.emit(BreakerEvent.OPEN_CIRCUIT, self._next_attempt)

    def _to_half_open(self) -> None:
        self._phase = CircuitState.HALF_OPEN
        self._failure_count = 0
        self._success_count = 0
        log_info(self._logger, "circuit_breaker.half_opened", breaker=self.name)
        self._events.emit(BreakerEvent.HALF_OPEN)

    def _to_closed(self) -> None:
        self._reset()
        log_info(self._logger, "circuit_breaker.closed", breaker=self.name)
        self._events.emit(BreakerEvent.CLOSE_CIRCUIT)
