"""Observability hooks for circuit breakers.

Every breaker owns one :class:`EventChannel`. Notifications are delivered
synchronously, in registration order, before ``execute`` returns or raises.
"""

from collections.abc import Callable
from enum import StrEnum

from rate_breaker.logging import (
    AnyLogger,
    get_logger,
    log_exception,
    log_info,
    log_warning,
)


class BreakerEvent(StrEnum):
    """Named notifications published by a breaker."""

    OPEN_CIRCUIT = "open_circuit"
    CLOSE_CIRCUIT = "close_circuit"
    HALF_OPEN = "half_open"
    SUCCESS = "success"
    FAILURE = "failure"


EventHandler = Callable[[BreakerEvent, object | None], None]


class EventChannel:
    """Registry of per-event subscribers."""

    def __init__(self, *, logger: AnyLogger | None = None) -> None:
        self._handlers: dict[BreakerEvent, list[EventHandler]] = {
            event: [] for event in BreakerEvent
        }
        self._logger = get_logger(__name__) if logger is None else logger

    def subscribe(self, event: BreakerEvent, handler: EventHandler) -> None:
        """Register ``handler`` for ``event``."""
        self._handlers[BreakerEvent(event)].append(handler)

    def subscribe_all(self, handler: EventHandler) -> None:
        """Register ``handler`` for every breaker event."""
        for event in BreakerEvent:
            self.subscribe(event, handler)

    def unsubscribe(self, event: BreakerEvent, handler: EventHandler) -> None:
        """Remove one registration of ``handler``; unknown handlers are ignored."""
        handlers = self._handlers[BreakerEvent(event)]
        if handler in handlers:
            handlers.remove(handler)

    def handler_count(self, event: BreakerEvent) -> int:
        return len(self._handlers[BreakerEvent(event)])

    def emit(self, event: BreakerEvent, payload: object | None = None) -> None:
        """Deliver ``event`` to its subscribers.

        A failing handler is logged and skipped so it cannot change the
        breaker's outcome or starve later subscribers.
        """
        for handler in tuple(self._handlers[event]):
            try:
                handler(event, payload)
            except Exception:
                log_exception(
                    self._logger,
                    "circuit_breaker.handler_failed",
                    breaker_event=event.value,
                    handler=getattr(handler, "__qualname__", repr(handler)),
                )


class LoggingListener:
    """Write one structured log line per breaker notification."""

    def __init__(
        self,
        name: str,
        *,
        logger: AnyLogger | None = None,
        log_successes: bool = False,
    ) -> None:
        self.name = name
        self._logger = get_logger(__name__) if logger is None else logger
        self._log_successes = log_successes

    def attach(self, channel: EventChannel) -> None:
        channel.subscribe_all(self)

    def detach(self, channel: EventChannel) -> None:
        for event in BreakerEvent:
            channel.unsubscribe(event, self)

    def __call__(self, event: BreakerEvent, payload: object | None) -> None:
        if event == BreakerEvent.SUCCESS:
            if self._log_successes:
                log_info(
                    self._logger,
                    "circuit_breaker.success",
                    breaker=self.name,
                    success_count=payload,
                )
            return
        if event == BreakerEvent.FAILURE:
            log_warning(
                self._logger,
                "circuit_breaker.failure",
                breaker=self.name,
                failure_count=payload,
            )
            return
        if event == BreakerEvent.OPEN_CIRCUIT:
            log_info(
                self._logger,
                "circuit_breaker.open_circuit",
                breaker=self.name,
                next_attempt=payload,
            )
            return
        log_info(self._logger, f"circuit_breaker.{event.value}", breaker=self.name)
