from __future__ import annotations

import logging
import sys
from typing import Literal, Protocol

import structlog

_LOG_LEVELS: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

_StdlibLogger = logging.Logger | logging.LoggerAdapter[logging.Logger]


class StructuredLogger(Protocol):
    """Logger protocol accepted by breakers and their listeners."""

    def info(self, event: str, **kwargs: object) -> None: ...

    def warning(self, event: str, **kwargs: object) -> None: ...

    def exception(self, event: str, **kwargs: object) -> None: ...


AnyLogger = StructuredLogger | _StdlibLogger


def get_log_level_value(level: str) -> int:
    """Return stdlib log level constant for a normalized level string."""
    normalized = level.strip().upper()
    try:
        return _LOG_LEVELS[normalized]
    except KeyError as error:
        choices = ", ".join(sorted(_LOG_LEVELS))
        raise ValueError(f"log_level must be one of: {choices}") from error


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger bound to a stdlib logger name."""
    return structlog.stdlib.get_logger(name)


def _log(
    logger: AnyLogger,
    level: Literal["info", "warning", "exception"],
    event: str,
    **fields: object,
) -> None:
    method = getattr(logger, level)
    if isinstance(logger, (logging.Logger, logging.LoggerAdapter)):
        method(event, extra=fields)
        return
    method(event, **fields)


def log_info(logger: AnyLogger, event: str, **fields: object) -> None:
    _log(logger, "info", event, **fields)


def log_warning(logger: AnyLogger, event: str, **fields: object) -> None:
    _log(logger, "warning", event, **fields)


def log_exception(logger: AnyLogger, event: str, **fields: object) -> None:
    """Log an event together with the exception currently being handled."""
    _log(logger, "exception", event, **fields)


def configure_structlog(
    *, log_level: str, json_logs: bool | None = None
) -> structlog.stdlib.BoundLogger:
    """Route breaker events through stdlib logging on stderr.

    Args:
        log_level: Root log level name.
        json_logs: Render JSON lines when true and console output when false.
            ``None`` picks console output only when stderr is a terminal.
    """
    level_value = get_log_level_value(log_level)
    if json_logs is None:
        json_logs = not sys.stderr.isatty()
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json_logs
        else structlog.dev.ConsoleRenderer()
    )
    timestamper = structlog.processors.TimeStamper(fmt="iso", utc=True)

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=[structlog.stdlib.add_log_level, timestamper],
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    logging.basicConfig(handlers=[handler], level=level_value, force=True)

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            timestamper,
            structlog.processors.format_exc_info,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
    return structlog.stdlib.get_logger("rate_breaker")
