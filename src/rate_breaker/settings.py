from __future__ import annotations

import math

import structlog
from pydantic import ValidationInfo, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from rate_breaker.circuit_breaker.breaker import CircuitBreakerConfig
from rate_breaker.logging import configure_structlog, get_log_level_value


def prefixed_settings_config(prefix: str) -> SettingsConfigDict:
    """Build standard Pydantic settings config for prefixed environments."""
    return SettingsConfigDict(env_prefix=prefix, case_sensitive=False)


class BreakerSettings(BaseSettings):
    """Breaker thresholds and logging options loaded from ``BREAKER_*``."""

    model_config = prefixed_settings_config("BREAKER_")

    failure_threshold: float = 0.5
    time_window: float = 10.0
    reset_timeout: float = 30.0
    min_attempts: int = 5
    min_failures: int = 3
    min_evaluation_time: float = 0.0
    max_failure_count: int | None = None
    log_level: str = "INFO"
    log_json: bool | None = None

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> object:
        if isinstance(value, str):
            normalized = value.strip().upper()
            get_log_level_value(normalized)
            return normalized
        return value

    @field_validator("time_window", "reset_timeout")
    @classmethod
    def _validate_positive_duration(cls, value: float, info: ValidationInfo) -> float:
        if not math.isfinite(value) or value <= 0:
            raise ValueError(f"{info.field_name} must be a finite number > 0")
        return value

    @field_validator("min_evaluation_time")
    @classmethod
    def _validate_evaluation_time(cls, value: float) -> float:
        if not math.isfinite(value) or value < 0:
            raise ValueError("min_evaluation_time must be a finite number >= 0")
        return value

    @field_validator("min_attempts", "min_failures")
    @classmethod
    def _validate_minimum_count(cls, value: int, info: ValidationInfo) -> int:
        if value < 1:
            raise ValueError(f"{info.field_name} must be >= 1")
        return value

    @model_validator(mode="after")
    def _validate_breaker_settings(self) -> BreakerSettings:
        if not 0.0 <= self.failure_threshold <= 1.0:
            raise ValueError("failure_threshold must be between 0 and 1")
        if self.max_failure_count is not None and self.max_failure_count <= 0:
            raise ValueError("max_failure_count must be > 0 when provided")
        return self

    def to_config(self) -> CircuitBreakerConfig:
        """Build the breaker configuration described by these settings."""
        return CircuitBreakerConfig(
            failure_threshold=self.failure_threshold,
            time_window=self.time_window,
            reset_timeout=self.reset_timeout,
            min_attempts=self.min_attempts,
            min_failures=self.min_failures,
            min_evaluation_time=self.min_evaluation_time,
            max_failure_count=self.max_failure_count,
        )

    def configure_logging(self) -> structlog.stdlib.BoundLogger:
        """Apply ``log_level`` and ``log_json`` to process-wide logging."""
        return configure_structlog(log_level=self.log_level, json_logs=self.log_json)
