"""Rate-based async circuit breaker.

This package implements the circuit breaker pattern from *Release It!* with a
failure-rate trip condition evaluated over a time window.

Key behavior notes:
  - The breaker opens only when, inside one window, failures reach
    ``min_failures``, outcomes reach ``min_attempts``, the failure rate reaches
    ``failure_threshold`` and the window is at least ``min_evaluation_time``
    old.
  - ``HALF_OPEN`` admits trial calls and is settled by the first outcome: a
    success closes the circuit, a failure reopens it.
  - All time-based transitions happen lazily inside ``execute``;
    ``get_state`` never consults the clock.
  - State lives in the breaker instance. ``export_state`` and the
    ``initial_state`` constructor argument move it in and out of external
    storage.
"""

from rate_breaker.circuit_breaker.breaker import CircuitBreaker, CircuitBreakerConfig
from rate_breaker.circuit_breaker.events import (
    BreakerEvent,
    EventChannel,
    EventHandler,
    LoggingListener,
)
from rate_breaker.circuit_breaker.exceptions import (
    CircuitBreakerError,
    CircuitOpenError,
)
from rate_breaker.circuit_breaker.state import BreakerSnapshot, CircuitState
from rate_breaker.circuit_breaker.storage import (
    AbstractSnapshotStorage,
    InMemorySnapshotStorage,
    decode_snapshot,
    encode_snapshot,
    persisted_breaker,
)

__all__ = [
    "AbstractSnapshotStorage",
    "BreakerEvent",
    "BreakerSnapshot",
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitBreakerError",
    "CircuitOpenError",
    "CircuitState",
    "EventChannel",
    "EventHandler",
    "InMemorySnapshotStorage",
    "LoggingListener",
    "decode_snapshot",
    "encode_snapshot",
    "persisted_breaker",
]
