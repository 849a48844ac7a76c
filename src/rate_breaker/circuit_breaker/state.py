"""Circuit breaker state primitives."""

from collections.abc import Mapping
from dataclasses import asdict, dataclass
from enum import StrEnum

from pydantic import TypeAdapter


class CircuitState(StrEnum):
    """Circuit breaker state values."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerSnapshot:
    """Point-in-time copy of everything a breaker needs to resume.

    Timestamps are epoch seconds from the breaker clock. ``None`` means the
    marker is unset (no open window, no failure seen, not scheduled).

    Attributes:
        phase: Current breaker phase.
        failure_count: Failures observed in the current window or trial.
        success_count: Successes observed in the current window or trial.
        first_failure_time: Start of the current failure window, if any.
        last_failure_time: Time of the most recent failure, if any.
        next_attempt: While ``OPEN``, calls are rejected before this time.
    """

    phase: CircuitState = CircuitState.CLOSED
    failure_count: int = 0
    success_count: int = 0
    first_failure_time: float | None = None
    last_failure_time: float | None = None
    next_attempt: float | None = None

    def __post_init__(self) -> None:
        if self.failure_count < 0:
            raise ValueError("failure_count must be >= 0")
        if self.success_count < 0:
            raise ValueError("success_count must be >= 0")

    @classmethod
    def initial(cls) -> "BreakerSnapshot":
        """Return the snapshot of a freshly built, healthy breaker."""
        return cls()

    def to_dict(self) -> dict[str, str | int | float | None]:
        """Flatten the snapshot into plain values for external stores."""
        data: dict[str, str | int | float | None] = asdict(self)
        data["phase"] = CircuitState(self.phase).value
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> "BreakerSnapshot":
        """Rebuild a snapshot previously produced by :meth:`to_dict`.

        Missing keys take their defaults.

        Raises:
            pydantic.ValidationError: When a value cannot be represented
                exactly, such as an unknown phase or a fractional count.
        """
        return SNAPSHOT_ADAPTER.validate_python(dict(data))


SNAPSHOT_ADAPTER: TypeAdapter[BreakerSnapshot] = TypeAdapter(BreakerSnapshot)
