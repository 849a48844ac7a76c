"""Circuit breaker exceptions.

Callers can distinguish between:
  - A call being rejected because the circuit is open (``CircuitOpenError``).
  - The protected operation failing, which surfaces its own exception as-is.
"""


class CircuitBreakerError(Exception):
    """Base exception for the circuit breaker package."""


class CircuitOpenError(CircuitBreakerError):
    """Raised when a call is rejected because the circuit is open.

    Attributes:
        breaker_name: Name of the breaker rejecting the call.
        next_attempt: Clock time at which a trial call will be allowed.
        retry_after: Seconds until ``next_attempt``.
    """

    def __init__(self, breaker_name: str, next_attempt: float, now: float) -> None:
        """Initialize a circuit-open exception payload.

        Args:
            breaker_name: Breaker rejecting the call.
            next_attempt: Clock time when the cooldown ends.
            now: Clock time of the rejected call.
        """
        self.breaker_name = breaker_name
        self.next_attempt = next_attempt
        self.retry_after = max(next_attempt - now, 0.0)
        super().__init__(
            f"circuit_open: {breaker_name} retry_after={self.retry_after:g}s"
        )
