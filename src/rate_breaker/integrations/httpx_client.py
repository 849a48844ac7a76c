"""Breaker-guarded HTTP calls over ``httpx``."""

from __future__ import annotations

from typing import Any

import httpx

from rate_breaker.circuit_breaker import CircuitBreaker, CircuitOpenError

SERVICE_UNAVAILABLE = 503
INTERNAL_SERVER_ERROR = 500


def status_for_error(exc: BaseException) -> int:
    """Map a guarded-call error to the HTTP status a proxy should answer with."""
    if isinstance(exc, CircuitOpenError):
        return SERVICE_UNAVAILABLE
    return INTERNAL_SERVER_ERROR


class GuardedHttpClient:
    """Send requests to one upstream through a circuit breaker."""

    def __init__(self, *, client: httpx.AsyncClient, breaker: CircuitBreaker) -> None:
        """Create a guarded client.

        Args:
            client: Shared HTTP client; its lifecycle belongs to the caller.
            breaker: Breaker protecting the upstream.
        """
        self._client = client
        self._breaker = breaker

    @property
    def breaker(self) -> CircuitBreaker:
        return self._breaker

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        """GET ``url`` and decode its JSON body.

        Raises:
            CircuitOpenError: When the breaker rejects the call.
            httpx.HTTPStatusError: For non-2xx responses (counted as failures).
            httpx.HTTPError: For transport failures (counted as failures).
        """
        return await self._breaker.execute(self._fetch_json, url, **kwargs)

    async def _fetch_json(self, url: str, **kwargs: Any) -> Any:
        response = await self._client.get(url, **kwargs)
        response.raise_for_status()
        return response.json()
