"""Snapshot storage for circuit breakers.

Storage is intentionally decoupled from breaker logic: a breaker only exports
and imports :class:`BreakerSnapshot` values. Custom backends (for example a
key-value store shared by serverless invocations) implement
:class:`AbstractSnapshotStorage`; coordinating writers across processes is
up to the backend.
"""

import asyncio
import sys
import threading
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from rate_breaker.circuit_breaker.breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    Clock,
)
from rate_breaker.circuit_breaker.state import SNAPSHOT_ADAPTER, BreakerSnapshot
from rate_breaker.logging import AnyLogger


def encode_snapshot(snapshot: BreakerSnapshot) -> bytes:
    """Serialize a snapshot to flat JSON."""
    return SNAPSHOT_ADAPTER.dump_json(snapshot)


def decode_snapshot(raw: str | bytes) -> BreakerSnapshot:
    """Parse and validate JSON produced by :func:`encode_snapshot`.

    Raises:
        pydantic.ValidationError: When the payload is not a valid snapshot.
    """
    return SNAPSHOT_ADAPTER.validate_json(raw)


class AbstractSnapshotStorage(ABC):
    """Abstract breaker snapshot storage interface."""

    @abstractmethod
    async def load(self, name: str) -> BreakerSnapshot | None:
        """Return the stored snapshot for ``name``, or ``None`` if missing."""

    @abstractmethod
    async def save(self, name: str, snapshot: BreakerSnapshot) -> None:
        """Store ``snapshot`` under ``name``, replacing any previous value."""

    @abstractmethod
    async def delete(self, name: str) -> None:
        """Forget the snapshot stored under ``name``."""


class InMemorySnapshotStorage(AbstractSnapshotStorage):
    """In-memory storage with per-name cooperative + optional thread locks."""

    def __init__(self) -> None:
        """Initialize in-memory snapshot and lock registries."""
        self._snapshots: dict[str, BreakerSnapshot] = {}
        self._async_locks: dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)
        self._thread_locks: dict[str, threading.Lock] = defaultdict(threading.Lock)
        is_gil_enabled = getattr(sys, "_is_gil_enabled", None)
        self._gil_enabled = True if is_gil_enabled is None else bool(is_gil_enabled())

    @asynccontextmanager
    async def _locked(self, name: str) -> AsyncIterator[None]:
        async_lock = self._async_locks[name]
        if self._gil_enabled:
            async with async_lock:
                yield
            return

        thread_lock = self._thread_locks[name]
        thread_lock.acquire()
        try:
            await async_lock.acquire()
        except Exception:
            thread_lock.release()
            raise
        try:
            yield
        finally:
            async_lock.release()
            thread_lock.release()

    async def load(self, name: str) -> BreakerSnapshot | None:
        async with self._locked(name):
            return self._snapshots.get(name)

    async def save(self, name: str, snapshot: BreakerSnapshot) -> None:
        async with self._locked(name):
            self._snapshots[name] = snapshot

    async def delete(self, name: str) -> None:
        async with self._locked(name):
            self._snapshots.pop(name, None)


@asynccontextmanager
async def persisted_breaker(
    storage: AbstractSnapshotStorage,
    name: str,
    config: CircuitBreakerConfig,
    *,
    clock: Clock | None = None,
    logger: AnyLogger | None = None,
) -> AsyncIterator[CircuitBreaker]:
    """Resume a breaker from ``storage`` and write its state back on exit.

    Intended for runtimes without durable process memory, where every
    invocation rebuilds the breaker. The snapshot is saved even when the body
    raises, so failures (and rejections) are not lost.
    """
    snapshot = await storage.load(name)
    if clock is None:
        breaker = CircuitBreaker(config, snapshot, name=name, logger=logger)
    else:
        breaker = CircuitBreaker(config, snapshot, name=name, clock=clock, logger=logger)
    try:
        yield breaker
    finally:
        await storage.save(name, breaker.export_state())
