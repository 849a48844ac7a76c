from __future__ import annotations

import pytest

from tests.rate_breaker.support.fakes import FakeClock, FakeLogger


@pytest.fixture
def clock() -> FakeClock:
    """Provide a fresh manual clock per test."""
    return FakeClock()


@pytest.fixture
def fake_logger() -> FakeLogger:
    """Provide a fresh structured logger test double per test."""
    return FakeLogger()
