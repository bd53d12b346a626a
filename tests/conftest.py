"""
NoteGuard — Test Configuration (conftest.py)
=============================================

What:  Shared pytest fixtures for the entire test suite.
How:   pytest auto-discovers conftest.py and makes fixtures available to all tests.

Fixture Hierarchy:
    Function-scoped (created fresh for each test):
    ├── clock:             FakeClock pinned to Wednesday 2024-05-15 12:00
    ├── usage_store:       TokenUsageStore on the fake clock
    ├── token_monitor:     TokenMonitor over usage_store
    ├── recording_channel: AlertChannel that keeps every notification
    ├── make_channel:      RecordingChannel factory for custom dispatchers
    ├── error_store:       ErrorLogStore dispatching to recording_channel
    ├── error_logger:      ErrorLogger over error_store
    ├── fallback_provider: FallbackProvider on the fake clock
    ├── fallback_tracker:  FallbackUsageTracker on the fake clock
    ├── fake_sleep:        AsyncMock standing in for asyncio.sleep
    └── orchestrator:      RetryOrchestrator wired to all of the above
"""

import os
from datetime import datetime, timedelta
from typing import List
from unittest.mock import AsyncMock

import pytest

# ══════════════════════════════════════════════════════════════════════════
# Environment Setup
# ══════════════════════════════════════════════════════════════════════════

# Set before noteguard.config is imported anywhere
os.environ["GEMINI_API_KEY"] = "test-key-not-real"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["ENVIRONMENT"] = "test"

from noteguard.exceptions import AlertDeliveryError  # noqa: E402
from noteguard.monitoring.alerting import AlertChannel, AlertDispatcher  # noqa: E402
from noteguard.monitoring.error_logger import ErrorLogger, ErrorLogStore  # noqa: E402
from noteguard.monitoring.token_monitor import TokenMonitor, TokenUsageStore  # noqa: E402
from noteguard.schemas.monitoring import AlertNotification  # noqa: E402
from noteguard.services.fallback import FallbackProvider, FallbackUsageTracker  # noqa: E402
from noteguard.services.retry import RetryOrchestrator  # noqa: E402


# ══════════════════════════════════════════════════════════════════════════
# Test doubles
# ══════════════════════════════════════════════════════════════════════════

class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingChannel(AlertChannel):
    """Keeps notifications; fails the first `failures` deliveries."""

    def __init__(self, name: str = "slack", failures: int = 0):
        self.name = name
        self.failures = failures
        self.calls = 0
        self.delivered: List[AlertNotification] = []

    def deliver(self, notification: AlertNotification) -> None:
        self.calls += 1
        if self.calls <= self.failures:
            raise AlertDeliveryError(self.name, "webhook returned 502")
        self.delivered.append(notification)


# ══════════════════════════════════════════════════════════════════════════
# Function-Scoped Fixtures
# ══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def clock():
    # 2024-05-15 is a Wednesday
    return FakeClock(datetime(2024, 5, 15, 12, 0, 0))


@pytest.fixture
def usage_store(clock):
    return TokenUsageStore(clock=clock)


@pytest.fixture
def token_monitor(usage_store):
    return TokenMonitor(usage_store)


@pytest.fixture
def recording_channel():
    return RecordingChannel("slack")


@pytest.fixture
def make_channel():
    return RecordingChannel


@pytest.fixture
def error_store(clock, recording_channel):
    dispatcher = AlertDispatcher(
        channels=[recording_channel, RecordingChannel("email")],
        clock=clock,
    )
    return ErrorLogStore(dispatcher=dispatcher, clock=clock)


@pytest.fixture
def error_logger(error_store):
    return ErrorLogger(error_store, environment="test", version="9.9.9")


@pytest.fixture
def fallback_provider(clock):
    return FallbackProvider(clock=clock)


@pytest.fixture
def fallback_tracker(clock):
    return FallbackUsageTracker(clock=clock)


@pytest.fixture
def fake_sleep():
    return AsyncMock()


@pytest.fixture
def orchestrator(token_monitor, error_logger, fake_sleep, clock):
    return RetryOrchestrator(token_monitor, error_logger, sleep=fake_sleep, clock=clock)
