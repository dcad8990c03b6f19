# backend/tests/conftest.py
"""
Pytest configuration shared by every test.

Environment is pinned to "test" before any app import so settings never pick
up a developer's .env calendar tokens or database.
"""

import os
import sys

# CRITICAL: Set testing mode BEFORE any app imports!
os.environ["ENVIRONMENT"] = "test"
os.environ.pop("GOOGLE_CALENDAR_ACCESS_TOKEN", None)
os.environ.pop("BOOKING_NOTIFICATION_URL", None)

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if backend_dir not in sys.path:
    sys.path.insert(0, backend_dir)

import pytest

from app.core.config import Settings


class FakeClock:
    """Monotonic clock for resilience tests; ``sleep`` advances it instead of waiting."""

    def __init__(self, start: float = 1_000.0):
        self.now = start
        self.sleeps = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        environment="test",
        database_url="sqlite+pysqlite:///:memory:",
        calendar_retry_base_delay_seconds=0.01,
        calendar_retry_max_delay_seconds=0.05,
    )
