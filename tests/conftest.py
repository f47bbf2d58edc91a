"""
Pytest configuration for the test suite.

Reference Documents:
- GUIDELINES pp. 155-157: "high and low gear" testing philosophy
- GUIDELINES pp. 157: FakeRepository pattern using duck typing

This configuration sets up:
- Test discovery paths
- Shared fixtures following FakeRepository pattern (fakes over mocks)
- Controllable clocks and sleeps so time-based behavior runs instantly
- Test markers for categorization
"""

import sys
from decimal import Decimal
from pathlib import Path

import fakeredis.aioredis
import pytest

# Add project root to Python path for imports
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from genai_gateway.core.config import Settings  # noqa: E402
from genai_gateway.observability.events import RecordingEventSink  # noqa: E402
from tests.support import FakeClock, FakeUtcClock, RecordingSleep  # noqa: E402


# =============================================================================
# Test Markers
# =============================================================================


def pytest_configure(config):
    """
    Register custom markers for test categorization.

    - unit: Low gear tests for individual components
    - integration: High gear tests for the assembled gateway
    """
    config.addinivalue_line("markers", "unit: Unit tests for individual components")
    config.addinivalue_line("markers", "integration: Integration tests for service interactions")


# =============================================================================
# Time Fixtures
# =============================================================================


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def utc_clock() -> FakeUtcClock:
    return FakeUtcClock()


@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


# =============================================================================
# Shared Fixtures
# =============================================================================


@pytest.fixture
def fake_redis():
    """
    Create a fake Redis client for testing.

    Reference: GUIDELINES pp. 157 - FakeRepository pattern

    Returns:
        FakeRedis: A fake Redis client with decode_responses=True
    """
    return fakeredis.aioredis.FakeRedis(decode_responses=True)


@pytest.fixture
def recording_sink() -> RecordingEventSink:
    """Event sink that keeps every event for assertions."""
    return RecordingEventSink()


@pytest.fixture
def test_settings() -> Settings:
    """
    Settings with test-friendly values.

    Short timeouts and no retry delay so nothing in the suite waits.
    """
    return Settings(
        service_name="genai-gateway-test",
        environment="development",
        circuit_breaker_failure_threshold=3,
        circuit_breaker_reset_timeout_seconds=30.0,
        circuit_breaker_monitor_interval_seconds=0.0,
        retry_max_retries=2,
        retry_base_delay_seconds=0.0,
        retry_max_delay_seconds=0.0,
        retry_jitter_seconds=0.0,
        cache_ttl_seconds=60.0,
        cache_max_size=100,
        daily_limit=Decimal("10"),
        monthly_limit=Decimal("100"),
        warning_threshold_percent=Decimal("80"),
        redis_url=None,
        fallback_chains={
            "conversation": ["primary", "secondary"],
            "text": ["secondary"],
        },
    )