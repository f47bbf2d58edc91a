"""
Shared test doubles and builders.

Fakes over mocks: these replace time and sleeping so that breaker cooldowns,
cache expiry, period rollover and retry backoff can be tested instantly.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from genai_gateway.models.domain import (
    BackendSelector,
    GenerationOptions,
    GenerationRequest,
)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeUtcClock:
    """UTC wall clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None) -> None:
        self.now = start or datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Replacement for asyncio.sleep that records delays and returns at once."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_request(
    prompt: str = "Explain photosynthesis",
    primary: str = "primary",
    fallbacks: Optional[list[str]] = None,
    **kwargs,
) -> GenerationRequest:
    """Build a request with sensible defaults for tests."""
    kwargs.setdefault("options", GenerationOptions(max_tokens=100))
    return GenerationRequest(
        prompt=prompt,
        backend=BackendSelector(primary=primary, fallbacks=fallbacks or []),
        **kwargs,
    )
