"""
Retry Policy

Retries a single backend call with capped exponential backoff and jitter.
The policy never raises what the backend raised: it hands back a RetryOutcome
value so the fallback router can record the attempt and move on.

Pattern: Exponential backoff (GUIDELINES pp. 2309)

Delay before retry n (0-based):
    min(max_delay, base_delay * 2**n) + uniform(0, jitter)

Classification:
    BackendError carries its own retryable flag and status kind.
    Timeouts and httpx transport failures are retryable.
    Anything else is treated as fatal.
"""

import asyncio
import random as _random
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from genai_gateway.core.config import Settings
from genai_gateway.core.exceptions import (
    BackendError,
    GatewayValidationError,
    StatusKind,
)
from genai_gateway.observability.events import EventSink, GatewayEvent
from genai_gateway.observability.logging import get_logger
from genai_gateway.resilience.metrics import record_retry_attempt

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY_SECONDS = 1.0
DEFAULT_MAX_DELAY_SECONDS = 10.0
DEFAULT_JITTER_SECONDS = 0.1


# =============================================================================
# Error Classification
# =============================================================================


def classify_error(error: BaseException) -> tuple[bool, StatusKind]:
    """
    Decide whether a failure is worth retrying.

    Args:
        error: Exception raised by a backend call

    Returns:
        (retryable, status_kind)
    """
    if isinstance(error, BackendError):
        return error.retryable, error.status_kind
    if isinstance(error, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return True, StatusKind.TIMEOUT
    if isinstance(error, httpx.TransportError):
        return True, StatusKind.UNAVAILABLE
    return False, StatusKind.UNKNOWN


# =============================================================================
# Outcome
# =============================================================================


@dataclass(frozen=True)
class RetryOutcome:
    """
    Result of running one backend call under the retry policy.

    Attributes:
        result: Return value of the last call, if it succeeded
        error: Last error, if every call failed
        attempts: Number of calls made
        retryable: Whether the last error was retryable (False means fatal)
        status_kind: Classification of the last error
    """

    result: Any = None
    error: Optional[BaseException] = None
    attempts: int = 0
    retryable: bool = False
    status_kind: Optional[StatusKind] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None

    @property
    def exhausted(self) -> bool:
        """Failed on a retryable error after using the whole budget."""
        return self.error is not None and self.retryable


# =============================================================================
# Policy
# =============================================================================


class RetryPolicy:
    """
    Capped exponential backoff for one backend.

    Example:
        >>> policy = RetryPolicy(max_retries=2, base_delay=0.5)
        >>> outcome = await policy.execute(lambda: adapter.invoke(prompt, options))
        >>> outcome.succeeded, outcome.attempts
        (True, 1)
    """

    def __init__(
        self,
        max_retries: int = DEFAULT_MAX_RETRIES,
        base_delay: float = DEFAULT_BASE_DELAY_SECONDS,
        max_delay: float = DEFAULT_MAX_DELAY_SECONDS,
        jitter: float = DEFAULT_JITTER_SECONDS,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        random: Callable[[], float] = _random.random,
        event_sink: Optional[EventSink] = None,
    ) -> None:
        if max_retries < 0:
            raise GatewayValidationError(
                "max_retries must be >= 0", field="max_retries", value=max_retries
            )
        if base_delay < 0:
            raise GatewayValidationError(
                "base_delay must be >= 0", field="base_delay", value=base_delay
            )
        if max_delay < base_delay:
            raise GatewayValidationError(
                "max_delay must be >= base_delay", field="max_delay", value=max_delay
            )
        if jitter < 0:
            raise GatewayValidationError(
                "jitter must be >= 0", field="jitter", value=jitter
            )

        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter = jitter
        self._sleep = sleep
        self._random = random
        self._event_sink = event_sink

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        event_sink: Optional[EventSink] = None,
    ) -> "RetryPolicy":
        return cls(
            max_retries=settings.retry_max_retries,
            base_delay=settings.retry_base_delay_seconds,
            max_delay=settings.retry_max_delay_seconds,
            jitter=settings.retry_jitter_seconds,
            event_sink=event_sink,
        )

    def compute_delay(self, attempt: int) -> float:
        """Delay in seconds before the retry following 0-based `attempt`."""
        delay = min(self.max_delay, self.base_delay * (2**attempt))
        if self.jitter:
            delay += self._random() * self.jitter
        return delay

    async def execute(
        self,
        func: Callable[[], Awaitable[Any]],
        backend: Optional[str] = None,
    ) -> RetryOutcome:
        """
        Call `func` until it succeeds, fails fatally, or retries run out.

        Args:
            func: Zero-argument coroutine factory, called once per attempt
            backend: Backend id for events and metrics

        Returns:
            RetryOutcome describing how the call ended
        """
        backend_name = backend or "unknown"
        total_calls = self.max_retries + 1

        for attempt in range(total_calls):
            try:
                result = await func()
            except Exception as e:
                retryable, status_kind = classify_error(e)
                last_call = attempt == total_calls - 1

                if not retryable:
                    decision = "fatal"
                elif last_call:
                    decision = "exhausted"
                else:
                    decision = "retry"

                delay = self.compute_delay(attempt) if decision == "retry" else 0.0

                record_retry_attempt(backend_name, decision)
                if self._event_sink is not None:
                    self._event_sink.emit(
                        GatewayEvent.BACKEND_ATTEMPT_FAILURE,
                        backend=backend_name,
                        attempt=attempt + 1,
                        status_kind=status_kind.value,
                        retryable=retryable,
                        delay=delay,
                        error=str(e),
                    )

                if decision != "retry":
                    return RetryOutcome(
                        error=e,
                        attempts=attempt + 1,
                        retryable=retryable,
                        status_kind=status_kind,
                    )

                logger.debug(
                    "retrying backend call",
                    backend=backend_name,
                    attempt=attempt + 1,
                    delay=delay,
                )
                await self._sleep(delay)
            else:
                return RetryOutcome(result=result, attempts=attempt + 1)

        # Unreachable: the last iteration always returns.
        raise AssertionError("retry loop exited without an outcome")
