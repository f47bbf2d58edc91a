"""
Circuit Breaker State Machine

This module implements the per-backend circuit breaker used by the fallback
router.

Reference Documents:
- Building Reactive Microservices in Java (Escoffier) Ch.6, pp.54-62
- Release It! (Nygard): Stability patterns

State Machine:
    CLOSED: Normal operation, all calls pass through
    OPEN: Circuit tripped, calls fail fast with CircuitOpenError
    HALF_OPEN: Trial calls pass through until the backend proves healthy

Recovery is deliberately conservative: closing from HALF_OPEN takes as many
consecutive successes as the failure threshold, while a single failure
during the trial period reopens the circuit.

All state mutations are protected by asyncio.Lock() so that concurrent
failures never race on the counters.
"""

import asyncio
import time
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, TypeVar

from genai_gateway.core.config import Settings
from genai_gateway.core.exceptions import CircuitOpenError, GatewayValidationError
from genai_gateway.observability.events import EventSink, GatewayEvent
from genai_gateway.observability.logging import get_logger
from genai_gateway.resilience.metrics import record_circuit_state_transition

T = TypeVar("T")

logger = get_logger(__name__)


# =============================================================================
# Constants
# =============================================================================

DEFAULT_FAILURE_THRESHOLD = 5
DEFAULT_RESET_TIMEOUT_SECONDS = 30.0


# =============================================================================
# State Enum
# =============================================================================


class CircuitBreakerState(Enum):
    """
    State of a circuit breaker.

    Per *Building Reactive Microservices in Java*:
    "A circuit breaker is a three-state automaton that manages an interaction.
    It starts in a closed state, switches to open after N failures,
    and goes to half-open after cooldown to probe recovery."
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


# =============================================================================
# Circuit Breaker State Machine
# =============================================================================


class CircuitBreakerStateMachine:
    """
    Circuit breaker protecting one model backend.

    Transitions:
        CLOSED -> OPEN: failure_count reaches failure_threshold
        OPEN -> HALF_OPEN: more than reset_timeout_seconds since last failure
            (checked inline on every call, and by the optional monitor task)
        HALF_OPEN -> CLOSED: success_count reaches failure_threshold
        HALF_OPEN -> OPEN: any failure

    Example:
        >>> breaker = CircuitBreakerStateMachine(name="claude")
        >>> result = await breaker.execute(adapter.invoke, prompt, options)

    Attributes:
        name: Identifier for this circuit breaker (the backend id)
        failure_threshold: Consecutive failures to open, successes to close
        reset_timeout_seconds: Cooldown before a trial call is allowed
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout_seconds: float = DEFAULT_RESET_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        event_sink: Optional[EventSink] = None,
    ) -> None:
        """
        Initialize CircuitBreakerStateMachine.

        Args:
            name: Name for identification and metrics
            failure_threshold: Consecutive failures before opening
            reset_timeout_seconds: Seconds to wait before attempting recovery
            clock: Monotonic time source (injectable for tests)
            event_sink: Receives circuit_state_transition events

        Raises:
            GatewayValidationError: If threshold or timeout are out of range
        """
        if failure_threshold < 1:
            raise GatewayValidationError(
                "failure_threshold must be >= 1",
                field="failure_threshold",
                value=failure_threshold,
            )
        if reset_timeout_seconds <= 0:
            raise GatewayValidationError(
                "reset_timeout_seconds must be > 0",
                field="reset_timeout_seconds",
                value=reset_timeout_seconds,
            )

        self._name = name
        self._failure_threshold = failure_threshold
        self._reset_timeout_seconds = reset_timeout_seconds
        self._clock = clock
        self._event_sink = event_sink

        self._state = CircuitBreakerState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: Optional[float] = None

        self._lock = asyncio.Lock()
        self._monitor_task: Optional[asyncio.Task[None]] = None

    # =========================================================================
    # Factory Methods
    # =========================================================================

    @classmethod
    def from_settings(
        cls,
        name: str,
        settings: Settings,
        event_sink: Optional[EventSink] = None,
    ) -> "CircuitBreakerStateMachine":
        """Create a breaker using the configured threshold and timeout."""
        return cls(
            name=name,
            failure_threshold=settings.circuit_breaker_failure_threshold,
            reset_timeout_seconds=settings.circuit_breaker_reset_timeout_seconds,
            event_sink=event_sink,
        )

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def name(self) -> str:
        return self._name

    @property
    def failure_threshold(self) -> int:
        return self._failure_threshold

    @property
    def reset_timeout_seconds(self) -> float:
        return self._reset_timeout_seconds

    @property
    def state(self) -> CircuitBreakerState:
        """
        Current state of the circuit breaker.

        Note: This returns cached state. Use get_state() for a check that
        applies a pending OPEN -> HALF_OPEN transition.
        """
        return self._state

    @property
    def failure_count(self) -> int:
        """Current consecutive failure count."""
        return self._failure_count

    @property
    def success_count(self) -> int:
        """Consecutive successes while HALF_OPEN."""
        return self._success_count

    @property
    def last_failure_time(self) -> Optional[float]:
        return self._last_failure_time

    @property
    def is_monitoring(self) -> bool:
        return self._monitor_task is not None and not self._monitor_task.done()

    # =========================================================================
    # State Management (caller must hold self._lock)
    # =========================================================================

    def _should_attempt_recovery(self) -> bool:
        """Check if strictly more than the reset timeout has passed."""
        if self._last_failure_time is None:
            return False

        elapsed = self._clock() - self._last_failure_time
        return elapsed > self._reset_timeout_seconds

    def _transition_to(self, new_state: CircuitBreakerState) -> None:
        if new_state == self._state:
            return

        old_state = self._state
        self._state = new_state

        if new_state == CircuitBreakerState.CLOSED:
            self._failure_count = 0
            self._success_count = 0
        elif new_state in (CircuitBreakerState.HALF_OPEN, CircuitBreakerState.OPEN):
            self._success_count = 0

        record_circuit_state_transition(self._name, new_state.value, old_state.value)
        if self._event_sink is not None:
            self._event_sink.emit(
                GatewayEvent.CIRCUIT_STATE_TRANSITION,
                backend=self._name,
                from_state=old_state.value,
                to_state=new_state.value,
                failure_count=self._failure_count,
            )

    # =========================================================================
    # State Management (Thread-Safe)
    # =========================================================================

    async def get_state(self) -> CircuitBreakerState:
        """
        Get current state with atomic OPEN -> HALF_OPEN transition check.

        Returns:
            Current CircuitBreakerState after any transitions
        """
        async with self._lock:
            if (
                self._state == CircuitBreakerState.OPEN
                and self._should_attempt_recovery()
            ):
                self._transition_to(CircuitBreakerState.HALF_OPEN)
            return self._state

    async def acquire(self) -> CircuitBreakerState:
        """
        Ask whether a call may proceed.

        Returns:
            The state the call is admitted under (CLOSED or HALF_OPEN)

        Raises:
            CircuitOpenError: If the circuit is open and still cooling down
        """
        current_state = await self.get_state()
        if current_state == CircuitBreakerState.OPEN:
            raise CircuitOpenError(
                self._name,
                f"Circuit is open - failing fast (threshold={self._failure_threshold})",
            )
        return current_state

    async def record_failure(self) -> None:
        """
        Record a failed call (or a failed retry sequence).

        CLOSED: increments failure_count and opens at the threshold.
        HALF_OPEN: reopens immediately.
        """
        async with self._lock:
            self._last_failure_time = self._clock()

            if self._state == CircuitBreakerState.HALF_OPEN:
                self._transition_to(CircuitBreakerState.OPEN)
            elif self._state == CircuitBreakerState.CLOSED:
                self._failure_count += 1
                if self._failure_count >= self._failure_threshold:
                    self._transition_to(CircuitBreakerState.OPEN)

    async def record_success(self) -> None:
        """
        Record a successful call.

        CLOSED: resets failure_count.
        HALF_OPEN: counts toward closing; closes at failure_threshold successes.
        """
        async with self._lock:
            if self._state == CircuitBreakerState.HALF_OPEN:
                self._success_count += 1
                if self._success_count >= self._failure_threshold:
                    self._transition_to(CircuitBreakerState.CLOSED)
            elif self._state == CircuitBreakerState.CLOSED:
                self._failure_count = 0

    async def reset(self) -> None:
        """Force the circuit back to CLOSED."""
        async with self._lock:
            self._transition_to(CircuitBreakerState.CLOSED)
            self._failure_count = 0
            self._success_count = 0
            self._last_failure_time = None

    # =========================================================================
    # Background Monitor
    # =========================================================================

    def start_monitoring(self, interval_seconds: float) -> None:
        """
        Periodically re-check OPEN -> HALF_OPEN so idle backends recover.

        Must be called from within a running event loop.
        """
        if self.is_monitoring:
            return
        self._monitor_task = asyncio.get_running_loop().create_task(
            self._monitor(interval_seconds),
            name=f"circuit-monitor-{self._name}",
        )

    async def stop_monitoring(self) -> None:
        """Cancel the monitor task if running."""
        task = self._monitor_task
        self._monitor_task = None
        if task is None or task.done():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _monitor(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            await self.get_state()

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """
        Execute an async function through the circuit breaker.

        Args:
            func: Async function to call
            *args: Positional arguments for the function
            **kwargs: Keyword arguments for the function

        Returns:
            The result of the function call

        Raises:
            CircuitOpenError: If the circuit is open (func is not called)
            Exception: Any exception raised by the wrapped function
        """
        await self.acquire()

        try:
            result = await func(*args, **kwargs)
        except Exception:
            await self.record_failure()
            raise

        await self.record_success()
        return result


# =============================================================================
# Registry
# =============================================================================


class CircuitBreakerRegistry:
    """
    Process-wide set of circuit breakers, one per backend.

    Breakers are created lazily on first use of a backend and never
    destroyed. The registry is injected into the router rather than held
    as a module global, so tests get isolated instances.

    Example:
        >>> registry = CircuitBreakerRegistry(failure_threshold=3)
        >>> breaker = registry.get("claude")
        >>> registry.get("claude") is breaker
        True
    """

    def __init__(
        self,
        failure_threshold: int = DEFAULT_FAILURE_THRESHOLD,
        reset_timeout_seconds: float = DEFAULT_RESET_TIMEOUT_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        event_sink: Optional[EventSink] = None,
    ) -> None:
        # Fail on bad config here rather than on the first request.
        CircuitBreakerStateMachine(
            name="_validation",
            failure_threshold=failure_threshold,
            reset_timeout_seconds=reset_timeout_seconds,
        )
        self._failure_threshold = failure_threshold
        self._reset_timeout_seconds = reset_timeout_seconds
        self._clock = clock
        self._event_sink = event_sink
        self._breakers: dict[str, CircuitBreakerStateMachine] = {}
        self._monitor_interval: Optional[float] = None

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        event_sink: Optional[EventSink] = None,
    ) -> "CircuitBreakerRegistry":
        return cls(
            failure_threshold=settings.circuit_breaker_failure_threshold,
            reset_timeout_seconds=settings.circuit_breaker_reset_timeout_seconds,
            event_sink=event_sink,
        )

    def get(self, backend_id: str) -> CircuitBreakerStateMachine:
        """Get the breaker for a backend, creating it on first use."""
        breaker = self._breakers.get(backend_id)
        if breaker is None:
            breaker = CircuitBreakerStateMachine(
                name=backend_id,
                failure_threshold=self._failure_threshold,
                reset_timeout_seconds=self._reset_timeout_seconds,
                clock=self._clock,
                event_sink=self._event_sink,
            )
            self._breakers[backend_id] = breaker
            logger.debug("circuit breaker created", backend=backend_id)
            if self._monitor_interval is not None:
                breaker.start_monitoring(self._monitor_interval)
        return breaker

    def __contains__(self, backend_id: str) -> bool:
        return backend_id in self._breakers

    def states(self) -> dict[str, str]:
        """Snapshot of each known backend's cached state."""
        return {name: cb.state.value for name, cb in self._breakers.items()}

    def start_monitoring(self, interval_seconds: float) -> None:
        """Start the recovery monitor on every current and future breaker."""
        self._monitor_interval = interval_seconds
        for breaker in self._breakers.values():
            breaker.start_monitoring(interval_seconds)

    async def stop_monitoring(self) -> None:
        self._monitor_interval = None
        for breaker in self._breakers.values():
            await breaker.stop_monitoring()
