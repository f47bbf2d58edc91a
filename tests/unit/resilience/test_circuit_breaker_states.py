"""
Tests for Circuit Breaker State Machine

Reference Documents:
- Building Reactive Microservices in Java (Escoffier) Ch.6: Circuit breaker pattern
- Release It! (Nygard): Stability patterns

This module tests:
- CLOSED -> OPEN -> HALF_OPEN -> CLOSED transitions
- Conservative recovery (threshold successes to close, one failure reopens)
- Strict reset-timeout comparison with an injected clock
- Background monitor task
- Per-backend registry
- Events and Prometheus metrics on transitions
"""

import asyncio

import pytest
import pytest_asyncio

from genai_gateway.core.exceptions import CircuitOpenError, GatewayValidationError
from genai_gateway.observability.events import GatewayEvent
from genai_gateway.resilience.circuit_breaker_state_machine import (
    CircuitBreakerRegistry,
    CircuitBreakerState,
    CircuitBreakerStateMachine,
)


# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def state_machine(fake_clock, recording_sink):
    """Create a state machine with test-friendly settings."""
    return CircuitBreakerStateMachine(
        name="test-backend",
        failure_threshold=3,
        reset_timeout_seconds=30.0,
        clock=fake_clock,
        event_sink=recording_sink,
    )


async def _trip(breaker: CircuitBreakerStateMachine) -> None:
    for _ in range(breaker.failure_threshold):
        await breaker.record_failure()


class _Backend:
    """Counts calls and fails on demand."""

    def __init__(self) -> None:
        self.calls = 0
        self.fail = False

    async def __call__(self, value: str = "ok") -> str:
        self.calls += 1
        if self.fail:
            raise RuntimeError("backend down")
        return value


# =============================================================================
# Construction
# =============================================================================


class TestCircuitBreakerConstruction:
    """Tests for configuration validation."""

    def test_initial_state_is_closed(self, state_machine) -> None:
        assert state_machine.state == CircuitBreakerState.CLOSED
        assert state_machine.failure_count == 0
        assert state_machine.success_count == 0
        assert state_machine.last_failure_time is None

    def test_rejects_zero_threshold(self) -> None:
        with pytest.raises(GatewayValidationError) as exc_info:
            CircuitBreakerStateMachine(name="x", failure_threshold=0)
        assert exc_info.value.field == "failure_threshold"

    def test_rejects_non_positive_reset_timeout(self) -> None:
        with pytest.raises(GatewayValidationError):
            CircuitBreakerStateMachine(name="x", reset_timeout_seconds=0)

    def test_from_settings_uses_configured_values(self, test_settings) -> None:
        breaker = CircuitBreakerStateMachine.from_settings("claude", test_settings)

        assert breaker.name == "claude"
        assert breaker.failure_threshold == 3
        assert breaker.reset_timeout_seconds == 30.0


# =============================================================================
# CLOSED State
# =============================================================================


class TestClosedState:
    """Tests for behavior while CLOSED."""

    @pytest.mark.asyncio
    async def test_record_failure_increments_count(self, state_machine) -> None:
        await state_machine.record_failure()
        assert state_machine.failure_count == 1
        assert state_machine.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_record_success_resets_count(self, state_machine) -> None:
        await state_machine.record_failure()
        await state_machine.record_failure()
        await state_machine.record_success()
        assert state_machine.failure_count == 0

    @pytest.mark.asyncio
    async def test_stays_closed_below_threshold(self, state_machine) -> None:
        for _ in range(state_machine.failure_threshold - 1):
            await state_machine.record_failure()
        assert state_machine.state == CircuitBreakerState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_at_threshold(self, state_machine, fake_clock) -> None:
        await _trip(state_machine)

        assert state_machine.state == CircuitBreakerState.OPEN
        assert state_machine.last_failure_time == fake_clock.now


# =============================================================================
# OPEN State
# =============================================================================


class TestOpenState:
    """Tests for fail-fast behavior while OPEN."""

    @pytest.mark.asyncio
    async def test_execute_never_invokes_backend_while_open(self, state_machine) -> None:
        """After threshold failures the next call within the timeout is rejected unseen."""
        backend = _Backend()
        backend.fail = True
        for _ in range(state_machine.failure_threshold):
            with pytest.raises(RuntimeError):
                await state_machine.execute(backend)
        assert backend.calls == 3

        with pytest.raises(CircuitOpenError) as exc_info:
            await state_machine.execute(backend)

        assert backend.calls == 3
        assert exc_info.value.circuit_name == "test-backend"
        assert "CircuitOpenError[test-backend]" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_still_open_exactly_at_reset_timeout(
        self, state_machine, fake_clock
    ) -> None:
        await _trip(state_machine)
        fake_clock.advance(30.0)

        with pytest.raises(CircuitOpenError):
            await state_machine.acquire()
        assert state_machine.state == CircuitBreakerState.OPEN

    @pytest.mark.asyncio
    async def test_half_open_after_reset_timeout(self, state_machine, fake_clock) -> None:
        await _trip(state_machine)
        fake_clock.advance(30.01)

        assert await state_machine.acquire() == CircuitBreakerState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_next_call_admitted_after_timeout(self, state_machine, fake_clock) -> None:
        backend = _Backend()
        await _trip(state_machine)
        fake_clock.advance(31)

        assert await state_machine.execute(backend, "trial") == "trial"
        assert backend.calls == 1
        assert state_machine.state == CircuitBreakerState.HALF_OPEN
        assert state_machine.success_count == 1


# =============================================================================
# HALF_OPEN State
# =============================================================================


class TestHalfOpenState:
    """Tests for conservative recovery."""

    @pytest_asyncio.fixture
    async def half_open(self, state_machine, fake_clock):
        await _trip(state_machine)
        fake_clock.advance(31)
        await state_machine.get_state()
        return state_machine

    @pytest.mark.asyncio
    async def test_single_failure_reopens(self, half_open, fake_clock) -> None:
        await half_open.record_success()
        await half_open.record_failure()

        assert half_open.state == CircuitBreakerState.OPEN
        assert half_open.success_count == 0
        assert half_open.last_failure_time == fake_clock.now

    @pytest.mark.asyncio
    async def test_threshold_successes_close(self, half_open) -> None:
        for _ in range(half_open.failure_threshold - 1):
            await half_open.record_success()
            assert half_open.state == CircuitBreakerState.HALF_OPEN

        await half_open.record_success()

        assert half_open.state == CircuitBreakerState.CLOSED
        assert half_open.failure_count == 0
        assert half_open.success_count == 0

    @pytest.mark.asyncio
    async def test_reopened_circuit_waits_full_timeout_again(
        self, half_open, fake_clock
    ) -> None:
        await half_open.record_failure()
        fake_clock.advance(10)

        with pytest.raises(CircuitOpenError):
            await half_open.acquire()


# =============================================================================
# Reset, Events, Concurrency
# =============================================================================


class TestCircuitBreakerReset:
    @pytest.mark.asyncio
    async def test_reset_closes_open_circuit(self, state_machine) -> None:
        await _trip(state_machine)
        await state_machine.reset()

        assert state_machine.state == CircuitBreakerState.CLOSED
        assert state_machine.failure_count == 0
        assert state_machine.last_failure_time is None


class TestCircuitBreakerEvents:
    @pytest.mark.asyncio
    async def test_transitions_are_reported(
        self, state_machine, fake_clock, recording_sink
    ) -> None:
        await _trip(state_machine)
        fake_clock.advance(31)
        await state_machine.get_state()

        transitions = recording_sink.of(GatewayEvent.CIRCUIT_STATE_TRANSITION)
        assert [(t["from_state"], t["to_state"]) for t in transitions] == [
            ("closed", "open"),
            ("open", "half_open"),
        ]
        assert transitions[0]["backend"] == "test-backend"

    @pytest.mark.asyncio
    async def test_transition_updates_prometheus(self, state_machine) -> None:
        from genai_gateway.resilience.metrics import CIRCUIT_STATE_GAUGE

        await _trip(state_machine)

        gauge = CIRCUIT_STATE_GAUGE.labels(circuit_name="test-backend")
        assert gauge._value.get() == 2


class TestCircuitBreakerConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_failures_counted_exactly(self, fake_clock) -> None:
        breaker = CircuitBreakerStateMachine(
            name="concurrent", failure_threshold=50, clock=fake_clock
        )

        await asyncio.gather(*(breaker.record_failure() for _ in range(49)))

        assert breaker.failure_count == 49
        assert breaker.state == CircuitBreakerState.CLOSED


# =============================================================================
# Background Monitor
# =============================================================================


class TestCircuitBreakerMonitor:
    @pytest.mark.asyncio
    async def test_monitor_moves_idle_circuit_to_half_open(
        self, state_machine, fake_clock
    ) -> None:
        await _trip(state_machine)
        fake_clock.advance(31)

        state_machine.start_monitoring(0.01)
        try:
            for _ in range(100):
                if state_machine.state == CircuitBreakerState.HALF_OPEN:
                    break
                await asyncio.sleep(0.01)
        finally:
            await state_machine.stop_monitoring()

        assert state_machine.state == CircuitBreakerState.HALF_OPEN
        assert not state_machine.is_monitoring

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, state_machine) -> None:
        await state_machine.stop_monitoring()
        assert not state_machine.is_monitoring


# =============================================================================
# Registry
# =============================================================================


class TestCircuitBreakerRegistry:
    def test_get_creates_one_breaker_per_backend(self, fake_clock) -> None:
        registry = CircuitBreakerRegistry(failure_threshold=2, clock=fake_clock)

        claude = registry.get("claude")

        assert registry.get("claude") is claude
        assert registry.get("titan") is not claude
        assert claude.failure_threshold == 2
        assert "claude" in registry

    @pytest.mark.asyncio
    async def test_states_snapshot(self, fake_clock) -> None:
        registry = CircuitBreakerRegistry(failure_threshold=1, clock=fake_clock)
        await registry.get("claude").record_failure()
        registry.get("titan")

        assert registry.states() == {"claude": "open", "titan": "closed"}

    def test_invalid_config_rejected_up_front(self) -> None:
        with pytest.raises(GatewayValidationError):
            CircuitBreakerRegistry(failure_threshold=0)

    @pytest.mark.asyncio
    async def test_monitoring_applies_to_new_breakers(self, fake_clock) -> None:
        registry = CircuitBreakerRegistry(clock=fake_clock)
        registry.start_monitoring(60)

        breaker = registry.get("late")
        assert breaker.is_monitoring

        await registry.stop_monitoring()
        assert not breaker.is_monitoring
