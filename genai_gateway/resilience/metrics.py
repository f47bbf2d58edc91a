"""
Resilience Metrics

This module provides Prometheus metrics for circuit breaker and fallback
router resilience patterns.

Reference Documents:
- GUIDELINES pp. 2309-2319: Prometheus for metrics collection

Metrics Provided:
- Circuit breaker state transitions (counter) and current state (gauge)
- Fallback attempts per backend (counter)
- Fallback successes per backend (counter)
- Retry attempts per backend (counter)
"""

from prometheus_client import Counter, Gauge

# =============================================================================
# Constants
# =============================================================================

METRIC_CIRCUIT_TRANSITIONS = "genai_gateway_circuit_breaker_state_transitions_total"
METRIC_CIRCUIT_STATE = "genai_gateway_circuit_breaker_state"
METRIC_FALLBACK_ATTEMPTS = "genai_gateway_fallback_attempts_total"
METRIC_FALLBACK_SUCCESSES = "genai_gateway_fallback_successes_total"
METRIC_RETRY_ATTEMPTS = "genai_gateway_retry_attempts_total"


# =============================================================================
# Circuit Breaker State Transition Metrics
# =============================================================================

CIRCUIT_STATE_TRANSITIONS = Counter(
    name=METRIC_CIRCUIT_TRANSITIONS,
    documentation="Total number of circuit breaker state transitions",
    labelnames=["circuit_name", "to_state", "from_state"],
)

CIRCUIT_STATE_GAUGE = Gauge(
    name=METRIC_CIRCUIT_STATE,
    documentation="Current state of circuit breaker (0=closed, 1=half_open, 2=open)",
    labelnames=["circuit_name"],
)

_STATE_TO_NUMERIC = {
    "closed": 0,
    "half_open": 1,
    "open": 2,
}


def record_circuit_state_transition(
    circuit_name: str,
    to_state: str,
    from_state: str,
) -> None:
    """
    Record a circuit breaker state transition.

    Args:
        circuit_name: Name of the circuit breaker
        to_state: State transitioning to (closed, open, half_open)
        from_state: State transitioning from (closed, open, half_open)
    """
    CIRCUIT_STATE_TRANSITIONS.labels(
        circuit_name=circuit_name,
        to_state=to_state,
        from_state=from_state,
    ).inc()

    CIRCUIT_STATE_GAUGE.labels(circuit_name=circuit_name).set(
        _STATE_TO_NUMERIC.get(to_state, 0)
    )


# =============================================================================
# Fallback Router Metrics
# =============================================================================

FALLBACK_ATTEMPTS = Counter(
    name=METRIC_FALLBACK_ATTEMPTS,
    documentation="Total number of fallback chain backend attempts",
    labelnames=["backend_name", "operation"],
)

FALLBACK_SUCCESSES = Counter(
    name=METRIC_FALLBACK_SUCCESSES,
    documentation="Total number of successful fallback chain backend calls",
    labelnames=["backend_name"],
)

RETRY_ATTEMPTS = Counter(
    name=METRIC_RETRY_ATTEMPTS,
    documentation="Failed backend calls by retry decision",
    labelnames=["backend_name", "decision"],
)


def record_fallback_attempt(backend_name: str, operation: str) -> None:
    """
    Record a fallback chain backend attempt.

    Args:
        backend_name: Name of the backend being attempted
        operation: Operation being performed (text_generation, embedding, ...)
    """
    FALLBACK_ATTEMPTS.labels(backend_name=backend_name, operation=operation).inc()


def record_fallback_success(backend_name: str) -> None:
    """Record a successful fallback chain backend call."""
    FALLBACK_SUCCESSES.labels(backend_name=backend_name).inc()


def record_retry_attempt(backend_name: str, decision: str) -> None:
    """
    Record a failed call and what the retry policy decided.

    Args:
        backend_name: Backend that failed
        decision: "retry", "fatal" or "exhausted"
    """
    RETRY_ATTEMPTS.labels(backend_name=backend_name, decision=decision).inc()
