"""
Resilience patterns for the GenAI Gateway.

This module provides resilience patterns including:
- CircuitBreakerStateMachine: State machine for circuit breaker pattern
- CircuitBreakerRegistry: One lazily created breaker per backend
- RetryPolicy: Capped exponential backoff with jitter
- FallbackRouter: Ordered backend fallback with circuit breakers
- Prometheus metrics for state transitions

Reference Documents:
- Building Reactive Microservices in Java (Escoffier): Circuit breaker pattern
- Release It! (Nygard): Stability patterns
"""

from genai_gateway.resilience.circuit_breaker_state_machine import (
    CircuitBreakerRegistry,
    CircuitBreakerState,
    CircuitBreakerStateMachine,
)
from genai_gateway.resilience.fallback_router import FallbackRouter
from genai_gateway.resilience.metrics import (
    record_circuit_state_transition,
    record_fallback_attempt,
    record_fallback_success,
    record_retry_attempt,
)
from genai_gateway.resilience.retry import RetryOutcome, RetryPolicy, classify_error

__all__ = [
    # Circuit Breaker
    "CircuitBreakerStateMachine",
    "CircuitBreakerState",
    "CircuitBreakerRegistry",
    # Retry
    "RetryPolicy",
    "RetryOutcome",
    "classify_error",
    # Fallback Router
    "FallbackRouter",
    # Metrics
    "record_circuit_state_transition",
    "record_fallback_attempt",
    "record_fallback_success",
    "record_retry_attempt",
]
