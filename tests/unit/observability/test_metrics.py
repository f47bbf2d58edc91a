"""
Tests for Prometheus Metrics

Metrics live in the global registry, so every assertion compares the
sample value before and after the action under test.
"""

from typing import Optional

from prometheus_client import REGISTRY

from genai_gateway.observability.metrics import (
    generate_metrics,
    record_aggregate_failure,
    record_cache_operation,
    record_content_policy_violation,
    record_cost_limit_rejection,
    record_cost_warning,
    record_request_cost,
    record_token_usage,
    set_ledger_spend,
)
from genai_gateway.resilience.metrics import (
    record_circuit_state_transition,
    record_fallback_attempt,
    record_fallback_success,
    record_retry_attempt,
)


def _sample(name: str, labels: Optional[dict[str, str]] = None) -> float:
    return REGISTRY.get_sample_value(name, labels or {}) or 0.0


class TestGatewayMetrics:
    def test_cache_operation_counter(self) -> None:
        before = _sample("genai_gateway_cache_operations_total", {"result": "hit"})
        record_cache_operation("hit")
        after = _sample("genai_gateway_cache_operations_total", {"result": "hit"})
        assert after == before + 1

    def test_token_usage_skips_zero_counts(self) -> None:
        labels = {"backend": "metrics-test", "type": "input"}
        before = _sample("genai_gateway_tokens_total", labels)

        record_token_usage("metrics-test", "input", 0)
        record_token_usage("metrics-test", "input", 120)

        assert _sample("genai_gateway_tokens_total", labels) == before + 120

    def test_request_cost_histogram(self) -> None:
        labels = {"backend": "metrics-test", "operation": "summarization"}
        before = _sample("genai_gateway_request_cost_dollars_count", labels)

        record_request_cost("metrics-test", "summarization", 0.004)

        assert _sample("genai_gateway_request_cost_dollars_count", labels) == before + 1

    def test_cost_counters(self) -> None:
        rejections = _sample("genai_gateway_cost_limit_rejections_total", {"period": "monthly"})
        warnings = _sample("genai_gateway_cost_warnings_total", {"period": "monthly"})

        record_cost_limit_rejection("monthly")
        record_cost_warning("monthly")

        assert _sample(
            "genai_gateway_cost_limit_rejections_total", {"period": "monthly"}
        ) == rejections + 1
        assert _sample("genai_gateway_cost_warnings_total", {"period": "monthly"}) == warnings + 1

    def test_ledger_spend_gauge(self) -> None:
        set_ledger_spend(1.5, 42.0)

        assert _sample("genai_gateway_ledger_spend_dollars", {"period": "daily"}) == 1.5
        assert _sample("genai_gateway_ledger_spend_dollars", {"period": "monthly"}) == 42.0

    def test_failure_counters(self) -> None:
        aggregate = _sample("genai_gateway_aggregate_failures_total")
        violations = _sample("genai_gateway_content_policy_violations_total")

        record_aggregate_failure()
        record_content_policy_violation()

        assert _sample("genai_gateway_aggregate_failures_total") == aggregate + 1
        assert _sample("genai_gateway_content_policy_violations_total") == violations + 1

    def test_generate_metrics_exposition(self) -> None:
        record_cache_operation("miss")

        text = generate_metrics()

        assert "genai_gateway_cache_operations_total" in text
        assert "genai_gateway_circuit_breaker_state" in text


class TestResilienceMetrics:
    def test_state_transition_updates_counter_and_gauge(self) -> None:
        labels = {"circuit_name": "metrics-cb", "to_state": "half_open", "from_state": "open"}
        before = _sample("genai_gateway_circuit_breaker_state_transitions_total", labels)

        record_circuit_state_transition("metrics-cb", "half_open", "open")

        assert _sample(
            "genai_gateway_circuit_breaker_state_transitions_total", labels
        ) == before + 1
        assert _sample(
            "genai_gateway_circuit_breaker_state", {"circuit_name": "metrics-cb"}
        ) == 1

    def test_fallback_and_retry_counters(self) -> None:
        attempt = {"backend_name": "metrics-be", "operation": "embedding"}
        success = {"backend_name": "metrics-be"}
        retry = {"backend_name": "metrics-be", "decision": "exhausted"}
        before = (
            _sample("genai_gateway_fallback_attempts_total", attempt),
            _sample("genai_gateway_fallback_successes_total", success),
            _sample("genai_gateway_retry_attempts_total", retry),
        )

        record_fallback_attempt("metrics-be", "embedding")
        record_fallback_success("metrics-be")
        record_retry_attempt("metrics-be", "exhausted")

        after = (
            _sample("genai_gateway_fallback_attempts_total", attempt),
            _sample("genai_gateway_fallback_successes_total", success),
            _sample("genai_gateway_retry_attempts_total", retry),
        )
        assert after == tuple(value + 1 for value in before)
