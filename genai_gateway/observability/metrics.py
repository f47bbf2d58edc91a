"""
Prometheus Metrics Module

Gateway-level metrics: cache hit ratio, token usage, request cost,
cost-limit rejections and ledger spend.

Circuit breaker and fallback metrics live in genai_gateway.resilience.metrics.

Reference Documents:
- GUIDELINES pp. 2309-2319: "Prometheus for metrics collection and structured logging"
- GUIDELINES: "cache hit ratio metric and token usage tracking serve as
  domain-specific implementations"
"""

from prometheus_client import REGISTRY, Counter, Gauge, Histogram, generate_latest


# Cache operations counter (hit ratio)
CACHE_OPERATIONS_TOTAL = Counter(
    name="genai_gateway_cache_operations_total",
    documentation="Total cache operations by result (hit/miss)",
    labelnames=["result"],
)

TOKEN_USAGE_TOTAL = Counter(
    name="genai_gateway_tokens_total",
    documentation="Total number of tokens used",
    labelnames=["backend", "type"],
)

REQUEST_COST_DOLLARS = Histogram(
    name="genai_gateway_request_cost_dollars",
    documentation="Committed request cost in dollars",
    labelnames=["backend", "operation"],
    buckets=(0.0001, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0, 5.0),
)

COST_LIMIT_REJECTIONS_TOTAL = Counter(
    name="genai_gateway_cost_limit_rejections_total",
    documentation="Requests rejected before any backend call by the cost ledger",
    labelnames=["period"],
)

COST_WARNINGS_TOTAL = Counter(
    name="genai_gateway_cost_warnings_total",
    documentation="Cost warning thresholds crossed",
    labelnames=["period"],
)

LEDGER_SPEND_DOLLARS = Gauge(
    name="genai_gateway_ledger_spend_dollars",
    documentation="Current committed spend for the active period",
    labelnames=["period"],
)

AGGREGATE_FAILURES_TOTAL = Counter(
    name="genai_gateway_aggregate_failures_total",
    documentation="Requests whose whole fallback chain was exhausted",
)

CONTENT_POLICY_VIOLATIONS_TOTAL = Counter(
    name="genai_gateway_content_policy_violations_total",
    documentation="Generations rejected by moderation",
)


# =============================================================================
# Helper Functions
# =============================================================================


def record_cache_operation(result: str) -> None:
    """
    Record a cache operation.

    Args:
        result: "hit" or "miss"
    """
    CACHE_OPERATIONS_TOTAL.labels(result=result).inc()


def record_token_usage(backend: str, token_type: str, count: int) -> None:
    """
    Record token usage for a backend call.

    Args:
        backend: Backend identifier
        token_type: "input" or "output"
        count: Number of tokens
    """
    if count > 0:
        TOKEN_USAGE_TOTAL.labels(backend=backend, type=token_type).inc(count)


def record_request_cost(backend: str, operation: str, cost: float) -> None:
    """Record the committed cost of a request."""
    REQUEST_COST_DOLLARS.labels(backend=backend, operation=operation).observe(cost)


def record_cost_limit_rejection(period: str) -> None:
    """Record a request rejected by the cost ledger."""
    COST_LIMIT_REJECTIONS_TOTAL.labels(period=period).inc()


def record_cost_warning(period: str) -> None:
    """Record a crossed cost warning threshold."""
    COST_WARNINGS_TOTAL.labels(period=period).inc()


def set_ledger_spend(daily: float, monthly: float) -> None:
    """Publish current ledger spend."""
    LEDGER_SPEND_DOLLARS.labels(period="daily").set(daily)
    LEDGER_SPEND_DOLLARS.labels(period="monthly").set(monthly)


def record_aggregate_failure() -> None:
    """Record an exhausted fallback chain."""
    AGGREGATE_FAILURES_TOTAL.inc()


def record_content_policy_violation() -> None:
    """Record a generation rejected by moderation."""
    CONTENT_POLICY_VIOLATIONS_TOTAL.inc()


def generate_metrics() -> str:
    """
    Generate Prometheus metrics text format.

    Returns:
        Prometheus exposition format text
    """
    return generate_latest(REGISTRY).decode("utf-8")
