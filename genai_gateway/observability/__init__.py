"""
Observability Package

This package provides observability infrastructure including:
- Structured JSON logging with correlation ids (structlog)
- Prometheus metrics
- OpenTelemetry tracing
- The gateway event sink (observability collaborator)
"""

from genai_gateway.observability.events import (
    EventSink,
    FanOutEventSink,
    GatewayEvent,
    LoggingEventSink,
    RecordingEventSink,
)
from genai_gateway.observability.logging import (
    clear_correlation_id,
    configure_logging,
    correlation_id_context,
    get_correlation_id,
    get_logger,
    set_correlation_id,
)
from genai_gateway.observability.metrics import (
    generate_metrics,
    record_cache_operation,
    record_request_cost,
    record_token_usage,
)
from genai_gateway.observability.tracing import (
    create_span,
    get_current_trace_id,
    get_tracer,
    setup_tracing,
)

__all__ = [
    # Events
    "EventSink",
    "GatewayEvent",
    "LoggingEventSink",
    "RecordingEventSink",
    "FanOutEventSink",
    # Logging
    "configure_logging",
    "get_logger",
    "set_correlation_id",
    "get_correlation_id",
    "clear_correlation_id",
    "correlation_id_context",
    # Metrics
    "generate_metrics",
    "record_token_usage",
    "record_cache_operation",
    "record_request_cost",
    # Tracing
    "setup_tracing",
    "get_tracer",
    "get_current_trace_id",
    "create_span",
]
