"""
OpenTelemetry Tracing Module

This module provides tracing for gateway requests. The fallback router opens
one span per request and one child span per backend attempt, so a slow or
failing chain can be read straight off a trace.

Pattern: Distributed tracing for observability
"""

from contextlib import contextmanager
from typing import Any, Generator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import SERVICE_NAME, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter
from opentelemetry.trace import Span, Status, StatusCode, Tracer

_tracer_provider: Optional[TracerProvider] = None

TRACER_NAME = "genai_gateway"
DEPLOYMENT_ENVIRONMENT = "deployment.environment"


def setup_tracing(
    service_name: str = "genai-gateway",
    otlp_endpoint: Optional[str] = None,
    environment: Optional[str] = None,
    force: bool = False,
) -> TracerProvider:
    """
    Configure the global OpenTelemetry TracerProvider.

    Calling it again returns the provider from the first call unless force
    is set; OpenTelemetry only accepts one global provider per process.

    Args:
        service_name: Name of the service for resource identification
        otlp_endpoint: Optional OTLP collector endpoint (http://localhost:4317).
            Requires the "otlp" extra.
        environment: Deployment environment, recorded as a resource attribute
        force: Build a new provider even if one was already set up

    Returns:
        Configured TracerProvider
    """
    global _tracer_provider

    if _tracer_provider is not None and not force:
        return _tracer_provider

    attributes: dict[str, Any] = {SERVICE_NAME: service_name}
    if environment:
        attributes[DEPLOYMENT_ENVIRONMENT] = environment
    resource = Resource.create(attributes)
    provider = TracerProvider(resource=resource)

    if otlp_endpoint:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        exporter = OTLPSpanExporter(endpoint=otlp_endpoint)
    else:
        exporter = ConsoleSpanExporter()

    provider.add_span_processor(BatchSpanProcessor(exporter))

    trace.set_tracer_provider(provider)
    _tracer_provider = provider

    return provider


def get_tracer(name: str = TRACER_NAME) -> Tracer:
    """Get a named tracer instance."""
    return trace.get_tracer(name)


def get_current_trace_id() -> Optional[str]:
    """
    Get the current trace ID as hex string.

    Returns:
        32-character hex string or None if no active span
    """
    span_context = trace.get_current_span().get_span_context()

    if span_context.trace_id == 0:
        return None

    return format(span_context.trace_id, "032x")


@contextmanager
def create_span(
    name: str,
    attributes: Optional[dict[str, Any]] = None,
) -> Generator[Span, None, None]:
    """
    Context manager for creating a span.

    Attributes with None values are skipped since OpenTelemetry rejects them.

    Args:
        name: Span name
        attributes: Optional span attributes

    Yields:
        Active span
    """
    tracer = get_tracer()
    with tracer.start_as_current_span(name) as span:
        for key, value in (attributes or {}).items():
            if value is not None:
                span.set_attribute(key, value)
        yield span


def mark_span_error(span: Span, message: str) -> None:
    """Set ERROR status on a span with a description."""
    span.set_status(Status(StatusCode.ERROR, message))


def mark_span_ok(span: Span) -> None:
    """Set OK status on a span."""
    span.set_status(Status(StatusCode.OK))
