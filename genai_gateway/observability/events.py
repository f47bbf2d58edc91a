"""
Observability Events

The resilience components report what happens to them as structured events
to an injected EventSink. The default sink writes them as structlog events;
RecordingEventSink keeps them in memory for tests and diagnostics.

Pattern: Ports and Adapters - EventSink is the port, sinks are adapters
"""

from enum import Enum
from typing import Any, Protocol, runtime_checkable

from genai_gateway.observability.logging import get_logger


class GatewayEvent(str, Enum):
    """Events the gateway reports to its observability collaborator."""

    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    CIRCUIT_STATE_TRANSITION = "circuit_state_transition"
    COST_WARNING_CROSSED = "cost_warning_crossed"
    COST_LIMIT_REJECTED = "cost_limit_rejected"
    BACKEND_ATTEMPT_FAILURE = "backend_attempt_failure"
    BACKEND_ATTEMPT_SUCCESS = "backend_attempt_success"
    AGGREGATE_FAILURE = "aggregate_failure"
    CONTENT_POLICY_VIOLATION = "content_policy_violation"


_EVENT_LEVELS: dict[GatewayEvent, str] = {
    GatewayEvent.CACHE_HIT: "debug",
    GatewayEvent.CACHE_MISS: "debug",
    GatewayEvent.CIRCUIT_STATE_TRANSITION: "warning",
    GatewayEvent.COST_WARNING_CROSSED: "warning",
    GatewayEvent.COST_LIMIT_REJECTED: "warning",
    GatewayEvent.BACKEND_ATTEMPT_FAILURE: "warning",
    GatewayEvent.BACKEND_ATTEMPT_SUCCESS: "info",
    GatewayEvent.AGGREGATE_FAILURE: "error",
    GatewayEvent.CONTENT_POLICY_VIOLATION: "warning",
}


@runtime_checkable
class EventSink(Protocol):
    """Receives structured gateway events."""

    def emit(self, event: GatewayEvent, **fields: Any) -> None:
        """Report one event with its structured fields."""
        ...


class LoggingEventSink:
    """Writes events as structured log lines."""

    def __init__(self, logger_name: str = "genai_gateway.events") -> None:
        self._logger = get_logger(logger_name)

    def emit(self, event: GatewayEvent, **fields: Any) -> None:
        level = _EVENT_LEVELS.get(event, "info")
        getattr(self._logger, level)(event.value, **fields)


class RecordingEventSink:
    """
    Keeps events in memory.

    Example:
        >>> sink = RecordingEventSink()
        >>> sink.emit(GatewayEvent.CACHE_HIT, fingerprint="ab12")
        >>> sink.count(GatewayEvent.CACHE_HIT)
        1
    """

    def __init__(self) -> None:
        self.events: list[tuple[GatewayEvent, dict[str, Any]]] = []

    def emit(self, event: GatewayEvent, **fields: Any) -> None:
        self.events.append((event, fields))

    def of(self, event: GatewayEvent) -> list[dict[str, Any]]:
        """Fields of every recorded event of one kind, in order."""
        return [fields for kind, fields in self.events if kind == event]

    def count(self, event: GatewayEvent) -> int:
        return len(self.of(event))

    def clear(self) -> None:
        self.events.clear()


class FanOutEventSink:
    """Forwards every event to several sinks."""

    def __init__(self, *sinks: EventSink) -> None:
        self._sinks = list(sinks)

    def emit(self, event: GatewayEvent, **fields: Any) -> None:
        for sink in self._sinks:
            sink.emit(event, **fields)
