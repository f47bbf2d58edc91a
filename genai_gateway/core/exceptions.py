"""
Custom exceptions for the GenAI Gateway.

This module provides the error taxonomy of the resilience and governance
layer. All exceptions inherit from GatewayError and carry an error code for
consistent handling and logging.

Callers of the gateway only ever see a GenerationResult or one of the
policy-level failures:
- CostLimitExceededError: spend limit would be crossed, no backend contacted
- ContentPolicyViolationError: generation succeeded but was rejected
- AggregateModelFailureError: every backend in the fallback chain failed
- ModerationUnavailableError: the moderator failed, so output is withheld
- LedgerUnavailableError: the ledger store failed, so spend cannot be trusted

CircuitOpenError and BackendError are internal: the router recovers from them
by moving on to the next backend, and they only surface folded into an
AggregateModelFailureError.

Reference:
- Release It! (Nygard): Stability patterns, fail fast
- GUIDELINES: Specific exceptions, always capture with 'as e'
"""

from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any, Optional, Sequence

if TYPE_CHECKING:
    from genai_gateway.models.domain import AttemptRecord


# =============================================================================
# Error Codes Enum
# =============================================================================


class ErrorCode(str, Enum):
    """
    Error codes for gateway exceptions.

    These codes provide a consistent way to identify error types
    in logs and in any outer API layer.
    """

    GATEWAY_ERROR = "GATEWAY_ERROR"
    BACKEND_ERROR = "BACKEND_ERROR"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    COST_LIMIT_EXCEEDED = "COST_LIMIT_EXCEEDED"
    CONTENT_POLICY_VIOLATION = "CONTENT_POLICY_VIOLATION"
    AGGREGATE_MODEL_FAILURE = "AGGREGATE_MODEL_FAILURE"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TIMEOUT = "TIMEOUT"
    MODERATION_UNAVAILABLE = "MODERATION_UNAVAILABLE"
    LEDGER_UNAVAILABLE = "LEDGER_UNAVAILABLE"


class StatusKind(str, Enum):
    """
    Classification of a backend failure.

    The first four kinds are transient and worth retrying; the rest
    indicate a problem with the request itself or its credentials.
    """

    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    SERVER_ERROR = "server_error"
    UNAVAILABLE = "unavailable"
    VALIDATION = "validation"
    AUTHENTICATION = "authentication"
    AUTHORIZATION = "authorization"
    UNKNOWN = "unknown"


RETRYABLE_STATUS_KINDS = frozenset(
    {
        StatusKind.TIMEOUT,
        StatusKind.RATE_LIMITED,
        StatusKind.SERVER_ERROR,
        StatusKind.UNAVAILABLE,
    }
)


# =============================================================================
# Base Exception
# =============================================================================


class GatewayError(Exception):
    """
    Base exception for all gateway errors.

    Attributes:
        message: Human-readable error message.
        error_code: Machine-readable error code from ErrorCode enum.
    """

    def __init__(
        self,
        message: str,
        error_code: str = ErrorCode.GATEWAY_ERROR,
        **kwargs: Any,
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Human-readable error message.
            error_code: Machine-readable error code.
            **kwargs: Additional attributes to set on the exception.
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code

        for key, value in kwargs.items():
            setattr(self, key, value)


# =============================================================================
# Backend Errors (internal, recovered by the router)
# =============================================================================


class BackendError(GatewayError):
    """
    Classified failure reported by a backend adapter.

    Adapters raise this (or a subclass) so the retry policy can decide
    whether another attempt is worthwhile.

    Attributes:
        backend: Backend identifier (e.g., "claude-3-sonnet").
        status_kind: Failure classification.
        retryable: Whether the failure is transient.
        status_code: Underlying HTTP-like status code, if any.
    """

    def __init__(
        self,
        message: str,
        backend: str,
        status_kind: StatusKind = StatusKind.UNKNOWN,
        retryable: Optional[bool] = None,
        status_code: Optional[int] = None,
        error_code: str = ErrorCode.BACKEND_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.backend = backend
        self.status_kind = StatusKind(status_kind)
        self.retryable = (
            retryable
            if retryable is not None
            else self.status_kind in RETRYABLE_STATUS_KINDS
        )
        self.status_code = status_code


class RetryableBackendError(BackendError):
    """Transient backend failure (timeout, throttling, 5xx)."""

    def __init__(
        self,
        message: str,
        backend: str,
        status_kind: StatusKind = StatusKind.SERVER_ERROR,
        status_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            backend,
            status_kind=status_kind,
            retryable=True,
            status_code=status_code,
            **kwargs,
        )


class FatalBackendError(BackendError):
    """Non-retryable backend failure (bad request, auth)."""

    def __init__(
        self,
        message: str,
        backend: str,
        status_kind: StatusKind = StatusKind.VALIDATION,
        status_code: Optional[int] = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(
            message,
            backend,
            status_kind=status_kind,
            retryable=False,
            status_code=status_code,
            **kwargs,
        )


class CircuitOpenError(GatewayError):
    """
    Raised when a backend's circuit breaker is open.

    This indicates that the backend is considered unhealthy and
    requests should fail fast rather than waiting for timeout.

    Attributes:
        circuit_name: Name of the circuit breaker that is open.
    """

    def __init__(self, circuit_name: str, message: str = "Circuit is open") -> None:
        super().__init__(
            f"CircuitOpenError[{circuit_name}]: {message}",
            ErrorCode.CIRCUIT_OPEN,
        )
        self.circuit_name = circuit_name


# =============================================================================
# Policy-level Errors (surfaced to callers)
# =============================================================================


class CostLimitExceededError(GatewayError):
    """
    Raised when a request would push spend past a configured limit.

    No backend is contacted when this is raised.

    Attributes:
        period: "daily" or "monthly".
        limit: The configured limit for that period.
        current: Spend already committed (plus pending reservations).
        estimated: Estimated cost of the rejected request.
    """

    def __init__(
        self,
        period: str,
        limit: Decimal,
        current: Decimal,
        estimated: Decimal,
    ) -> None:
        super().__init__(
            f"{period.capitalize()} cost limit exceeded: "
            f"{current} + {estimated} > {limit}",
            ErrorCode.COST_LIMIT_EXCEEDED,
        )
        self.period = period
        self.limit = limit
        self.current = current
        self.estimated = estimated


class ContentPolicyViolationError(GatewayError):
    """
    Raised when generated content is flagged by moderation.

    The generation happened and its cost has been committed; it is not
    refunded and no further backend is tried.

    Attributes:
        categories: Moderation categories that were flagged.
        confidence: Moderation confidence (0..1).
        backend: Backend that produced the rejected content.
        cost: Cost already committed for the generation.
    """

    def __init__(
        self,
        categories: Sequence[str],
        confidence: float,
        backend: Optional[str] = None,
        cost: Decimal = Decimal("0"),
    ) -> None:
        super().__init__(
            "Generated content violates content policy "
            f"(categories={list(categories)}, confidence={confidence:.2f})",
            ErrorCode.CONTENT_POLICY_VIOLATION,
        )
        self.categories = list(categories)
        self.confidence = confidence
        self.backend = backend
        self.cost = cost


class AggregateModelFailureError(GatewayError):
    """
    Raised when every backend in the fallback chain has failed.

    Attributes:
        attempts: Ordered per-backend attempt records.
    """

    def __init__(
        self,
        attempts: Sequence["AttemptRecord"],
        message: str = "All backends in the fallback chain failed",
    ) -> None:
        super().__init__(message, ErrorCode.AGGREGATE_MODEL_FAILURE)
        self.attempts = list(attempts)

    @property
    def backend_errors(self) -> dict[str, str]:
        """Backend id to error message, in chain order."""
        return {a.backend: a.error or a.outcome.value for a in self.attempts}


class GatewayValidationError(GatewayError):
    """
    Raised for invalid configuration or malformed requests.

    Note: Named GatewayValidationError to avoid conflict with
    pydantic.ValidationError.

    Attributes:
        field: Name of the field that failed validation.
        value: The invalid value (if safe to include).
    """

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Any = None,
        error_code: str = ErrorCode.VALIDATION_ERROR,
        **kwargs: Any,
    ) -> None:
        super().__init__(message, error_code, **kwargs)
        self.field = field
        self.value = value


class GatewayTimeoutError(GatewayError):
    """
    Raised when a caller-supplied timeout elapses at the facade.

    The underlying generation keeps running so that cost and circuit
    accounting stay correct; only its result is discarded.
    """

    def __init__(self, timeout_seconds: float) -> None:
        super().__init__(
            f"Generation did not complete within {timeout_seconds}s",
            ErrorCode.TIMEOUT,
        )
        self.timeout_seconds = timeout_seconds


# =============================================================================
# Collaborator Errors (surfaced to callers)
# =============================================================================


class ModerationUnavailableError(GatewayError):
    """
    Raised when the moderator itself fails.

    Moderation fails closed: the generated output is withheld, its cost
    stays committed and nothing is cached.

    Attributes:
        backend: Backend that produced the unchecked content.
        cost: Cost already committed for the generation.
    """

    def __init__(
        self,
        reason: str,
        backend: Optional[str] = None,
        cost: Decimal = Decimal("0"),
    ) -> None:
        super().__init__(
            f"Moderation unavailable, output withheld: {reason}",
            ErrorCode.MODERATION_UNAVAILABLE,
        )
        self.backend = backend
        self.cost = cost


class LedgerUnavailableError(GatewayError):
    """
    Raised when the cost ledger's store cannot be read or written.

    Before a backend is contacted this rejects the request. After a
    success it means the spend could not be persisted; the reservation
    is released either way.

    Attributes:
        operation: "load" or "save".
    """

    def __init__(self, operation: str, reason: str) -> None:
        super().__init__(
            f"Cost ledger store {operation} failed: {reason}",
            ErrorCode.LEDGER_UNAVAILABLE,
        )
        self.operation = operation
