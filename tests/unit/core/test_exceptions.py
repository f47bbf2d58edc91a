"""
Unit tests for genai_gateway/core/exceptions.py - the error taxonomy.

Reference:
- GUIDELINES: Specific exceptions, always capture with 'as e'
"""

from decimal import Decimal

import pytest

from genai_gateway.core.exceptions import (
    AggregateModelFailureError,
    BackendError,
    CircuitOpenError,
    ContentPolicyViolationError,
    CostLimitExceededError,
    ErrorCode,
    FatalBackendError,
    GatewayError,
    GatewayTimeoutError,
    GatewayValidationError,
    LedgerUnavailableError,
    ModerationUnavailableError,
    RetryableBackendError,
    StatusKind,
)
from genai_gateway.models.domain import AttemptOutcome, AttemptRecord


class TestGatewayError:
    def test_message_and_default_code(self) -> None:
        error = GatewayError("boom")

        assert str(error) == "boom"
        assert error.message == "boom"
        assert error.error_code == ErrorCode.GATEWAY_ERROR

    def test_extra_attributes(self) -> None:
        error = GatewayError("boom", request_id="req-1")
        assert error.request_id == "req-1"

    @pytest.mark.parametrize(
        "error",
        [
            BackendError("x", "claude"),
            CircuitOpenError("claude"),
            CostLimitExceededError("daily", Decimal("1"), Decimal("1"), Decimal("1")),
            ContentPolicyViolationError(["violence"], 0.9),
            AggregateModelFailureError([]),
            GatewayValidationError("x"),
            GatewayTimeoutError(1.0),
            ModerationUnavailableError("down"),
            LedgerUnavailableError("load", "refused"),
        ],
    )
    def test_all_errors_are_gateway_errors(self, error) -> None:
        assert isinstance(error, GatewayError)


class TestBackendErrors:
    @pytest.mark.parametrize(
        "kind, retryable",
        [
            (StatusKind.TIMEOUT, True),
            (StatusKind.RATE_LIMITED, True),
            (StatusKind.SERVER_ERROR, True),
            (StatusKind.UNAVAILABLE, True),
            (StatusKind.VALIDATION, False),
            (StatusKind.AUTHENTICATION, False),
            (StatusKind.AUTHORIZATION, False),
            (StatusKind.UNKNOWN, False),
        ],
    )
    def test_retryable_derived_from_status_kind(self, kind, retryable) -> None:
        assert BackendError("x", "claude", status_kind=kind).retryable is retryable

    def test_explicit_retryable_overrides_kind(self) -> None:
        error = BackendError("x", "claude", status_kind=StatusKind.UNKNOWN, retryable=True)
        assert error.retryable is True

    def test_status_kind_accepts_string(self) -> None:
        assert BackendError("x", "claude", status_kind="timeout").status_kind == StatusKind.TIMEOUT

    def test_retryable_subclass(self) -> None:
        error = RetryableBackendError("throttled", "titan", status_code=429)

        assert error.retryable
        assert error.status_kind == StatusKind.SERVER_ERROR
        assert error.status_code == 429
        assert error.error_code == ErrorCode.BACKEND_ERROR

    def test_fatal_subclass_is_never_retryable(self) -> None:
        error = FatalBackendError("bad", "titan", status_kind=StatusKind.TIMEOUT)
        assert error.retryable is False


class TestPolicyErrors:
    def test_circuit_open(self) -> None:
        error = CircuitOpenError("claude", "failing fast")

        assert error.circuit_name == "claude"
        assert str(error) == "CircuitOpenError[claude]: failing fast"
        assert error.error_code == ErrorCode.CIRCUIT_OPEN

    def test_cost_limit_exceeded(self) -> None:
        error = CostLimitExceededError("daily", Decimal("10"), Decimal("9.5"), Decimal("1.0"))

        assert str(error) == "Daily cost limit exceeded: 9.5 + 1.0 > 10"
        assert error.error_code == ErrorCode.COST_LIMIT_EXCEEDED

    def test_content_policy_violation(self) -> None:
        error = ContentPolicyViolationError(
            ("violence",), 0.9, backend="claude", cost=Decimal("0.02")
        )

        assert error.categories == ["violence"]
        assert error.cost == Decimal("0.02")
        assert "confidence=0.90" in str(error)

    def test_aggregate_failure_backend_errors(self) -> None:
        attempts = [
            AttemptRecord(backend="claude", outcome=AttemptOutcome.CIRCUIT_OPEN),
            AttemptRecord(
                backend="titan",
                outcome=AttemptOutcome.RETRIES_EXHAUSTED,
                attempts=3,
                error="HTTP 503",
            ),
        ]

        error = AggregateModelFailureError(attempts)

        assert error.backend_errors == {"claude": "circuit_open", "titan": "HTTP 503"}
        assert list(error.backend_errors) == ["claude", "titan"]

    def test_validation_error_fields(self) -> None:
        error = GatewayValidationError("bad", field="timeout", value=-1)

        assert error.field == "timeout"
        assert error.value == -1
        assert error.error_code == ErrorCode.VALIDATION_ERROR

    def test_timeout_error(self) -> None:
        error = GatewayTimeoutError(2.5)

        assert error.timeout_seconds == 2.5
        assert error.error_code == ErrorCode.TIMEOUT

    def test_moderation_unavailable(self) -> None:
        error = ModerationUnavailableError("timed out", backend="claude", cost=Decimal("0.3"))

        assert error.message == "Moderation unavailable, output withheld: timed out"
        assert error.backend == "claude"
        assert error.cost == Decimal("0.3")
        assert error.error_code == ErrorCode.MODERATION_UNAVAILABLE

    def test_ledger_unavailable(self) -> None:
        error = LedgerUnavailableError("save", "connection refused")

        assert error.operation == "save"
        assert "connection refused" in error.message
        assert error.error_code == ErrorCode.LEDGER_UNAVAILABLE
