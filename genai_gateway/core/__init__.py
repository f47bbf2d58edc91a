"""
Core module for the GenAI Gateway.

This module contains configuration and the exception taxonomy.
"""

from genai_gateway.core.config import Settings, get_settings
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

__all__ = [
    # Config
    "Settings",
    "get_settings",
    # Exceptions
    "ErrorCode",
    "StatusKind",
    "GatewayError",
    "BackendError",
    "RetryableBackendError",
    "FatalBackendError",
    "CircuitOpenError",
    "CostLimitExceededError",
    "ContentPolicyViolationError",
    "AggregateModelFailureError",
    "GatewayValidationError",
    "GatewayTimeoutError",
    "ModerationUnavailableError",
    "LedgerUnavailableError",
]
