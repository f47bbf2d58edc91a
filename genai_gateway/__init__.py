"""GenAI Gateway - resilience and governance layer for generative-AI backends.

Callers usually need only the facade:

    >>> from genai_gateway import GenerationGateway, get_settings
    >>> gateway = GenerationGateway.from_settings(get_settings(), adapters=[...])
"""

from genai_gateway.core.config import Settings, get_settings
from genai_gateway.core.exceptions import (
    AggregateModelFailureError,
    ContentPolicyViolationError,
    CostLimitExceededError,
    GatewayError,
    GatewayTimeoutError,
    GatewayValidationError,
    LedgerUnavailableError,
    ModerationUnavailableError,
)
from genai_gateway.models.domain import (
    BackendSelector,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
)
from genai_gateway.services.gateway import GenerationGateway

__version__ = "0.1.0"

__all__ = [
    "GenerationGateway",
    "GenerationRequest",
    "GenerationResult",
    "GenerationOptions",
    "BackendSelector",
    "Settings",
    "get_settings",
    "GatewayError",
    "AggregateModelFailureError",
    "ContentPolicyViolationError",
    "CostLimitExceededError",
    "GatewayTimeoutError",
    "GatewayValidationError",
    "LedgerUnavailableError",
    "ModerationUnavailableError",
]
