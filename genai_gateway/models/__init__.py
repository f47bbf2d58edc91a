"""Models Package - generation requests, results and backend outcomes."""

from genai_gateway.models.domain import (
    AttemptOutcome,
    AttemptRecord,
    BackendResponse,
    BackendSelector,
    BatchItem,
    GenerationOptions,
    GenerationRequest,
    GenerationResult,
    ModerationResult,
    normalize_prompt,
)

__all__ = [
    "AttemptOutcome",
    "AttemptRecord",
    "BackendResponse",
    "BackendSelector",
    "BatchItem",
    "GenerationOptions",
    "GenerationRequest",
    "GenerationResult",
    "ModerationResult",
    "normalize_prompt",
]
