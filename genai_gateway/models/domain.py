"""
Domain Models - Generation requests, results and backend outcomes.

This module contains the value objects that flow through the gateway:
requests callers submit, results they receive, what backend adapters
return, and the per-backend attempt trail the fallback router records.

Pattern: Domain models as value objects (Percival & Gregory pp. 59-65)
Pattern: Pydantic for validation at boundaries (Sinha pp. 193-195)

All models are frozen: a request or result is never mutated once built.
"""

import hashlib
import json
import re
from decimal import Decimal
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

Operation = Literal["text_generation", "image_generation", "embedding", "summarization"]

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_prompt(prompt: str) -> str:
    """Collapse runs of whitespace and strip the ends."""
    return _WHITESPACE_RE.sub(" ", prompt).strip()


# =============================================================================
# Request Side
# =============================================================================


class GenerationOptions(BaseModel):
    """
    Generation knobs passed through to the backend adapter.

    Only fields that are set (not None) take part in the request
    fingerprint, so two requests that differ in any set option never
    share a cache entry.

    Attributes:
        max_tokens: Maximum output size in tokens
        temperature: Sampling temperature
        top_p: Nucleus sampling parameter
        top_k: Top-k sampling parameter
        width: Image width in pixels
        height: Image height in pixels
        cfg_scale: Image prompt adherence
        steps: Image diffusion steps
        seed: Image seed
        image_count: Number of images requested
        extra: Backend-specific options
    """

    max_tokens: Optional[int] = Field(default=None, ge=1)
    temperature: Optional[float] = Field(default=None, ge=0.0, le=2.0)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    top_k: Optional[int] = Field(default=None, ge=0)
    width: Optional[int] = Field(default=None, ge=1)
    height: Optional[int] = Field(default=None, ge=1)
    cfg_scale: Optional[float] = Field(default=None, ge=0.0)
    steps: Optional[int] = Field(default=None, ge=1)
    seed: Optional[int] = None
    image_count: Optional[int] = Field(default=None, ge=1)
    extra: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}

    def to_dict(self) -> dict[str, Any]:
        """Options that are set, flattened with extras, for adapters."""
        data = self.model_dump(exclude_none=True, exclude={"extra"})
        data.update(self.extra)
        return data


class BackendSelector(BaseModel):
    """
    Primary backend plus ordered fallbacks.

    Attributes:
        primary: Backend tried first
        fallbacks: Backends tried in order if the primary fails
    """

    primary: str = Field(..., min_length=1)
    fallbacks: list[str] = Field(default_factory=list)

    model_config = {"frozen": True}

    @property
    def chain(self) -> list[str]:
        """Ordered backend chain with duplicates removed."""
        seen: set[str] = set()
        chain: list[str] = []
        for backend in [self.primary, *self.fallbacks]:
            if backend not in seen:
                seen.add(backend)
                chain.append(backend)
        return chain


class GenerationRequest(BaseModel):
    """
    A single logical generation request.

    Attributes:
        prompt: Prompt text (must not be blank)
        backend: Backend selection (primary + fallbacks)
        options: Generation options
        user_id: Requesting user, for cost attribution and logs
        moderate: Whether to run the output through moderation
        use_cache: Whether the response cache may serve or store this request
        operation: Kind of generation, used for pricing
        request_id: Optional caller-supplied correlation id

    Example:
        >>> request = GenerationRequest(
        ...     prompt="Explain photosynthesis",
        ...     backend=BackendSelector(primary="claude", fallbacks=["titan"]),
        ...     options=GenerationOptions(max_tokens=500),
        ... )
        >>> request.fingerprint  # stable SHA-256 hex digest
    """

    prompt: str
    backend: BackendSelector
    options: GenerationOptions = Field(default_factory=GenerationOptions)
    user_id: Optional[str] = None
    moderate: bool = True
    use_cache: bool = True
    operation: Operation = "text_generation"
    request_id: Optional[str] = None

    model_config = {"frozen": True}

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        """Prompt is required."""
        if not v or not v.strip():
            raise ValueError("Prompt is required for generation")
        return v

    @property
    def fingerprint(self) -> str:
        """
        Stable hash over normalized prompt, backend id, operation and options.

        Pure function of the request content: identical inputs always
        produce the same value.
        """
        key_parts = {
            "prompt": normalize_prompt(self.prompt),
            "backend": self.backend.primary,
            "operation": self.operation,
            "options": self.options.model_dump(exclude_none=True),
        }
        key_json = json.dumps(key_parts, sort_keys=True, default=str)
        return hashlib.sha256(key_json.encode()).hexdigest()


# =============================================================================
# Backend Side
# =============================================================================


class BackendResponse(BaseModel):
    """
    What a backend adapter returns on success.

    Attributes:
        payload: Generated text, base64 image data, or embedding vector
        tokens_in: Input tokens (or units) consumed
        tokens_out: Output tokens (or units) produced
        cost: Cost reported by the backend, or None when it reports none
            (the router then prices tokens_in and tokens_out)
    """

    payload: Any
    tokens_in: int = Field(default=0, ge=0)
    tokens_out: int = Field(default=0, ge=0)
    cost: Optional[Decimal] = Field(default=None, ge=0)

    model_config = {"frozen": True}


class AttemptOutcome(str, Enum):
    """How one backend in the chain ended up."""

    SUCCESS = "success"
    CIRCUIT_OPEN = "circuit_open"
    FATAL = "fatal"
    RETRIES_EXHAUSTED = "retries_exhausted"
    NOT_CONFIGURED = "not_configured"


class AttemptRecord(BaseModel):
    """
    Result of trying one backend of the fallback chain.

    Attributes:
        backend: Backend identifier
        outcome: How the attempt ended
        attempts: Number of calls made to the backend (0 when skipped)
        error: Last error message, if any
        status_kind: Classification of the last error, if any
    """

    backend: str
    outcome: AttemptOutcome
    attempts: int = 0
    error: Optional[str] = None
    status_kind: Optional[str] = None

    model_config = {"frozen": True}


# =============================================================================
# Moderation
# =============================================================================


class ModerationResult(BaseModel):
    """
    Output of a moderation check.

    Attributes:
        flagged: Whether any category matched
        categories: Categories that matched
        confidence: Highest category confidence (0..1)
        details: Per-category flag and confidence
    """

    flagged: bool = False
    categories: list[str] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    details: dict[str, dict[str, Any]] = Field(default_factory=dict)

    model_config = {"frozen": True}


# =============================================================================
# Result Side
# =============================================================================


class GenerationResult(BaseModel):
    """
    What the caller receives for a successful generation.

    Attributes:
        payload: Generated output
        backend_used: Backend that produced the output
        correlation_id: Id of the request that produced this result
        tokens_in: Input tokens consumed
        tokens_out: Output tokens produced
        cost: Cost of the generation. Cache hits carry the original
            cost for reference but are not charged again.
        cached: Whether this result was served from the response cache
        moderation: Moderation outcome, if moderation ran
        attempts: Per-backend attempt trail for this request
    """

    payload: Any
    backend_used: str
    correlation_id: str
    tokens_in: int = 0
    tokens_out: int = 0
    cost: Decimal = Decimal("0")
    cached: bool = False
    moderation: Optional[ModerationResult] = None
    attempts: list[AttemptRecord] = Field(default_factory=list)

    model_config = {"frozen": True}


class BatchItem(BaseModel):
    """
    One slot of a detailed batch run: either a result or an error.

    Attributes:
        index: Position of the request in the input
        result: Result if the request succeeded
        error: The exception if it failed
    """

    index: int
    result: Optional[GenerationResult] = None
    error: Optional[Exception] = None

    model_config = {"frozen": True, "arbitrary_types_allowed": True}

    @property
    def ok(self) -> bool:
        """Whether this slot succeeded."""
        return self.error is None
