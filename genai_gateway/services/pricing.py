"""
Pricing Table - Per-model rates for cost estimation and accounting.

The cost ledger needs a price before a request runs (to check limits) and
after it runs (when an adapter reports usage but no cost). Both come from
this table.

Rates are USD per 1K tokens for text and embedding models, and USD per
image for image models. Lookup is exact first, then by prefix, then the
"_default" entry.

Pattern: Configuration as data, Decimal for money
"""

import math
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from genai_gateway.models.domain import GenerationOptions, Operation

# =============================================================================
# Constants
# =============================================================================

DEFAULT_RATE_KEY = "_default"
CHARS_PER_TOKEN = 4
DEFAULT_ESTIMATED_OUTPUT_TOKENS = 1000
_PER_1K = Decimal("1000")


# =============================================================================
# Rate Model
# =============================================================================


class ModelRate(BaseModel):
    """
    Price of one model.

    Attributes:
        input: USD per 1K input tokens
        output: USD per 1K output tokens
        per_image: USD per generated image (image models only)
    """

    input: Decimal = Field(default=Decimal("0"), ge=0)
    output: Decimal = Field(default=Decimal("0"), ge=0)
    per_image: Optional[Decimal] = Field(default=None, ge=0)

    model_config = {"frozen": True}


DEFAULT_RATES: dict[str, ModelRate] = {
    # Claude models
    "anthropic.claude-3-sonnet-20240229-v1:0": ModelRate(
        input=Decimal("0.003"), output=Decimal("0.015")
    ),
    "anthropic.claude-3-haiku-20240307-v1:0": ModelRate(
        input=Decimal("0.00025"), output=Decimal("0.00125")
    ),
    "anthropic.claude-3-opus-20240229-v1:0": ModelRate(
        input=Decimal("0.015"), output=Decimal("0.075")
    ),
    # Titan models
    "amazon.titan-text-express-v1": ModelRate(
        input=Decimal("0.0008"), output=Decimal("0.0016")
    ),
    "amazon.titan-text-lite-v1": ModelRate(
        input=Decimal("0.0003"), output=Decimal("0.0004")
    ),
    "amazon.titan-embed-text-v1": ModelRate(input=Decimal("0.0001")),
    # Stable Diffusion (per image)
    "stability.stable-diffusion-xl-v1": ModelRate(per_image=Decimal("0.04")),
    # Cohere models
    "cohere.command-text-v14": ModelRate(
        input=Decimal("0.0015"), output=Decimal("0.002")
    ),
    "cohere.command-light-text-v14": ModelRate(
        input=Decimal("0.0003"), output=Decimal("0.0006")
    ),
    "cohere.embed-english-v3": ModelRate(input=Decimal("0.0001")),
    # Default fallback
    DEFAULT_RATE_KEY: ModelRate(input=Decimal("0.001"), output=Decimal("0.002")),
}


def estimate_tokens(text: str) -> int:
    """Rough token count: about four characters per token."""
    if not text:
        return 0
    return math.ceil(len(text) / CHARS_PER_TOKEN)


# =============================================================================
# Pricing Table
# =============================================================================


class PricingTable:
    """
    Lookup of model rates with prefix matching.

    Example:
        >>> table = PricingTable()
        >>> table.calculate_cost("amazon.titan-text-lite-v1", 1000, 1000)
        Decimal('0.0007')
    """

    def __init__(self, rates: Optional[dict[str, ModelRate]] = None) -> None:
        self._rates = dict(rates) if rates is not None else dict(DEFAULT_RATES)

    @property
    def rates(self) -> dict[str, ModelRate]:
        return self._rates

    def get_rate(self, backend: str) -> ModelRate:
        """
        Get the rate for a backend id.

        Exact match first, then the longest matching prefix
        (so "anthropic.claude-3-haiku-20240307-v1:0:200k" prices as haiku),
        then "_default".
        """
        if backend in self._rates:
            return self._rates[backend]

        prefixes = [
            key
            for key in self._rates
            if key != DEFAULT_RATE_KEY and backend.startswith(key)
        ]
        if prefixes:
            return self._rates[max(prefixes, key=len)]

        return self._rates.get(DEFAULT_RATE_KEY, ModelRate())

    def calculate_cost(
        self,
        backend: str,
        tokens_in: int = 0,
        tokens_out: int = 0,
        image_count: int = 0,
        operation: Operation = "text_generation",
    ) -> Decimal:
        """
        Price actual usage.

        Image generation on a per-image model is priced per image
        (at least one); everything else by tokens.
        """
        rate = self.get_rate(backend)

        if operation == "image_generation" and rate.per_image is not None:
            return rate.per_image * max(image_count, 1)

        input_cost = Decimal(tokens_in) / _PER_1K * rate.input
        output_cost = Decimal(tokens_out) / _PER_1K * rate.output
        return input_cost + output_cost

    def estimate_cost(
        self,
        backend: str,
        prompt: str,
        options: Optional[GenerationOptions] = None,
        operation: Operation = "text_generation",
    ) -> Decimal:
        """
        Estimate the cost of a request before it runs.

        Input tokens come from the prompt length; output tokens from
        max_tokens (1000 if unset). Embeddings produce no output tokens.
        """
        options = options or GenerationOptions()

        tokens_in = estimate_tokens(prompt)
        if operation == "embedding":
            tokens_out = 0
        else:
            tokens_out = options.max_tokens or DEFAULT_ESTIMATED_OUTPUT_TOKENS

        return self.calculate_cost(
            backend,
            tokens_in=tokens_in,
            tokens_out=tokens_out,
            image_count=options.image_count or 1,
            operation=operation,
        )
