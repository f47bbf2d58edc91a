"""
Tests for PricingTable - rate lookup, actual cost and pre-flight estimates.
"""

from decimal import Decimal

import pytest

from genai_gateway.models.domain import GenerationOptions
from genai_gateway.services.pricing import (
    DEFAULT_RATE_KEY,
    ModelRate,
    PricingTable,
    estimate_tokens,
)

SONNET = "anthropic.claude-3-sonnet-20240229-v1:0"
HAIKU = "anthropic.claude-3-haiku-20240307-v1:0"
SDXL = "stability.stable-diffusion-xl-v1"
TITAN_EMBED = "amazon.titan-embed-text-v1"


@pytest.fixture
def pricing() -> PricingTable:
    return PricingTable()


class TestEstimateTokens:
    @pytest.mark.parametrize(
        "text, expected",
        [("", 0), ("abc", 1), ("abcd", 1), ("abcde", 2), ("x" * 400, 100)],
    )
    def test_four_characters_per_token_rounded_up(self, text, expected) -> None:
        assert estimate_tokens(text) == expected


class TestGetRate:
    def test_exact_match(self, pricing) -> None:
        assert pricing.get_rate(HAIKU).output == Decimal("0.00125")

    def test_longest_prefix_wins(self) -> None:
        table = PricingTable(
            {
                "anthropic.": ModelRate(input=Decimal("1")),
                "anthropic.claude-3-haiku": ModelRate(input=Decimal("2")),
                DEFAULT_RATE_KEY: ModelRate(input=Decimal("9")),
            }
        )
        assert table.get_rate("anthropic.claude-3-haiku:200k").input == Decimal("2")

    def test_unknown_backend_uses_default(self, pricing) -> None:
        rate = pricing.get_rate("acme.mystery-model")
        assert rate.input == Decimal("0.001")
        assert rate.output == Decimal("0.002")

    def test_missing_default_prices_at_zero(self) -> None:
        table = PricingTable({"only": ModelRate(input=Decimal("1"))})
        assert table.get_rate("other") == ModelRate()


class TestCalculateCost:
    def test_token_pricing(self, pricing) -> None:
        cost = pricing.calculate_cost("amazon.titan-text-lite-v1", 1000, 1000)
        assert cost == Decimal("0.0007")

    def test_image_generation_priced_per_image(self, pricing) -> None:
        cost = pricing.calculate_cost(SDXL, image_count=3, operation="image_generation")
        assert cost == Decimal("0.12")

    def test_image_generation_charges_at_least_one_image(self, pricing) -> None:
        cost = pricing.calculate_cost(SDXL, image_count=0, operation="image_generation")
        assert cost == Decimal("0.04")

    def test_zero_usage_costs_nothing(self, pricing) -> None:
        assert pricing.calculate_cost(SONNET) == Decimal("0")


class TestEstimateCost:
    def test_text_estimate_uses_prompt_and_max_tokens(self, pricing) -> None:
        prompt = "x" * 40  # 10 tokens
        cost = pricing.estimate_cost(SONNET, prompt, GenerationOptions(max_tokens=100))
        assert cost == Decimal("0.00153")

    def test_missing_max_tokens_assumes_one_thousand(self, pricing) -> None:
        cost = pricing.estimate_cost(HAIKU, "x" * 4)
        assert cost == Decimal("0.00000025") + Decimal("0.00125")

    def test_embedding_has_no_output_tokens(self, pricing) -> None:
        cost = pricing.estimate_cost(TITAN_EMBED, "x" * 4000, operation="embedding")
        assert cost == Decimal("0.0001")

    def test_image_estimate_uses_requested_count(self, pricing) -> None:
        cost = pricing.estimate_cost(
            SDXL,
            "A lighthouse at dawn",
            GenerationOptions(image_count=2),
            operation="image_generation",
        )
        assert cost == Decimal("0.08")
