"""
API cost tracking and calculation.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass
class ModelPricing:
    """Pricing per million tokens."""

    input_per_million: Decimal
    output_per_million: Decimal

    def calculate_cost(self, input_tokens: int, output_tokens: int) -> Decimal:
        input_cost = (Decimal(input_tokens) / Decimal(1_000_000)) * self.input_per_million
        output_cost = (Decimal(output_tokens) / Decimal(1_000_000)) * self.output_per_million
        return input_cost + output_cost


PROVIDER_PRICING: dict[str, ModelPricing] = {
    "claude": ModelPricing(
        input_per_million=Decimal("3.00"),
        output_per_million=Decimal("15.00"),
    ),
    "gpt": ModelPricing(
        input_per_million=Decimal("2.50"),
        output_per_million=Decimal("10.00"),
    ),
    "gemini": ModelPricing(
        input_per_million=Decimal("0.10"),
        output_per_million=Decimal("0.40"),
    ),
}


def calculate_cost(provider: str, tokens_in: int, tokens_out: int) -> Decimal:
    """USD cost of a call; unknown providers cost nothing."""
    pricing = PROVIDER_PRICING.get(provider)
    if pricing is None:
        return Decimal("0")
    return pricing.calculate_cost(tokens_in, tokens_out)


@dataclass
class TokenUsage:
    """Token usage from an API call."""

    input_tokens: int
    output_tokens: int
    model: str | None = None

    @property
    def total_tokens(self) -> int:
        return self.input_tokens + self.output_tokens

    def cost(self, provider: str) -> Decimal:
        return calculate_cost(provider, self.input_tokens, self.output_tokens)
