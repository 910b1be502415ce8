"""Token pricing used to turn step usage into cost."""

from __future__ import annotations

from dataclasses import dataclass

from ...services.settings import PricingSettings
from .types import Cost, LLMCost, LLMUsage

__all__ = ["ModelPricing"]

_PER_MILLION = 1_000_000


@dataclass(slots=True, frozen=True)
class ModelPricing:
    """Per-million token rates. Cached input tokens are billed at the cached rate."""

    input_per_million: float = 0.0
    output_per_million: float = 0.0
    cached_input_per_million: float = 0.0
    currency: str = "USD"

    @classmethod
    def from_settings(cls, settings: PricingSettings) -> "ModelPricing":
        return cls(
            input_per_million=settings.input_per_million,
            output_per_million=settings.output_per_million,
            cached_input_per_million=settings.cached_input_per_million,
            currency=settings.currency,
        )

    def cost_for(self, usage: LLMUsage) -> Cost:
        uncached = max(usage.input_tokens - usage.cached_tokens, 0)
        input_cost = uncached * self.input_per_million / _PER_MILLION
        cached_cost = usage.cached_tokens * self.cached_input_per_million / _PER_MILLION
        output_cost = usage.output_tokens * self.output_per_million / _PER_MILLION
        total = input_cost + cached_cost + output_cost
        return Cost(
            llm=LLMCost(input=input_cost, output=output_cost, cached=cached_cost, total=total, currency=self.currency),
            total=total,
        )
