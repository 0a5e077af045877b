"""Shared result types for provider calls."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any

from ..costs import TokenUsage


@dataclass
class AIResponse:
    """Normalised result of one chat completion."""

    provider: str
    response: str | None = None
    tokens_in: int = 0
    tokens_out: int = 0
    cost_usd: float = 0.0
    latency_ms: int = 0
    success: bool = True
    error: str | None = None
    cached: bool = False
    model: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def failure(cls, provider: str, error: str, latency_ms: int = 0) -> AIResponse:
        return cls(provider=provider, success=False, error=error, latency_ms=latency_ms)

    @classmethod
    def from_usage(
        cls, provider: str, response: str, usage: TokenUsage, latency_ms: int = 0
    ) -> AIResponse:
        """Successful result priced from the reported token usage."""
        return cls(
            provider=provider,
            response=response,
            tokens_in=usage.input_tokens,
            tokens_out=usage.output_tokens,
            cost_usd=float(usage.cost(provider)),
            latency_ms=latency_ms,
            model=usage.model,
        )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AIResponse:
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    @property
    def usage(self) -> TokenUsage:
        return TokenUsage(self.tokens_in, self.tokens_out, self.model)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
