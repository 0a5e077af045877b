"""Claude chat calls."""

from __future__ import annotations

import logging
import time

from anthropic import AsyncAnthropic

from ..config import settings
from ..costs import TokenUsage
from ..errors import ProviderNotConfiguredError
from .types import AIResponse

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"


class AnthropicService:
    provider = "claude"

    def __init__(self, api_key: str | None = None, client: AsyncAnthropic | None = None) -> None:
        self.api_key = api_key if api_key is not None else settings.anthropic_api_key
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    @property
    def client(self) -> AsyncAnthropic:
        if not self.configured:
            raise ProviderNotConfiguredError("ANTHROPIC_API_KEY not configured")
        if self._client is None:
            self._client = AsyncAnthropic(api_key=self.api_key, timeout=settings.ai_timeout_seconds)
        return self._client

    async def chat(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int = 4096,
        model: str = DEFAULT_MODEL,
    ) -> AIResponse:
        client = self.client
        params = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            params["system"] = system

        start = time.perf_counter()
        message = await client.messages.create(**params)
        latency_ms = int((time.perf_counter() - start) * 1000)

        text = "".join(
            block.text for block in message.content if getattr(block, "type", None) == "text"
        )
        usage = TokenUsage(
            getattr(message.usage, "input_tokens", 0) or 0,
            getattr(message.usage, "output_tokens", 0) or 0,
            model,
        )
        logger.info("Claude %s answered in %dms", model, latency_ms)
        return AIResponse.from_usage(self.provider, text, usage, latency_ms)
