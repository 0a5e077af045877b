"""Gemini chat calls through the google-genai SDK."""

from __future__ import annotations

import logging
import time

from google import genai
from google.genai import types

from ..config import settings
from ..costs import TokenUsage
from ..errors import ProviderNotConfiguredError
from .types import AIResponse

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"


class GeminiService:
    provider = "gemini"

    def __init__(self, api_key: str | None = None, client: genai.Client | None = None) -> None:
        self.api_key = api_key if api_key is not None else settings.gemini_api_key
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    @property
    def client(self) -> genai.Client:
        if not self.configured:
            raise ProviderNotConfiguredError("GEMINI_API_KEY not configured")
        if self._client is None:
            self._client = genai.Client(api_key=self.api_key)
        return self._client

    async def chat(
        self,
        prompt: str,
        system: str | None = None,
        max_tokens: int = 4096,
        model: str = DEFAULT_MODEL,
    ) -> AIResponse:
        client = self.client
        config = types.GenerateContentConfig(
            system_instruction=system or None,
            max_output_tokens=max_tokens,
        )

        start = time.perf_counter()
        result = await client.aio.models.generate_content(
            model=model, contents=prompt, config=config
        )
        latency_ms = int((time.perf_counter() - start) * 1000)

        metadata = result.usage_metadata
        usage = TokenUsage(
            getattr(metadata, "prompt_token_count", 0) or 0,
            getattr(metadata, "candidates_token_count", 0) or 0,
            model,
        )
        logger.info("Gemini %s answered in %dms", model, latency_ms)
        return AIResponse.from_usage(self.provider, result.text or "", usage, latency_ms)
