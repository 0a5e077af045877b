"""OpenAI chat, image, speech and transcription calls."""

from __future__ import annotations

import base64
import logging
import time
from typing import Any

from openai import AsyncOpenAI

from ..config import settings
from ..costs import TokenUsage
from ..errors import ProviderNotConfiguredError
from .types import AIResponse

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o"


class OpenAIService:
    """Thin wrapper around ``openai.AsyncOpenAI``."""

    provider = "gpt"

    def __init__(self, api_key: str | None = None, client: AsyncOpenAI | None = None) -> None:
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.api_key) or self._client is not None

    @property
    def client(self) -> AsyncOpenAI:
        if not self.configured:
            raise ProviderNotConfiguredError("OpenAI not configured")
        if self._client is None:
            self._client = AsyncOpenAI(api_key=self.api_key, timeout=settings.ai_timeout_seconds)
        return self._client

    async def chat(
        self,
        prompt: str,
        system: str | None = None,
        model: str = DEFAULT_MODEL,
        max_tokens: int = 2048,
        temperature: float | None = None,
    ) -> AIResponse:
        client = self.client
        messages: list[dict[str, str]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        params: dict[str, Any] = {"model": model, "messages": messages, "max_tokens": max_tokens}
        if temperature is not None:
            params["temperature"] = temperature

        start = time.perf_counter()
        completion = await client.chat.completions.create(**params)
        latency_ms = int((time.perf_counter() - start) * 1000)

        reported = completion.usage
        usage = TokenUsage(
            getattr(reported, "prompt_tokens", 0) or 0,
            getattr(reported, "completion_tokens", 0) or 0,
            model,
        )
        logger.info("OpenAI %s answered in %dms", model, latency_ms)
        return AIResponse.from_usage(
            self.provider, completion.choices[0].message.content or "", usage, latency_ms
        )

    async def generate_image(
        self,
        prompt: str,
        size: str = "1024x1024",
        quality: str = "standard",
        style: str = "vivid",
        n: int = 1,
    ) -> dict[str, Any]:
        """Generate images with DALL-E 3."""
        result = await self.client.images.generate(
            model="dall-e-3", prompt=prompt, n=n, size=size, quality=quality, style=style
        )
        return {
            "images": [
                {"url": img.url, "revised_prompt": img.revised_prompt} for img in result.data
            ],
            "prompt": prompt,
            "options": {"size": size, "quality": quality, "style": style},
        }

    async def generate_speech(
        self,
        text: str,
        voice: str = "alloy",
        model: str = "tts-1",
        speed: float = 1.0,
        response_format: str = "mp3",
    ) -> dict[str, Any]:
        """Text-to-speech; the audio is returned base64 encoded."""
        response = await self.client.audio.speech.create(
            model=model, voice=voice, input=text, speed=speed, response_format=response_format
        )
        return {
            "audio": base64.b64encode(response.content).decode("ascii"),
            "format": response_format,
            "voice": voice,
            "text": text,
        }

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "audio.mp3",
        language: str | None = None,
        prompt: str | None = None,
    ) -> dict[str, Any]:
        """Speech-to-text with whisper-1."""
        params: dict[str, Any] = {"model": "whisper-1", "file": (filename, audio)}
        if language:
            params["language"] = language
        if prompt:
            params["prompt"] = prompt
        result = await self.client.audio.transcriptions.create(**params)
        return {"text": result.text}
