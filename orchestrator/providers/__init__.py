"""Clients for the external AI and media providers."""

from .anthropic import AnthropicService
from .elevenlabs import ElevenLabsService
from .gemini import GeminiService
from .openai import OpenAIService
from .stability import StabilityService
from .types import AIResponse

__all__ = [
    "AIResponse",
    "AnthropicService",
    "ElevenLabsService",
    "GeminiService",
    "OpenAIService",
    "StabilityService",
]
