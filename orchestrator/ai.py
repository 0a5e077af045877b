"""Multi-provider AI queries (Claude, GPT, Gemini)."""

from __future__ import annotations

import asyncio
import hashlib
import logging
import time
from collections.abc import Sequence
from typing import Any, Protocol

from . import db, redis_client
from .config import settings
from .errors import ProviderNotConfiguredError
from .models import AI_PROVIDERS
from .providers import AIResponse, AnthropicService, GeminiService, OpenAIService

logger = logging.getLogger(__name__)

PROMPTS: dict[str, str] = {
    "review": """You are a senior software architect on a real-time review panel.
Analyze the following content and provide CONCISE feedback:

1. ISSUES (1-3 bullets) - Critical problems only
2. SUGGESTIONS (1-3 bullets) - Top improvements
3. QUESTIONS (1-3 bullets) - Clarifying questions for the developer

Be direct. No fluff. Max 200 words total.

CONTENT:
""",
    "challenge": """You are a critical code reviewer. Challenge this approach:

1. WHAT COULD GO WRONG? (2-3 risks)
2. ALTERNATIVE APPROACHES? (1-2 options)
3. WHAT ARE YOU MISSING? (1-2 blind spots)

Be provocative. Push back. Max 150 words.

CONTENT:
""",
    "consensus": """You are an AI consensus builder. Given these responses from different AI models,
synthesize the best answer by:
1. Identifying points of agreement
2. Resolving contradictions
3. Combining unique insights

Return a single, unified response that represents the best combined answer.

RESPONSES:
""",
    "general": """You are a helpful AI assistant. Be concise and direct.

""",
}

API_KEY_NAMES = {
    "claude": "ANTHROPIC_API_KEY",
    "gpt": "OPENAI_API_KEY",
    "gemini": "GEMINI_API_KEY",
}

ENDPOINTS = {
    "claude": "messages.create",
    "gpt": "chat.completions",
    "gemini": "generateContent",
}


class ChatService(Protocol):
    configured: bool

    async def chat(self, prompt: str, system: str | None = None, max_tokens: int = ...) -> AIResponse: ...


_services: dict[str, ChatService] = {}


def get_service(provider: str) -> ChatService:
    if provider not in _services:
        factories = {"claude": AnthropicService, "gpt": OpenAIService, "gemini": GeminiService}
        if provider not in factories:
            raise ValueError(f"Unknown AI provider: {provider}")
        _services[provider] = factories[provider]()
    return _services[provider]


def set_service(provider: str, service: ChatService | None) -> None:
    """Install (or with None, reset) the service used for a provider."""
    if service is None:
        _services.pop(provider, None)
    else:
        _services[provider] = service


def _cache_key(provider: str, system_prompt: str, content: str) -> str:
    digest = hashlib.sha256((system_prompt + content).encode("utf-8")).hexdigest()[:24]
    return f"ai:{provider}:{digest}"


async def _cached(provider: str, system_prompt: str, content: str) -> dict[str, Any] | None:
    cached = await redis_client.cache_get(_cache_key(provider, system_prompt, content))
    if cached is not None:
        return cached
    if not settings.ai_db_cache_enabled:
        return None
    try:
        async with db.get_session() as session:
            return await db.get_cached_response(session, provider, system_prompt + content)
    except Exception as exc:
        logger.warning("AI cache lookup skipped for %s: %s", provider, exc)
        return None


async def _store(provider: str, system_prompt: str, content: str, result: AIResponse) -> None:
    payload = result.to_dict()
    await redis_client.cache_set(_cache_key(provider, system_prompt, content), payload)
    if not settings.ai_db_cache_enabled:
        return
    try:
        async with db.get_session() as session:
            await db.set_cached_response(
                session,
                provider,
                system_prompt + content,
                payload,
                ttl_minutes=settings.ai_db_cache_ttl_minutes,
            )
    except Exception as exc:
        logger.warning("AI cache store skipped for %s: %s", provider, exc)


async def record_usage(result: AIResponse) -> None:
    """Write a usage_logs row; the database being unavailable is not an error here."""
    usage = result.usage
    try:
        async with db.get_session() as session:
            await db.log_usage(
                session,
                result.provider,
                usage.input_tokens,
                usage.output_tokens,
                result.cost_usd,
                ENDPOINTS.get(result.provider),
            )
    except Exception as exc:
        logger.warning("Usage logging skipped for %s: %s", result.provider, exc)


async def ask(
    provider: str,
    content: str,
    system_prompt: str = PROMPTS["general"],
    *,
    no_cache: bool = False,
    max_tokens: int = 2048,
) -> AIResponse:
    """Query one provider. Never raises: failures come back with success=False."""
    start = time.perf_counter()
    if provider not in AI_PROVIDERS:
        return AIResponse.failure(provider, f"Unknown AI provider: {provider}")

    service = get_service(provider)
    if not service.configured:
        return AIResponse.failure(provider, f"{API_KEY_NAMES[provider]} not configured")

    if not no_cache:
        cached = await _cached(provider, system_prompt, content)
        if cached is not None:
            logger.info("%s cache hit", provider)
            result = AIResponse.from_dict(cached)
            result.cached = True
            result.latency_ms = int((time.perf_counter() - start) * 1000)
            return result

    try:
        result = await asyncio.wait_for(
            service.chat(content, system=system_prompt, max_tokens=max_tokens),
            timeout=settings.ai_timeout_seconds,
        )
    except ProviderNotConfiguredError as exc:
        return AIResponse.failure(provider, str(exc))
    except TimeoutError:
        logger.error("%s request timed out", provider)
        return AIResponse.failure(
            provider, f"{provider} request timed out", int((time.perf_counter() - start) * 1000)
        )
    except Exception as exc:
        logger.error("%s error: %s", provider, exc)
        return AIResponse.failure(provider, str(exc), int((time.perf_counter() - start) * 1000))

    await record_usage(result)
    if not no_cache:
        await _store(provider, system_prompt, content, result)
    return result


async def ask_all(
    content: str,
    prompt_type: str = "general",
    providers: Sequence[str] = AI_PROVIDERS,
    *,
    no_cache: bool = False,
) -> dict[str, AIResponse]:
    """Query several providers in parallel, keyed by provider."""
    prompt = PROMPTS.get(prompt_type, PROMPTS["general"])
    logger.info("Querying %s in parallel (%s mode)", ", ".join(providers), prompt_type)

    results = await asyncio.gather(
        *(ask(provider, content, prompt, no_cache=no_cache) for provider in providers)
    )
    by_provider = dict(zip(providers, results, strict=True))

    total_cost = sum(r.cost_usd for r in results if r.success)
    logger.info("Completed. Total cost: $%.6f", total_cost)
    return by_provider


async def ask_with_fallback(
    content: str,
    system_prompt: str = PROMPTS["general"],
    *,
    no_cache: bool = False,
) -> AIResponse:
    """Try Claude, then GPT, then Gemini."""
    first = await ask("claude", content, system_prompt, no_cache=no_cache)
    if first.success:
        return first

    result = first
    for provider in ("gpt", "gemini"):
        logger.info("Falling back to %s", provider)
        result = await ask(provider, content, system_prompt, no_cache=no_cache)
        if result.success:
            break
    result.extra.update({"fallback": True, "original_error": first.error})
    return result


async def synthesize(combined_responses: str) -> AIResponse:
    """Ask Claude to merge several answers into one."""
    return await ask("claude", combined_responses, PROMPTS["consensus"], no_cache=True)


def get_provider_status() -> dict[str, bool]:
    return {
        "claude": bool(settings.anthropic_api_key),
        "gpt": bool(settings.openai_api_key),
        "gemini": bool(settings.gemini_api_key),
    }
