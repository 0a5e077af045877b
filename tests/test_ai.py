import asyncio

import pytest

from orchestrator import ai, redis_client
from orchestrator.config import settings
from orchestrator.providers import AIResponse


class FakeService:
    def __init__(self, provider: str, answer: str | None = "ok", *, error: Exception | None = None):
        self.provider = provider
        self.answer = answer
        self.error = error
        self.configured = True
        self.calls: list[dict] = []

    async def chat(self, prompt: str, system: str | None = None, max_tokens: int = 2048) -> AIResponse:
        self.calls.append({"prompt": prompt, "system": system, "max_tokens": max_tokens})
        if self.error is not None:
            raise self.error
        return AIResponse(
            provider=self.provider, response=self.answer, tokens_in=10, tokens_out=5, cost_usd=0.001
        )


class SlowService(FakeService):
    async def chat(self, prompt: str, system: str | None = None, max_tokens: int = 2048) -> AIResponse:
        await asyncio.sleep(1)
        return await super().chat(prompt, system, max_tokens)


@pytest.mark.asyncio
async def test_ask_missing_key_returns_failure() -> None:
    result = await ai.ask("claude", "hi")
    assert result.success is False
    assert result.error == "ANTHROPIC_API_KEY not configured"


@pytest.mark.asyncio
async def test_ask_unknown_provider_returns_failure() -> None:
    result = await ai.ask("llama", "hi")
    assert result.success is False
    assert "Unknown AI provider" in (result.error or "")


@pytest.mark.asyncio
async def test_ask_records_usage(no_usage_logging: list) -> None:
    service = FakeService("gpt", "hello")
    ai.set_service("gpt", service)

    result = await ai.ask("gpt", "hi", "be brief")

    assert result.success is True
    assert result.response == "hello"
    assert service.calls == [{"prompt": "hi", "system": "be brief", "max_tokens": 2048}]
    assert [r.provider for r in no_usage_logging] == ["gpt"]


@pytest.mark.asyncio
async def test_ask_wraps_exceptions(no_usage_logging: list) -> None:
    ai.set_service("gemini", FakeService("gemini", error=RuntimeError("quota exceeded")))

    result = await ai.ask("gemini", "hi")

    assert result.success is False
    assert result.error == "quota exceeded"
    assert no_usage_logging == []


@pytest.mark.asyncio
async def test_ask_times_out(monkeypatch: pytest.MonkeyPatch, no_usage_logging: list) -> None:
    monkeypatch.setattr(settings, "ai_timeout_seconds", 0.01)
    ai.set_service("claude", SlowService("claude"))

    result = await ai.ask("claude", "hi")

    assert result.success is False
    assert result.error == "claude request timed out"


@pytest.mark.asyncio
async def test_ask_serves_cache_hit(monkeypatch: pytest.MonkeyPatch, no_usage_logging: list) -> None:
    service = FakeService("gpt")
    ai.set_service("gpt", service)

    async def cache_get(key: str) -> dict:
        assert key.startswith("ai:gpt:")
        return AIResponse(provider="gpt", response="from cache").to_dict()

    monkeypatch.setattr(redis_client, "cache_get", cache_get)

    result = await ai.ask("gpt", "hi")

    assert result.cached is True
    assert result.response == "from cache"
    assert service.calls == []
    assert no_usage_logging == []


@pytest.mark.asyncio
async def test_ask_stores_result_in_cache(
    monkeypatch: pytest.MonkeyPatch, no_usage_logging: list
) -> None:
    stored: dict[str, dict] = {}

    async def cache_get(key: str) -> None:
        return None

    async def cache_set(key: str, value: dict, ttl_seconds: int | None = None) -> bool:
        stored[key] = value
        return True

    monkeypatch.setattr(redis_client, "cache_get", cache_get)
    monkeypatch.setattr(redis_client, "cache_set", cache_set)
    ai.set_service("claude", FakeService("claude", "fresh"))

    await ai.ask("claude", "hi")
    await ai.ask("claude", "hi", no_cache=True)

    assert len(stored) == 1
    assert next(iter(stored.values()))["response"] == "fresh"


@pytest.mark.asyncio
async def test_ask_all_keys_results_by_provider(no_usage_logging: list) -> None:
    ai.set_service("claude", FakeService("claude", "c"))
    ai.set_service("gpt", FakeService("gpt", error=RuntimeError("down")))

    results = await ai.ask_all("question", "review")

    assert list(results) == ["claude", "gpt", "gemini"]
    assert results["claude"].response == "c"
    assert results["gpt"].success is False
    assert results["gemini"].error == "GEMINI_API_KEY not configured"


@pytest.mark.asyncio
async def test_ask_all_uses_prompt_template(no_usage_logging: list) -> None:
    service = FakeService("claude")
    ai.set_service("claude", service)

    await ai.ask_all("plan", "challenge", providers=("claude",))

    assert service.calls[0]["system"] == ai.PROMPTS["challenge"]


@pytest.mark.asyncio
async def test_ask_with_fallback_marks_fallback(no_usage_logging: list) -> None:
    ai.set_service("claude", FakeService("claude", error=RuntimeError("overloaded")))
    ai.set_service("gpt", FakeService("gpt", "backup"))

    result = await ai.ask_with_fallback("hi")

    assert result.provider == "gpt"
    assert result.response == "backup"
    assert result.extra == {"fallback": True, "original_error": "overloaded"}


@pytest.mark.asyncio
async def test_ask_with_fallback_first_success_untouched(no_usage_logging: list) -> None:
    ai.set_service("claude", FakeService("claude", "primary"))
    result = await ai.ask_with_fallback("hi")
    assert result.provider == "claude"
    assert result.extra == {}


def test_provider_status(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "openai_api_key", "sk-test")
    assert ai.get_provider_status() == {"claude": False, "gpt": True, "gemini": False}
