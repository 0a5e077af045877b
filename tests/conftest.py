"""Shared test fixtures and configuration for pytest."""

from collections.abc import Callable, Generator

import httpx
import pytest

from orchestrator import ai, http, perplexity
from orchestrator.config import settings
from orchestrator.models import AI_PROVIDERS

Handler = Callable[[httpx.Request], httpx.Response]

PROVIDER_KEYS = (
    "openai_api_key",
    "anthropic_api_key",
    "gemini_api_key",
    "perplexity_api_key",
    "stability_api_key",
    "elevenlabs_api_key",
    "snyk_token",
    "snyk_org_id",
    "sonarqube_token",
    "github_token",
    "vault_addr",
    "vault_token",
    "slack_bot_token",
    "slack_signing_secret",
    "slack_app_token",
)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    """Start every test with no credentials and no caches."""
    for key in PROVIDER_KEYS:
        monkeypatch.setattr(settings, key, None)
    monkeypatch.setattr(settings, "redis_cache_enabled", False)
    monkeypatch.setattr(settings, "ai_db_cache_enabled", False)


@pytest.fixture(autouse=True)
def reset_services() -> Generator[None]:
    yield
    for provider in AI_PROVIDERS:
        ai.set_service(provider, None)
    perplexity.set_clients(None, None)
    perplexity.clear_history()


@pytest.fixture
def mock_http() -> Generator[Callable[[Handler], list[httpx.Request]]]:
    """Route the shared HTTP client through a handler; returns the recorded requests."""

    def install(handler: Handler) -> list[httpx.Request]:
        seen: list[httpx.Request] = []

        def record(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return handler(request)

        http.set_client(httpx.AsyncClient(transport=httpx.MockTransport(record)))
        return seen

    yield install
    http.set_client(None)


@pytest.fixture
def no_usage_logging(monkeypatch: pytest.MonkeyPatch) -> list:
    """Capture usage records instead of writing them to Postgres."""
    recorded: list = []

    async def fake_record(result) -> None:
        recorded.append(result)

    monkeypatch.setattr(ai, "record_usage", fake_record)
    return recorded
