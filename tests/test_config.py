import pytest

from orchestrator.config import Settings


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("postgres://u:p@db:5432/app", "postgresql+asyncpg://u:p@db:5432/app"),
        ("postgresql://u:p@db:5432/app", "postgresql+asyncpg://u:p@db:5432/app"),
        ("postgresql+asyncpg://u:p@db:5432/app", "postgresql+asyncpg://u:p@db:5432/app"),
    ],
)
def test_database_url_uses_async_driver(url: str, expected: str) -> None:
    assert Settings(database_url=url).database_url == expected


def test_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("PORT", raising=False)
    monkeypatch.delenv("SONARQUBE_URL", raising=False)
    config = Settings(_env_file=None)
    assert config.port == 3000
    assert config.sonarqube_url == "https://sonarcloud.io"
    assert config.ai_cache_ttl_seconds == 300
