import json

import httpx
import pytest

from orchestrator import security
from orchestrator.config import settings
from orchestrator.errors import ProviderNotConfiguredError


def test_risk_level_thresholds() -> None:
    assert security.risk_level(1, 0) == "CRITICAL"
    assert security.risk_level(0, 6) == "HIGH"
    assert security.risk_level(0, 5) == "MEDIUM"
    assert security.risk_level(0, 0) == "LOW"


def test_status_reflects_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "vault_token", "s.token")
    assert security.get_status()["vault"] is False
    monkeypatch.setattr(settings, "vault_addr", "https://vault.local")
    assert security.get_status() == {
        "snyk": False,
        "sonarqube": False,
        "vault": True,
        "dependabot": False,
    }


@pytest.mark.asyncio
async def test_unconfigured_integrations_raise() -> None:
    with pytest.raises(ProviderNotConfiguredError, match="Snyk not configured"):
        await security.snyk_list_projects()
    with pytest.raises(ProviderNotConfiguredError, match="SonarQube not configured"):
        await security.sonar_get_project("key")
    with pytest.raises(ProviderNotConfiguredError, match="GitHub token not configured"):
        await security.get_dependabot_alerts("o", "r")
    with pytest.raises(ProviderNotConfiguredError, match="Vault not configured"):
        await security.vault_get_secret("secret/data/app")


@pytest.mark.asyncio
async def test_dependabot_alerts_are_reshaped(monkeypatch: pytest.MonkeyPatch, mock_http) -> None:
    monkeypatch.setattr(settings, "github_token", "ghp_test")
    seen = mock_http(
        lambda request: httpx.Response(
            200,
            json=[
                {
                    "number": 7,
                    "state": "open",
                    "security_advisory": {"severity": "high", "summary": "Prototype pollution"},
                    "dependency": {
                        "package": {"name": "lodash"},
                        "manifest_path": "package-lock.json",
                    },
                    "security_vulnerability": {
                        "vulnerable_version_range": "< 4.17.21",
                        "first_patched_version": {"identifier": "4.17.21"},
                    },
                    "created_at": "2024-01-01T00:00:00Z",
                }
            ],
        )
    )

    alerts = await security.get_dependabot_alerts("acme", "web")

    assert alerts == [
        {
            "number": 7,
            "state": "open",
            "severity": "high",
            "summary": "Prototype pollution",
            "package": "lodash",
            "manifest_path": "package-lock.json",
            "vulnerable_version_range": "< 4.17.21",
            "first_patched_version": "4.17.21",
            "created_at": "2024-01-01T00:00:00Z",
        }
    ]
    assert seen[0].url.path == "/repos/acme/web/dependabot/alerts"
    assert seen[0].url.params["state"] == "open"


@pytest.mark.asyncio
async def test_snyk_summary_totals(monkeypatch: pytest.MonkeyPatch, mock_http) -> None:
    monkeypatch.setattr(settings, "snyk_token", "snyk")
    monkeypatch.setattr(settings, "snyk_org_id", "org-1")
    mock_http(
        lambda request: httpx.Response(
            200,
            json={
                "projects": [
                    {"id": "p1", "name": "acme/web", "issueCountsBySeverity": {"critical": 2, "high": 1}},
                    {"id": "p2", "name": "acme/api", "issueCountsBySeverity": {"low": 4}},
                ]
            },
        )
    )

    summary = await security.snyk_get_summary()

    assert summary["project_count"] == 2
    assert summary["total_issues"] == {"critical": 2, "high": 1, "medium": 0, "low": 4}
    assert summary["critical_projects"] == [{"name": "acme/web", "critical": 2}]


@pytest.mark.asyncio
async def test_sonar_measures_are_numeric(monkeypatch: pytest.MonkeyPatch, mock_http) -> None:
    monkeypatch.setattr(settings, "sonarqube_token", "sq")
    mock_http(
        lambda request: httpx.Response(
            200,
            json={
                "component": {
                    "measures": [
                        {"metric": "bugs", "value": "3"},
                        {"metric": "coverage", "value": "81.5"},
                    ]
                }
            },
        )
    )

    project = await security.sonar_get_project("acme_web")

    assert project["bugs"] == 3.0
    assert project["coverage"] == 81.5
    assert project["vulnerabilities"] == 0


@pytest.mark.asyncio
async def test_vault_put_reports_failure_without_raising(
    monkeypatch: pytest.MonkeyPatch, mock_http
) -> None:
    monkeypatch.setattr(settings, "vault_addr", "https://vault.local/")
    monkeypatch.setattr(settings, "vault_token", "s.token")
    seen = mock_http(lambda request: httpx.Response(403, json={"errors": ["permission denied"]}))

    result = await security.vault_put_secret("secret/data/app", {"password": "x"})

    assert result == {"stored": False, "path": "secret/data/app"}
    assert str(seen[0].url) == "https://vault.local/v1/secret/data/app"
    assert seen[0].headers["X-Vault-Token"] == "s.token"
    assert json.loads(seen[0].content) == {"data": {"password": "x"}}


@pytest.mark.asyncio
async def test_vault_get_unwraps_kv2(monkeypatch: pytest.MonkeyPatch, mock_http) -> None:
    monkeypatch.setattr(settings, "vault_addr", "https://vault.local")
    monkeypatch.setattr(settings, "vault_token", "s.token")
    mock_http(
        lambda request: httpx.Response(
            200, json={"data": {"data": {"user": "admin"}, "metadata": {"version": 2}}}
        )
    )

    assert await security.vault_get_secret("secret/data/app") == {"user": "admin"}


@pytest.mark.asyncio
async def test_security_report_keeps_partial_results(
    monkeypatch: pytest.MonkeyPatch, mock_http
) -> None:
    monkeypatch.setattr(settings, "github_token", "ghp_test")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/dependabot/alerts"):
            return httpx.Response(
                200,
                json=[
                    {"number": 1, "security_advisory": {"severity": "critical"}},
                    {"number": 2, "security_advisory": {"severity": "high"}},
                ],
            )
        return httpx.Response(403, json={"message": "Advanced Security must be enabled"})

    mock_http(handler)

    report = await security.get_security_report("acme", "web")

    assert report["repo"] == "acme/web"
    assert len(report["dependabot"]["alerts"]) == 2
    assert report["code_scanning"]["alerts"] == []
    assert "Advanced Security must be enabled" in report["code_scanning"]["error"]
    assert report["snyk"] == {"issues": [], "error": None}
    assert report["sonar"] == {"metrics": None, "error": None}
    assert report["summary"] == {"critical_issues": 1, "high_issues": 1, "risk_level": "CRITICAL"}


@pytest.mark.asyncio
async def test_sonar_quality_gate_and_issues(monkeypatch: pytest.MonkeyPatch, mock_http) -> None:
    monkeypatch.setattr(settings, "sonarqube_token", "sq")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/qualitygates/project_status":
            return httpx.Response(
                200,
                json={
                    "projectStatus": {
                        "status": "ERROR",
                        "conditions": [
                            {
                                "metricKey": "coverage",
                                "status": "ERROR",
                                "actualValue": "42.0",
                                "errorThreshold": "80",
                            }
                        ],
                    }
                },
            )
        return httpx.Response(
            200, json={"issues": [{"key": "AX1", "type": "BUG", "severity": "MAJOR", "line": 10}]}
        )

    seen = mock_http(handler)

    gate = await security.sonar_get_quality_gate("acme_web")
    assert gate["status"] == "ERROR"
    assert gate["conditions"][0] == {
        "metric": "coverage",
        "status": "ERROR",
        "actual_value": "42.0",
        "threshold": "80",
    }

    issues = await security.sonar_get_issues("acme_web", limit=5)
    assert issues[0]["key"] == "AX1"
    assert seen[1].url.params["ps"] == "5"
    assert seen[1].headers["Authorization"] == "Bearer sq"


@pytest.mark.asyncio
async def test_snyk_test_package_limits_issues(monkeypatch: pytest.MonkeyPatch, mock_http) -> None:
    monkeypatch.setattr(settings, "snyk_token", "snyk")
    seen = mock_http(
        lambda request: httpx.Response(
            200, json={"ok": False, "issues": {"vulnerabilities": [{"id": i} for i in range(8)]}}
        )
    )

    result = await security.snyk_test_package("npm", "lodash", "4.17.15")

    assert result["ok"] is False
    assert result["issues_count"] == 8
    assert len(result["issues"]) == 5
    assert seen[0].url.path == "/v1/test/npm/lodash/4.17.15"
    assert seen[0].headers["Authorization"] == "token snyk"


@pytest.mark.asyncio
async def test_vault_list_and_delete(monkeypatch: pytest.MonkeyPatch, mock_http) -> None:
    monkeypatch.setattr(settings, "vault_addr", "https://vault.local")
    monkeypatch.setattr(settings, "vault_token", "s.token")

    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "DELETE":
            return httpx.Response(204)
        return httpx.Response(200, json={"data": {"keys": ["app", "db/"]}})

    seen = mock_http(handler)

    assert await security.vault_list_secrets("secret/metadata") == ["app", "db/"]
    assert seen[0].url.params["list"] == "true"
    assert await security.vault_delete_secret("secret/data/app") == {
        "deleted": True,
        "path": "secret/data/app",
    }


@pytest.mark.asyncio
async def test_dismiss_dependabot_alert(monkeypatch: pytest.MonkeyPatch, mock_http) -> None:
    monkeypatch.setattr(settings, "github_token", "ghp_test")
    seen = mock_http(lambda request: httpx.Response(422, json={"message": "already dismissed"}))

    result = await security.dismiss_dependabot_alert("acme", "web", 7, reason="tolerable_risk")

    assert result == {"dismissed": False, "alert_number": 7}
    body = json.loads(seen[0].content)
    assert body["state"] == "dismissed"
    assert body["dismissed_reason"] == "tolerable_risk"
