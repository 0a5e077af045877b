"""
Vulnerability, code-quality and secrets-management integrations.

Snyk, SonarQube/SonarCloud, GitHub Dependabot and code scanning, and
HashiCorp Vault KV. :func:`get_security_report` merges the first four into
a single per-repository report with a derived risk level.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from datetime import UTC, datetime
from typing import Any

from . import http
from .config import settings
from .errors import ProviderNotConfiguredError

logger = logging.getLogger(__name__)

SNYK_API = "https://api.snyk.io/v1"
GITHUB_API = "https://api.github.com"
SONAR_METRICS = "bugs,vulnerabilities,code_smells,coverage,duplicated_lines_density,security_hotspots"


def get_status() -> dict[str, bool]:
    return {
        "snyk": bool(settings.snyk_token),
        "sonarqube": bool(settings.sonarqube_token),
        "vault": bool(settings.vault_token and settings.vault_addr),
        "dependabot": bool(settings.github_token),
    }


# =============================================================================
# Snyk
# =============================================================================


def _snyk_headers(require_org: bool = True) -> dict[str, str]:
    if not settings.snyk_token or (require_org and not settings.snyk_org_id):
        raise ProviderNotConfiguredError("Snyk not configured")
    return {"Authorization": f"token {settings.snyk_token}"}


async def snyk_list_projects() -> list[dict[str, Any]]:
    headers = _snyk_headers()
    data = await http.request_json(
        "GET", f"{SNYK_API}/org/{settings.snyk_org_id}/projects", headers=headers
    )
    projects = []
    for p in (data or {}).get("projects") or []:
        counts = p.get("issueCountsBySeverity") or {}
        projects.append(
            {
                "id": p.get("id"),
                "name": p.get("name") or "",
                "origin": p.get("origin"),
                "type": p.get("type"),
                "issue_count": {
                    sev: counts.get(sev) or 0 for sev in ("critical", "high", "medium", "low")
                },
                "last_tested_date": p.get("lastTestedDate"),
            }
        )
    return projects


async def snyk_get_issues(project_id: str, severity: str | None = None) -> list[dict[str, Any]]:
    headers = _snyk_headers()
    filters: dict[str, Any] = {"exploitMaturity": ["mature", "proof-of-concept"]}
    if severity:
        filters["severity"] = [severity]

    data = await http.request_json(
        "POST",
        f"{SNYK_API}/org/{settings.snyk_org_id}/project/{project_id}/aggregated-issues",
        headers={**headers, "Content-Type": "application/json"},
        json_body={"filters": filters},
    )
    issues = []
    for i in (data or {}).get("issues") or []:
        issue_data = i.get("issueData") or {}
        fix_info = i.get("fixInfo") or {}
        issues.append(
            {
                "id": i.get("id"),
                "title": issue_data.get("title"),
                "severity": issue_data.get("severity"),
                "exploit_maturity": issue_data.get("exploitMaturity"),
                "description": issue_data.get("description"),
                "package_name": i.get("pkgName"),
                "version": i.get("pkgVersion"),
                "fixed_in": fix_info.get("nearestFixedInVersion"),
                "is_upgradable": fix_info.get("isUpgradable"),
            }
        )
    return issues


async def snyk_test_package(package_manager: str, package_name: str, version: str) -> dict[str, Any]:
    headers = _snyk_headers(require_org=False)
    data = await http.request_json(
        "GET", f"{SNYK_API}/test/{package_manager}/{package_name}/{version}", headers=headers
    )
    data = data or {}
    vulnerabilities = (data.get("issues") or {}).get("vulnerabilities") or []
    return {
        "ok": data.get("ok"),
        "issues_count": len(vulnerabilities),
        "issues": vulnerabilities[:5],
    }


async def snyk_get_summary() -> dict[str, Any]:
    projects = await snyk_list_projects()
    totals = {"critical": 0, "high": 0, "medium": 0, "low": 0}
    critical_projects = []
    for project in projects:
        for sev in totals:
            totals[sev] += project["issue_count"][sev]
        if project["issue_count"]["critical"] > 0:
            critical_projects.append(
                {"name": project["name"], "critical": project["issue_count"]["critical"]}
            )
    return {
        "project_count": len(projects),
        "total_issues": totals,
        "critical_projects": critical_projects,
    }


# =============================================================================
# SonarQube / SonarCloud
# =============================================================================


def _sonar_headers() -> dict[str, str]:
    if not settings.sonarqube_token:
        raise ProviderNotConfiguredError("SonarQube not configured")
    return {"Authorization": f"Bearer {settings.sonarqube_token}"}


def _measure_value(raw: Any) -> Any:
    try:
        return float(raw)
    except (TypeError, ValueError):
        return raw


async def sonar_get_project(project_key: str) -> dict[str, Any]:
    headers = _sonar_headers()
    data = await http.request_json(
        "GET",
        f"{settings.sonarqube_url}/api/measures/component",
        headers=headers,
        params={"component": project_key, "metricKeys": SONAR_METRICS},
    )
    measures = {
        m.get("metric"): _measure_value(m.get("value"))
        for m in ((data or {}).get("component") or {}).get("measures") or []
    }
    return {
        "key": project_key,
        "bugs": measures.get("bugs", 0),
        "vulnerabilities": measures.get("vulnerabilities", 0),
        "code_smells": measures.get("code_smells", 0),
        "coverage": measures.get("coverage", 0),
        "duplication": measures.get("duplicated_lines_density", 0),
        "security_hotspots": measures.get("security_hotspots", 0),
    }


async def sonar_get_issues(
    project_key: str, types: str = "BUG,VULNERABILITY,CODE_SMELL", limit: int = 20
) -> list[dict[str, Any]]:
    headers = _sonar_headers()
    data = await http.request_json(
        "GET",
        f"{settings.sonarqube_url}/api/issues/search",
        headers=headers,
        params={
            "componentKeys": project_key,
            "types": types,
            "ps": str(limit),
            "s": "SEVERITY",
            "asc": "false",
        },
    )
    return [
        {
            "key": i.get("key"),
            "type": i.get("type"),
            "severity": i.get("severity"),
            "message": i.get("message"),
            "component": i.get("component"),
            "line": i.get("line"),
            "status": i.get("status"),
            "effort": i.get("effort"),
        }
        for i in (data or {}).get("issues") or []
    ]


async def sonar_get_quality_gate(project_key: str) -> dict[str, Any]:
    headers = _sonar_headers()
    data = await http.request_json(
        "GET",
        f"{settings.sonarqube_url}/api/qualitygates/project_status",
        headers=headers,
        params={"projectKey": project_key},
    )
    status = (data or {}).get("projectStatus") or {}
    return {
        "status": status.get("status"),
        "conditions": [
            {
                "metric": c.get("metricKey"),
                "status": c.get("status"),
                "actual_value": c.get("actualValue"),
                "threshold": c.get("errorThreshold"),
            }
            for c in status.get("conditions") or []
        ],
    }


# =============================================================================
# GitHub Dependabot / code scanning
# =============================================================================


def _github_headers() -> dict[str, str]:
    if not settings.github_token:
        raise ProviderNotConfiguredError("GitHub token not configured")
    return {
        "Authorization": f"Bearer {settings.github_token}",
        "Accept": "application/vnd.github+json",
    }


async def get_dependabot_alerts(owner: str, repo: str, state: str = "open") -> list[dict[str, Any]]:
    headers = _github_headers()
    data = await http.request_json(
        "GET",
        f"{GITHUB_API}/repos/{owner}/{repo}/dependabot/alerts",
        headers=headers,
        params={"state": state, "per_page": 50},
    )
    if not isinstance(data, list):
        return []
    alerts = []
    for a in data:
        advisory = a.get("security_advisory") or {}
        dependency = a.get("dependency") or {}
        vulnerability = a.get("security_vulnerability") or {}
        alerts.append(
            {
                "number": a.get("number"),
                "state": a.get("state"),
                "severity": advisory.get("severity"),
                "summary": advisory.get("summary"),
                "package": (dependency.get("package") or {}).get("name"),
                "manifest_path": dependency.get("manifest_path"),
                "vulnerable_version_range": vulnerability.get("vulnerable_version_range"),
                "first_patched_version": (vulnerability.get("first_patched_version") or {}).get(
                    "identifier"
                ),
                "created_at": a.get("created_at"),
            }
        )
    return alerts


async def dismiss_dependabot_alert(
    owner: str, repo: str, alert_number: int, reason: str = "not_used"
) -> dict[str, Any]:
    headers = _github_headers()
    resp = await http.request(
        "PATCH",
        f"{GITHUB_API}/repos/{owner}/{repo}/dependabot/alerts/{alert_number}",
        headers={**headers, "Content-Type": "application/json"},
        json_body={
            "state": "dismissed",
            "dismissed_reason": reason,
            "dismissed_comment": "Dismissed via Slack bot",
        },
        raise_for_status=False,
    )
    return {"dismissed": resp.is_success, "alert_number": alert_number}


async def get_code_scanning_alerts(
    owner: str, repo: str, state: str = "open"
) -> list[dict[str, Any]]:
    headers = _github_headers()
    data = await http.request_json(
        "GET",
        f"{GITHUB_API}/repos/{owner}/{repo}/code-scanning/alerts",
        headers=headers,
        params={"state": state, "per_page": 50},
    )
    if not isinstance(data, list):
        return []
    alerts = []
    for a in data:
        rule = a.get("rule") or {}
        location = (a.get("most_recent_instance") or {}).get("location") or {}
        alerts.append(
            {
                "number": a.get("number"),
                "state": a.get("state"),
                "severity": rule.get("security_severity_level") or rule.get("severity"),
                "description": rule.get("description"),
                "tool": (a.get("tool") or {}).get("name"),
                "file": location.get("path"),
                "line": location.get("start_line"),
                "created_at": a.get("created_at"),
            }
        )
    return alerts


# =============================================================================
# HashiCorp Vault
# =============================================================================


def _vault_headers() -> dict[str, str]:
    if not settings.vault_token or not settings.vault_addr:
        raise ProviderNotConfiguredError("Vault not configured")
    return {"X-Vault-Token": settings.vault_token}


def _vault_url(path: str) -> str:
    return f"{settings.vault_addr.rstrip('/')}/v1/{path.lstrip('/')}"


async def vault_get_secret(path: str) -> dict[str, Any] | None:
    """Read a secret; KV v2 payloads are unwrapped from ``data.data``."""
    headers = _vault_headers()
    data = await http.request_json("GET", _vault_url(path), headers=headers)
    payload = (data or {}).get("data")
    if isinstance(payload, dict) and isinstance(payload.get("data"), dict):
        return payload["data"]
    return payload or None


async def vault_put_secret(path: str, secret: dict[str, Any]) -> dict[str, Any]:
    headers = _vault_headers()
    resp = await http.request(
        "POST",
        _vault_url(path),
        headers={**headers, "Content-Type": "application/json"},
        json_body={"data": secret},
        raise_for_status=False,
    )
    return {"stored": resp.is_success, "path": path}


async def vault_list_secrets(path: str) -> list[str]:
    headers = _vault_headers()
    data = await http.request_json(
        "GET", _vault_url(path), headers=headers, params={"list": "true"}
    )
    return list(((data or {}).get("data") or {}).get("keys") or [])


async def vault_delete_secret(path: str) -> dict[str, Any]:
    headers = _vault_headers()
    resp = await http.request("DELETE", _vault_url(path), headers=headers, raise_for_status=False)
    return {"deleted": resp.is_success, "path": path}


# =============================================================================
# Aggregated report
# =============================================================================


def risk_level(critical: int, high: int) -> str:
    if critical > 0:
        return "CRITICAL"
    if high > 5:
        return "HIGH"
    if high > 0:
        return "MEDIUM"
    return "LOW"


async def _snyk_issues_for_repo(repo: str) -> list[dict[str, Any]]:
    projects = await snyk_list_projects()
    project = next((p for p in projects if repo in p["name"]), None)
    if project is None:
        return []
    return await snyk_get_issues(project["id"])


async def _section(key: str, call: Awaitable[Any]) -> tuple[str, Any, str | None]:
    try:
        return key, await call, None
    except Exception as exc:
        logger.warning("Security report section %s failed: %s", key, exc)
        return key, None, str(exc)


async def get_security_report(owner: str, repo: str) -> dict[str, Any]:
    """Merge Dependabot, code scanning, Snyk and SonarQube data for one repo."""
    report: dict[str, Any] = {
        "repo": f"{owner}/{repo}",
        "timestamp": datetime.now(UTC).isoformat(),
        "dependabot": {"alerts": [], "error": None},
        "code_scanning": {"alerts": [], "error": None},
        "snyk": {"issues": [], "error": None},
        "sonar": {"metrics": None, "error": None},
    }

    calls = [
        _section("dependabot", get_dependabot_alerts(owner, repo)),
        _section("code_scanning", get_code_scanning_alerts(owner, repo)),
    ]
    if settings.snyk_token and settings.snyk_org_id:
        calls.append(_section("snyk", _snyk_issues_for_repo(repo)))
    if settings.sonarqube_token:
        calls.append(_section("sonar", sonar_get_project(f"{owner}_{repo}")))

    field_for = {
        "dependabot": "alerts",
        "code_scanning": "alerts",
        "snyk": "issues",
        "sonar": "metrics",
    }
    for key, value, error in await asyncio.gather(*calls):
        if error is not None:
            report[key]["error"] = error
        else:
            report[key][field_for[key]] = value

    items = (
        report["dependabot"]["alerts"] + report["code_scanning"]["alerts"] + report["snyk"]["issues"]
    )
    critical = sum(1 for i in items if i.get("severity") == "critical")
    high = sum(1 for i in items if i.get("severity") == "high")
    report["summary"] = {
        "critical_issues": critical,
        "high_issues": high,
        "risk_level": risk_level(critical, high),
    }
    return report
