"""Regex scanners for hardcoded secrets and insecure code patterns."""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any

SECRET_PATTERNS: list[tuple[str, re.Pattern[str]]] = [
    ("AWS Access Key", re.compile(r"AKIA[0-9A-Z]{16}")),
    ("AWS Secret Key", re.compile(r"[A-Za-z0-9/+=]{40}")),
    ("GitHub Token", re.compile(r"ghp_[A-Za-z0-9]{36}")),
    ("GitHub OAuth", re.compile(r"gho_[A-Za-z0-9]{36}")),
    ("Slack Token", re.compile(r"xox[baprs]-[A-Za-z0-9-]+")),
    ("Private Key", re.compile(r"-----BEGIN (?:RSA |EC |DSA )?PRIVATE KEY-----")),
    ("Generic API Key", re.compile(r"""api[_-]?key["\s:=]+["']?[A-Za-z0-9_-]{20,}["']?""", re.I)),
    ("Generic Secret", re.compile(r"""secret["\s:=]+["']?[A-Za-z0-9_-]{20,}["']?""", re.I)),
    ("Password", re.compile(r"""password["\s:=]+["']?[^\s"']{8,}["']?""", re.I)),
    ("Bearer Token", re.compile(r"Bearer\s+[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")),
    ("JWT", re.compile(r"eyJ[A-Za-z0-9_-]+\.eyJ[A-Za-z0-9_-]+\.[A-Za-z0-9_-]+")),
]

ANTI_PATTERNS: dict[str, list[tuple[str, re.Pattern[str], str]]] = {
    "javascript": [
        ("eval() usage", re.compile(r"\beval\s*\("), "high"),
        ("innerHTML assignment", re.compile(r"\.innerHTML\s*="), "medium"),
        ("document.write", re.compile(r"document\.write\s*\("), "medium"),
        ("SQL concatenation", re.compile(r"""["'`]SELECT.*\+.*["'`]""", re.I), "high"),
        (
            "Hardcoded credentials",
            re.compile(r"""(?:password|secret|key)\s*[:=]\s*["'][^"']+["']""", re.I),
            "critical",
        ),
        ("HTTP (not HTTPS)", re.compile(r"""http://[^"'\s]+"""), "low"),
        (
            "console.log with sensitive",
            re.compile(r"console\.log.*\b(?:password|token|key|secret)\b", re.I),
            "medium",
        ),
    ],
    "python": [
        ("exec() usage", re.compile(r"\bexec\s*\("), "high"),
        ("pickle.loads", re.compile(r"pickle\.loads?\s*\("), "high"),
        ("SQL concatenation", re.compile(r"""["']SELECT.*%s.*["']""", re.I), "high"),
        (
            "Shell injection",
            re.compile(r"subprocess\.(?:call|run|Popen).*shell\s*=\s*True"),
            "critical",
        ),
    ],
}

SEVERITY_WEIGHTS = {"critical": 30, "high": 15, "medium": 5, "low": 1}


def _sample(match: str) -> str:
    return match[:20] + "..."


def scan_for_secrets(code: str) -> dict[str, Any]:
    findings = []
    for name, pattern in SECRET_PATTERNS:
        matches = [m.group(0) for m in pattern.finditer(code)]
        if matches:
            findings.append(
                {
                    "type": name,
                    "count": len(matches),
                    "samples": [_sample(m) for m in matches[:2]],
                }
            )
    return {"has_secrets": bool(findings), "findings": findings}


def scan_for_anti_patterns(code: str, language: str = "javascript") -> dict[str, Any]:
    """Unknown languages are checked with the JavaScript rules."""
    rules = ANTI_PATTERNS.get(language, ANTI_PATTERNS["javascript"])
    findings = []
    for name, pattern, severity in rules:
        count = sum(1 for _ in pattern.finditer(code))
        if count:
            findings.append({"name": name, "severity": severity, "count": count})
    return {"score": calculate_security_score(findings), "findings": findings}


def calculate_security_score(findings: Iterable[dict[str, Any]]) -> int:
    """100 minus the weighted findings, floored at 0 (unknown severities weigh 5)."""
    penalty = sum(
        SEVERITY_WEIGHTS.get(f.get("severity", ""), 5) * int(f.get("count", 0)) for f in findings
    )
    return max(0, 100 - penalty)
