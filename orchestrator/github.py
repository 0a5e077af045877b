"""GitHub REST helpers for repositories, files, issues and pull requests."""

from __future__ import annotations

import base64
import logging
from typing import Any

from . import db, http
from .config import settings
from .errors import ProviderAPIError, ProviderNotConfiguredError

logger = logging.getLogger(__name__)

GITHUB_API = "https://api.github.com"
USER_AGENT = "Cloud-Orchestrator/1.0"


def is_configured() -> bool:
    return bool(settings.github_token)


def _headers() -> dict[str, str]:
    if not settings.github_token:
        raise ProviderNotConfiguredError("GITHUB_TOKEN not configured")
    return {
        "Authorization": f"Bearer {settings.github_token}",
        "Accept": "application/vnd.github.v3+json",
        "User-Agent": USER_AGENT,
    }


async def _get(path: str, params: dict[str, Any] | None = None) -> Any:
    return await http.request_json("GET", f"{GITHUB_API}{path}", headers=_headers(), params=params)


# =============================================================================
# Repositories and files
# =============================================================================


async def list_repos(per_page: int = 30) -> list[dict[str, Any]]:
    repos = await _get("/user/repos", {"per_page": per_page, "sort": "updated"})
    return [
        {
            "name": r.get("full_name"),
            "description": r.get("description"),
            "url": r.get("html_url"),
            "language": r.get("language"),
            "updated_at": r.get("updated_at"),
            "is_private": r.get("private"),
        }
        for r in repos or []
    ]


async def get_repo(owner: str, repo: str) -> dict[str, Any]:
    return await _get(f"/repos/{owner}/{repo}")


async def list_files(owner: str, repo: str, path: str = "") -> list[dict[str, Any]]:
    suffix = f"/contents/{path}" if path else "/contents"
    contents = await _get(f"/repos/{owner}/{repo}{suffix}")
    entries = contents if isinstance(contents, list) else [contents or {}]
    return [{"name": f.get("name"), "type": f.get("type"), "path": f.get("path")} for f in entries]


async def read_file(owner: str, repo: str, path: str) -> dict[str, Any]:
    """Fetch and base64-decode a single file."""
    data = await _get(f"/repos/{owner}/{repo}/contents/{path}")
    if not isinstance(data, dict) or data.get("type") != "file":
        raise ValueError("Path is not a file")
    content = base64.b64decode(data.get("content") or "").decode("utf-8")
    return {
        "content": content,
        "sha": data.get("sha"),
        "size": data.get("size"),
        "path": data.get("path"),
    }


# =============================================================================
# Commits
# =============================================================================


async def get_commits(owner: str, repo: str, per_page: int = 10) -> list[dict[str, Any]]:
    commits = await _get(f"/repos/{owner}/{repo}/commits", {"per_page": per_page})
    return [
        {
            "sha": c["sha"][:7],
            "message": c["commit"]["message"].split("\n")[0],
            "author": c["commit"]["author"]["name"],
            "date": c["commit"]["author"]["date"],
        }
        for c in commits or []
    ]


async def _record_change(
    owner: str,
    repo: str,
    path: str,
    action: str,
    *,
    old_content: str | None,
    new_content: str | None,
    message: str,
    user_id: str | None,
    commit_sha: str | None,
) -> None:
    try:
        async with db.get_session() as session:
            await db.log_change_history(
                session,
                f"{owner}/{repo}",
                path,
                action,
                old_content=old_content,
                new_content=new_content,
                message=message,
                user_id=user_id,
                commit_sha=commit_sha,
            )
    except Exception as exc:
        logger.warning("Could not record %s of %s/%s:%s: %s", action, owner, repo, path, exc)


async def _current_content(owner: str, repo: str, path: str) -> str | None:
    try:
        return (await read_file(owner, repo, path))["content"]
    except (ProviderAPIError, ValueError, UnicodeDecodeError) as exc:
        logger.info("No previous content for %s/%s:%s (%s)", owner, repo, path, exc)
        return None


async def create_or_update_file(
    owner: str,
    repo: str,
    path: str,
    content: str,
    message: str,
    sha: str | None = None,
    *,
    user_id: str | None = None,
) -> dict[str, Any]:
    """Commit a file; passing ``sha`` updates an existing file.

    Every successful write is recorded in change_history with the previous
    content so it can be rolled back.
    """
    headers = _headers()
    old_content = await _current_content(owner, repo, path) if sha else None

    body: dict[str, Any] = {
        "message": message,
        "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
    }
    if sha:
        body["sha"] = sha

    result = await http.request_json(
        "PUT", f"{GITHUB_API}/repos/{owner}/{repo}/contents/{path}", headers=headers, json_body=body
    )
    commit_sha = ((result or {}).get("commit") or {}).get("sha")
    await _record_change(
        owner,
        repo,
        path,
        "update" if sha else "create",
        old_content=old_content,
        new_content=content,
        message=message,
        user_id=user_id,
        commit_sha=commit_sha,
    )
    return result


async def delete_file(
    owner: str,
    repo: str,
    path: str,
    message: str,
    sha: str,
    *,
    user_id: str | None = None,
) -> dict[str, Any]:
    headers = _headers()
    old_content = await _current_content(owner, repo, path)
    result = await http.request_json(
        "DELETE",
        f"{GITHUB_API}/repos/{owner}/{repo}/contents/{path}",
        headers=headers,
        json_body={"message": message, "sha": sha},
    )
    commit_sha = ((result or {}).get("commit") or {}).get("sha")
    await _record_change(
        owner,
        repo,
        path,
        "delete",
        old_content=old_content,
        new_content=None,
        message=message,
        user_id=user_id,
        commit_sha=commit_sha,
    )
    return result or {}


# =============================================================================
# Issues, pull requests, branches
# =============================================================================


async def list_issues(
    owner: str, repo: str, state: str = "open", per_page: int = 10
) -> list[dict[str, Any]]:
    issues = await _get(f"/repos/{owner}/{repo}/issues", {"state": state, "per_page": per_page})
    return [
        {
            "number": i.get("number"),
            "title": i.get("title"),
            "state": i.get("state"),
            "author": (i.get("user") or {}).get("login"),
            "created_at": i.get("created_at"),
            "labels": [label.get("name") for label in i.get("labels") or []],
        }
        for i in issues or []
    ]


async def create_issue(
    owner: str, repo: str, title: str, body: str, labels: list[str] | None = None
) -> dict[str, Any]:
    issue = await http.request_json(
        "POST",
        f"{GITHUB_API}/repos/{owner}/{repo}/issues",
        headers=_headers(),
        json_body={"title": title, "body": body, "labels": labels or []},
    )
    return {"number": issue.get("number"), "url": issue.get("html_url"), "title": issue.get("title")}


async def list_pull_requests(
    owner: str, repo: str, state: str = "open", per_page: int = 10
) -> list[dict[str, Any]]:
    prs = await _get(f"/repos/{owner}/{repo}/pulls", {"state": state, "per_page": per_page})
    return [
        {
            "number": p.get("number"),
            "title": p.get("title"),
            "state": p.get("state"),
            "author": (p.get("user") or {}).get("login"),
            "created_at": p.get("created_at"),
            "head": (p.get("head") or {}).get("ref"),
            "base": (p.get("base") or {}).get("ref"),
        }
        for p in prs or []
    ]


async def list_branches(owner: str, repo: str) -> list[dict[str, Any]]:
    branches = await _get(f"/repos/{owner}/{repo}/branches")
    return [
        {
            "name": b.get("name"),
            "sha": ((b.get("commit") or {}).get("sha") or "")[:7],
            "protected": b.get("protected"),
        }
        for b in branches or []
    ]


async def search_code(query: str, per_page: int = 10) -> list[dict[str, Any]]:
    data = await _get("/search/code", {"q": query, "per_page": per_page})
    return [
        {
            "name": i.get("name"),
            "path": i.get("path"),
            "repo": (i.get("repository") or {}).get("full_name"),
            "url": i.get("html_url"),
        }
        for i in (data or {}).get("items") or []
    ]


async def get_authenticated_user() -> dict[str, Any] | None:
    """The token's user, or None when unconfigured or the call fails."""
    if not is_configured():
        return None
    try:
        user = await _get("/user")
    except ProviderAPIError as exc:
        logger.info("GitHub user lookup failed: %s", exc)
        return None
    return {
        "login": user.get("login"),
        "name": user.get("name"),
        "repos": (user.get("public_repos") or 0) + (user.get("total_private_repos") or 0),
    }
