import base64
import json

import httpx
import pytest

from orchestrator import github
from orchestrator.config import settings
from orchestrator.errors import ProviderNotConfiguredError


@pytest.fixture
def github_token(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "github_token", "ghp_test")


@pytest.fixture
def recorded_changes(monkeypatch: pytest.MonkeyPatch) -> list[dict]:
    changes: list[dict] = []

    async def record(owner, repo, path, action, **fields) -> None:
        changes.append({"repo": f"{owner}/{repo}", "path": path, "action": action, **fields})

    monkeypatch.setattr(github, "_record_change", record)
    return changes


def _encoded(text: str) -> str:
    return base64.b64encode(text.encode()).decode()


@pytest.mark.asyncio
async def test_requires_token() -> None:
    assert github.is_configured() is False
    assert await github.get_authenticated_user() is None
    with pytest.raises(ProviderNotConfiguredError, match="GITHUB_TOKEN not configured"):
        await github.list_repos()


@pytest.mark.asyncio
async def test_read_file_decodes_content(github_token, mock_http) -> None:
    seen = mock_http(
        lambda request: httpx.Response(
            200,
            json={
                "type": "file",
                "content": _encoded("print('hi')\n"),
                "sha": "abc123",
                "size": 12,
                "path": "app.py",
            },
        )
    )

    result = await github.read_file("acme", "web", "app.py")

    assert result == {"content": "print('hi')\n", "sha": "abc123", "size": 12, "path": "app.py"}
    assert seen[0].headers["User-Agent"] == "Cloud-Orchestrator/1.0"
    assert seen[0].headers["Authorization"] == "Bearer ghp_test"


@pytest.mark.asyncio
async def test_read_file_rejects_directories(github_token, mock_http) -> None:
    mock_http(lambda request: httpx.Response(200, json=[{"name": "src", "type": "dir"}]))

    with pytest.raises(ValueError, match="Path is not a file"):
        await github.read_file("acme", "web", "src")


@pytest.mark.asyncio
async def test_get_commits_shortens_sha(github_token, mock_http) -> None:
    mock_http(
        lambda request: httpx.Response(
            200,
            json=[
                {
                    "sha": "0123456789abcdef",
                    "commit": {
                        "message": "Fix login\n\nLong body",
                        "author": {"name": "dev", "date": "2024-05-01T10:00:00Z"},
                    },
                }
            ],
        )
    )

    commits = await github.get_commits("acme", "web")

    assert commits == [
        {"sha": "0123456", "message": "Fix login", "author": "dev", "date": "2024-05-01T10:00:00Z"}
    ]


@pytest.mark.asyncio
async def test_create_file_records_change(github_token, mock_http, recorded_changes) -> None:
    seen = mock_http(lambda request: httpx.Response(201, json={"commit": {"sha": "c0ffee"}}))

    await github.create_or_update_file(
        "acme", "web", "README.md", "# Hello", "Add readme", user_id="U123"
    )

    body = json.loads(seen[0].content)
    assert seen[0].method == "PUT"
    assert base64.b64decode(body["content"]).decode() == "# Hello"
    assert "sha" not in body
    assert recorded_changes == [
        {
            "repo": "acme/web",
            "path": "README.md",
            "action": "create",
            "old_content": None,
            "new_content": "# Hello",
            "message": "Add readme",
            "user_id": "U123",
            "commit_sha": "c0ffee",
        }
    ]


@pytest.mark.asyncio
async def test_update_file_keeps_previous_content(
    github_token, mock_http, recorded_changes
) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(
                200, json={"type": "file", "content": _encoded("old"), "sha": "s1", "path": "a.txt"}
            )
        return httpx.Response(200, json={"commit": {"sha": "s2"}})

    mock_http(handler)

    await github.create_or_update_file("acme", "web", "a.txt", "new", "Update", sha="s1")

    change = recorded_changes[0]
    assert change["action"] == "update"
    assert change["old_content"] == "old"
    assert change["commit_sha"] == "s2"


@pytest.mark.asyncio
async def test_authenticated_user_swallows_api_errors(github_token, mock_http) -> None:
    mock_http(lambda request: httpx.Response(401, json={"message": "Bad credentials"}))
    assert await github.get_authenticated_user() is None


@pytest.mark.asyncio
async def test_search_code(github_token, mock_http) -> None:
    seen = mock_http(
        lambda request: httpx.Response(
            200,
            json={
                "items": [
                    {
                        "name": "db.py",
                        "path": "app/db.py",
                        "repository": {"full_name": "acme/web"},
                        "html_url": "https://github.com/acme/web/blob/main/app/db.py",
                    }
                ]
            },
        )
    )

    hits = await github.search_code("create_engine repo:acme/web")

    assert hits[0]["repo"] == "acme/web"
    assert seen[0].url.params["q"] == "create_engine repo:acme/web"


@pytest.mark.asyncio
async def test_delete_file_records_old_content(github_token, mock_http, recorded_changes) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            return httpx.Response(200, json={"type": "file", "content": _encoded("bye")})
        assert json.loads(request.content) == {"message": "Remove", "sha": "s9"}
        return httpx.Response(200, json={"commit": {"sha": "d1"}})

    mock_http(handler)

    await github.delete_file("acme", "web", "old.txt", "Remove", "s9", user_id="U9")

    assert recorded_changes[0]["action"] == "delete"
    assert recorded_changes[0]["old_content"] == "bye"
    assert recorded_changes[0]["new_content"] is None


@pytest.mark.asyncio
async def test_issue_and_branch_listings(github_token, mock_http) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.endswith("/issues") and request.method == "POST":
            return httpx.Response(
                201, json={"number": 12, "html_url": "https://github.com/acme/web/issues/12", "title": "Bug"}
            )
        if path.endswith("/issues"):
            return httpx.Response(
                200,
                json=[
                    {
                        "number": 3,
                        "title": "Crash",
                        "state": "open",
                        "user": {"login": "dev"},
                        "labels": [{"name": "bug"}],
                    }
                ],
            )
        if path.endswith("/pulls"):
            return httpx.Response(
                200,
                json=[{"number": 4, "title": "Fix", "head": {"ref": "fix"}, "base": {"ref": "main"}}],
            )
        if path.endswith("/branches"):
            return httpx.Response(
                200, json=[{"name": "main", "commit": {"sha": "abcdef123"}, "protected": True}]
            )
        return httpx.Response(200, json=[{"name": "src", "type": "dir", "path": "src"}])

    mock_http(handler)

    issues = await github.list_issues("acme", "web")
    assert issues[0]["author"] == "dev"
    assert issues[0]["labels"] == ["bug"]

    created = await github.create_issue("acme", "web", "Bug", "details")
    assert created == {"number": 12, "url": "https://github.com/acme/web/issues/12", "title": "Bug"}

    prs = await github.list_pull_requests("acme", "web")
    assert (prs[0]["head"], prs[0]["base"]) == ("fix", "main")

    branches = await github.list_branches("acme", "web")
    assert branches == [{"name": "main", "sha": "abcdef1", "protected": True}]

    files = await github.list_files("acme", "web")
    assert files == [{"name": "src", "type": "dir", "path": "src"}]
