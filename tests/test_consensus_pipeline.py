from contextlib import asynccontextmanager
from types import SimpleNamespace

import pytest

from orchestrator import ai, consensus, db
from orchestrator.providers import AIResponse


class FakeStore:
    """In-memory stand-in for the task tables."""

    def __init__(self) -> None:
        self.statuses: dict[str, list[str]] = {}
        self.errors: dict[str, str | None] = {}
        self.outputs: dict[str, dict] = {}
        self.responses: list[tuple[str, str, bool]] = []
        self.consensus: list[tuple[str, str, str]] = []
        self.pending: list[SimpleNamespace] = []
        self.pending_args: dict = {}
        self.failing_response_task: str | None = None

    async def create_task(self, session, type, input, priority=0):
        task_id = f"task-{len(self.statuses) + 1}"
        self.statuses[task_id] = ["pending"]
        return SimpleNamespace(id=task_id, type=type, input=input, priority=priority)

    async def update_task(self, session, task_id, *, status=None, output=None, error=None):
        self.statuses.setdefault(task_id, []).append(status)
        if error is not None:
            self.errors[task_id] = error
        if output is not None:
            self.outputs[task_id] = output

    async def save_ai_response(self, session, task_id, provider, response, **fields):
        if task_id == self.failing_response_task:
            raise RuntimeError("db write failed")
        self.responses.append((task_id, provider, fields["success"]))

    async def save_consensus(self, session, task_id, method, winner, response, scores, reasoning):
        self.consensus.append((task_id, method, winner))

    async def get_pending_tasks(self, session, limit=10, task_type=None):
        self.pending_args = {"limit": limit, "task_type": task_type}
        return [t for t in self.pending if task_type is None or t.type == task_type][:limit]


@pytest.fixture
def store(monkeypatch):
    fake = FakeStore()

    @asynccontextmanager
    async def session():
        yield object()

    monkeypatch.setattr(db, "get_session", session)
    names = ("create_task", "update_task", "save_ai_response", "save_consensus", "get_pending_tasks")
    for name in names:
        monkeypatch.setattr(db, name, getattr(fake, name))
    return fake


def _answers(monkeypatch, results: dict[str, AIResponse]) -> list[str]:
    asked: list[str] = []

    async def ask_all(content, prompt_type="general"):
        asked.append(content)
        return dict(results)

    async def synthesize(combined):
        return AIResponse(provider="claude", response="merged answer")

    monkeypatch.setattr(ai, "ask_all", ask_all)
    monkeypatch.setattr(ai, "synthesize", synthesize)
    return asked


ALL_OK = {
    "claude": AIResponse(provider="claude", response="use a pool", latency_ms=200),
    "gpt": AIResponse(provider="gpt", response="use a pool please", latency_ms=100),
    "gemini": AIResponse.failure("gemini", "timeout"),
}


@pytest.mark.asyncio
async def test_task_runs_to_completion(store, monkeypatch) -> None:
    _answers(monkeypatch, ALL_OK)

    result = await consensus.run_consensus_task("pick a db", method="weighted")

    task_id = result["task_id"]
    assert store.statuses[task_id] == ["pending", "processing", "completed"]
    assert sorted(p for t, p, _ in store.responses if t == task_id) == ["claude", "gemini", "gpt"]
    assert [p for _, p, ok in store.responses if not ok] == ["gemini"]
    assert store.consensus == [(task_id, "weighted", "consensus")]
    assert store.outputs[task_id]["response"] == "merged answer"
    assert result["success"] is True
    assert set(result["responses"]) == {"claude", "gpt", "gemini"}


@pytest.mark.asyncio
async def test_single_response_is_stored_as_best_of(store, monkeypatch) -> None:
    _answers(
        monkeypatch,
        {
            "claude": AIResponse.failure("claude", "rate limited"),
            "gpt": AIResponse(provider="gpt", response="only me"),
        },
    )

    result = await consensus.run_consensus_task("q", method="majority")

    assert result["method"] == "single"
    assert store.consensus == [(result["task_id"], "best_of", "gpt")]
    assert store.statuses[result["task_id"]][-1] == "completed"


@pytest.mark.asyncio
async def test_all_providers_failing_fails_the_task(store, monkeypatch) -> None:
    _answers(
        monkeypatch,
        {"claude": AIResponse.failure("claude", "x"), "gpt": AIResponse.failure("gpt", "y")},
    )

    result = await consensus.run_consensus_task("q")

    task_id = result["task_id"]
    assert result["success"] is False
    assert store.statuses[task_id] == ["pending", "processing", "failed"]
    assert store.errors[task_id] == "All AI providers failed"
    assert store.consensus == []
    assert len(store.responses) == 2


@pytest.mark.asyncio
async def test_unknown_method_is_rejected_before_queueing(store, monkeypatch) -> None:
    _answers(monkeypatch, ALL_OK)

    with pytest.raises(ValueError):
        await consensus.run_consensus_task("q", method="vote")
    assert store.statuses == {}


@pytest.mark.asyncio
async def test_queue_only_fetches_consensus_tasks(store, monkeypatch) -> None:
    asked = _answers(monkeypatch, ALL_OK)
    store.pending = [
        SimpleNamespace(id="chat-1", type="chat", input={"content": "hi"}),
        SimpleNamespace(id="chat-2", type="chat", input={"content": "hey"}),
        SimpleNamespace(id="low", type="consensus", input={"content": "low priority"}),
    ]

    processed = await consensus.process_pending_tasks(limit=2)

    assert store.pending_args == {"limit": 2, "task_type": "consensus"}
    assert [r["task_id"] for r in processed] == ["low"]
    assert asked == ["low priority"]
    assert "chat-1" not in store.statuses


@pytest.mark.asyncio
async def test_queue_defaults_bad_method_to_weighted(store, monkeypatch) -> None:
    _answers(monkeypatch, ALL_OK)
    store.pending = [SimpleNamespace(id="t1", type="consensus", input={"content": "q", "method": "vote"})]

    processed = await consensus.process_pending_tasks()

    assert processed[0]["method"] == "weighted"


@pytest.mark.asyncio
async def test_storage_failure_marks_task_failed_and_queue_continues(store, monkeypatch) -> None:
    asked = _answers(monkeypatch, ALL_OK)
    store.pending = [
        SimpleNamespace(id="broken", type="consensus", input={"content": "first"}),
        SimpleNamespace(id="fine", type="consensus", input={"content": "second"}),
    ]
    store.failing_response_task = "broken"

    processed = await consensus.process_pending_tasks()

    assert processed[0] == {"task_id": "broken", "success": False, "error": "db write failed"}
    assert store.statuses["broken"] == ["processing", "failed"]
    assert store.errors["broken"] == "db write failed"
    assert asked == ["first", "second"]
    assert store.statuses["fine"] == ["processing", "completed"]
    assert processed[1]["success"] is True
