"""
Weighted consensus over several AI responses, and the task pipeline that stores it.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any

from . import ai, db
from .models import CONSENSUS_METHODS
from .providers import AIResponse

logger = logging.getLogger(__name__)

PROVIDER_PRIORITY = ("claude", "gpt", "gemini")
CONSENSUS_TASK = "consensus"
RELIABILITY_PRIORS = {"claude": 100.0, "gpt": 90.0, "gemini": 80.0}

Synthesizer = Callable[[str], Awaitable[AIResponse]]


@dataclass
class ConsensusScore:
    """Per-provider score breakdown (each factor 0-100)."""

    agreement: float
    latency: float
    completeness: float
    reliability: float

    @property
    def weighted_total(self) -> float:
        return (
            0.40 * self.agreement
            + 0.15 * self.latency
            + 0.20 * self.completeness
            + 0.25 * self.reliability
        )

    def to_dict(self) -> dict:
        return {
            "agreement": round(self.agreement, 2),
            "latency": round(self.latency, 2),
            "completeness": round(self.completeness, 2),
            "reliability": round(self.reliability, 2),
            "weighted_total": round(self.weighted_total, 2),
        }


@dataclass
class ConsensusOutcome:
    success: bool
    method: str | None = None
    winner: str | None = None
    response: str | None = None
    reasoning: str | None = None
    scores: dict[str, ConsensusScore] = field(default_factory=dict)
    sources: list[str] = field(default_factory=list)
    error: str | None = None

    @property
    def stored_method(self) -> str:
        """The method value persisted in consensus_results."""
        return self.method if self.method in CONSENSUS_METHODS else "best_of"

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "method": self.method,
            "winner": self.winner,
            "response": self.response,
            "reasoning": self.reasoning,
            "scores": {p: s.to_dict() for p, s in self.scores.items()},
            "sources": list(self.sources),
            "error": self.error,
        }


def _tokenize(text: str) -> set[str]:
    return set(text.lower().split())


def _jaccard(a: set[str], b: set[str]) -> float:
    if not a and not b:
        return 100.0
    union = a | b
    return (len(a & b) / len(union)) * 100 if union else 0.0


def _priority(provider: str) -> int:
    try:
        return PROVIDER_PRIORITY.index(provider)
    except ValueError:
        return len(PROVIDER_PRIORITY)


class ConsensusCalculator:
    """Scores each successful response against the others."""

    def score(self, results: Mapping[str, AIResponse]) -> dict[str, ConsensusScore]:
        successes = {p: r for p, r in results.items() if r.success}
        if not successes:
            return {}

        tokens = {p: _tokenize(r.response or "") for p, r in successes.items()}
        latencies = {p: r.latency_ms or 0 for p, r in successes.items()}
        lengths = {p: len(r.response or "") for p, r in successes.items()}

        fastest, slowest = min(latencies.values()), max(latencies.values())
        longest = max(lengths.values())

        scores: dict[str, ConsensusScore] = {}
        for provider in successes:
            scores[provider] = ConsensusScore(
                agreement=self._agreement(provider, tokens),
                latency=self._latency(latencies[provider], fastest, slowest),
                completeness=(lengths[provider] / longest) * 100 if longest else 100.0,
                reliability=RELIABILITY_PRIORS.get(provider, 50.0),
            )
        return scores

    def _agreement(self, provider: str, tokens: dict[str, set[str]]) -> float:
        others = [t for p, t in tokens.items() if p != provider]
        if not others:
            return 100.0
        return sum(_jaccard(tokens[provider], other) for other in others) / len(others)

    def _latency(self, latency: int, fastest: int, slowest: int) -> float:
        if slowest == fastest:
            return 100.0
        return (slowest - latency) / (slowest - fastest) * 100


async def build_consensus(
    results: Mapping[str, AIResponse],
    method: str = "weighted",
    synthesize: Synthesizer | None = None,
) -> ConsensusOutcome:
    """Pick (or synthesize) a final answer from several provider responses."""
    if method not in CONSENSUS_METHODS:
        raise ValueError(f"Unknown consensus method: {method}")

    successes = {p: r for p, r in results.items() if r.success}
    if not successes:
        return ConsensusOutcome(success=False, error="All AI providers failed")

    scores = ConsensusCalculator().score(successes)
    ranked = sorted(successes, key=_priority)

    if len(successes) == 1:
        provider = ranked[0]
        return ConsensusOutcome(
            success=True,
            method="single",
            winner=provider,
            response=successes[provider].response,
            reasoning="Only one provider returned a response",
            scores=scores,
            sources=[provider],
        )

    if method == "best_of":
        winner = ranked[0]
        return ConsensusOutcome(
            success=True,
            method="best_of",
            winner=winner,
            response=successes[winner].response,
            reasoning=f"Using {winner} (highest priority available)",
            scores=scores,
            sources=ranked,
        )

    if method == "majority":
        winner = min(ranked, key=lambda p: (-scores[p].agreement, _priority(p)))
        return ConsensusOutcome(
            success=True,
            method="majority",
            winner=winner,
            response=successes[winner].response,
            reasoning=f"{winner} agrees most with the other responses "
            f"({scores[winner].agreement:.1f}% overlap)",
            scores=scores,
            sources=ranked,
        )

    winner = min(ranked, key=lambda p: (-scores[p].weighted_total, _priority(p)))
    if synthesize is not None:
        combined = "\n\n---\n\n".join(
            f"[{p.upper()}]:\n{successes[p].response}" for p in ranked
        )
        synthesis = await synthesize(combined)
        if synthesis.success:
            return ConsensusOutcome(
                success=True,
                method="weighted",
                winner="consensus",
                response=synthesis.response,
                reasoning="Synthesized from all provider responses",
                scores=scores,
                sources=ranked,
            )
        logger.warning("Consensus synthesis failed: %s", synthesis.error)

    return ConsensusOutcome(
        success=True,
        method="weighted",
        winner=winner,
        response=successes[winner].response,
        reasoning=f"{winner} has the highest weighted score "
        f"({scores[winner].weighted_total:.1f})",
        scores=scores,
        sources=ranked,
    )


# =============================================================================
# Task pipeline
# =============================================================================


async def _mark_failed(task_id: str, error: str) -> None:
    async with db.get_session() as session:
        await db.update_task(session, task_id, status="failed", error=error)


async def _execute_task(
    task_id: str,
    content: str,
    prompt_type: str,
    method: str,
    synthesize_answers: bool,
) -> dict[str, Any]:
    async with db.get_session() as session:
        await db.update_task(session, task_id, status="processing")

    try:
        results = await ai.ask_all(content, prompt_type)
        outcome = await build_consensus(
            results, method, synthesize=ai.synthesize if synthesize_answers else None
        )
        await _persist(task_id, results, outcome)
    except Exception as exc:
        logger.error("Consensus task %s failed: %s", task_id, exc)
        await _mark_failed(task_id, str(exc))
        return {"task_id": task_id, "success": False, "error": str(exc)}

    return {
        "task_id": task_id,
        **outcome.to_dict(),
        "responses": {p: r.to_dict() for p, r in results.items()},
    }


async def _persist(
    task_id: str, results: Mapping[str, AIResponse], outcome: ConsensusOutcome
) -> None:
    async with db.get_session() as session:
        for provider, result in results.items():
            await db.save_ai_response(
                session,
                task_id,
                provider,
                result.response,
                tokens_in=result.tokens_in,
                tokens_out=result.tokens_out,
                cost_usd=result.cost_usd,
                latency_ms=result.latency_ms,
                success=result.success,
                error=result.error,
            )
        if outcome.success:
            await db.save_consensus(
                session,
                task_id,
                outcome.stored_method,
                outcome.winner,
                outcome.response,
                {p: s.to_dict() for p, s in outcome.scores.items()},
                outcome.reasoning,
            )
            await db.update_task(session, task_id, status="completed", output=outcome.to_dict())
        else:
            await db.update_task(session, task_id, status="failed", error=outcome.error)


async def run_consensus_task(
    content: str,
    prompt_type: str = "general",
    method: str = "weighted",
    *,
    priority: int = 0,
    synthesize_answers: bool = True,
) -> dict[str, Any]:
    """Create a consensus task and run it to completion."""
    if method not in CONSENSUS_METHODS:
        raise ValueError(f"Unknown consensus method: {method}")

    async with db.get_session() as session:
        task = await db.create_task(
            session,
            CONSENSUS_TASK,
            {"content": content, "prompt_type": prompt_type, "method": method},
            priority=priority,
        )
        task_id = task.id

    return await _execute_task(task_id, content, prompt_type, method, synthesize_answers)


async def process_pending_tasks(limit: int = 10) -> list[dict[str, Any]]:
    """Run queued consensus tasks, highest priority first."""
    async with db.get_session() as session:
        pending = await db.get_pending_tasks(session, limit=limit, task_type=CONSENSUS_TASK)
        queued = [(t.id, dict(t.input or {})) for t in pending]

    processed: list[dict[str, Any]] = []
    for task_id, task_input in queued:
        method = task_input.get("method", "weighted")
        if method not in CONSENSUS_METHODS:
            method = "weighted"
        processed.append(
            await _execute_task(
                task_id,
                task_input.get("content", ""),
                task_input.get("prompt_type", "general"),
                method,
                True,
            )
        )
    return processed
