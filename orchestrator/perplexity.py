"""
Web-grounded search through Perplexity, with an OpenAI fallback.

Perplexity exposes an OpenAI-compatible chat endpoint, so both paths use
``openai.AsyncOpenAI``. Every answer is appended to a rolling in-memory
history used by :func:`get_search_history` and :func:`get_search_stats`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import UTC, datetime
from typing import Any

from openai import AsyncOpenAI

from .config import settings
from .errors import ProviderNotConfiguredError
from .history import DEFAULT_MAXLEN, RollingHistory

logger = logging.getLogger(__name__)

PERPLEXITY_BASE_URL = "https://api.perplexity.ai"
PERPLEXITY_MODEL = "llama-3.1-sonar-large-128k-online"
FALLBACK_MODEL = "gpt-4o"

FALLBACK_SYSTEM_PROMPT = """You are a research assistant. Answer the user's question with factual, well-sourced information.
Include relevant details and context. When possible, mention where this information could be verified.
Note: This is based on training data, not real-time web search."""

VERIFIED_WORDS = ("confirmed", "accurate", "correct", "verified", "true")
REFUTED_WORDS = ("false", "incorrect", "inaccurate", "debunked", "misleading")
UNCERTAIN_WORDS = ("unclear", "uncertain", "mixed", "depends", "partially")

history = RollingHistory(DEFAULT_MAXLEN)

_perplexity_client: AsyncOpenAI | None = None
_openai_client: AsyncOpenAI | None = None


def get_perplexity_client() -> AsyncOpenAI | None:
    global _perplexity_client
    if _perplexity_client is None and settings.perplexity_api_key:
        _perplexity_client = AsyncOpenAI(
            api_key=settings.perplexity_api_key,
            base_url=PERPLEXITY_BASE_URL,
            timeout=settings.ai_timeout_seconds,
        )
    return _perplexity_client


def get_openai_client() -> AsyncOpenAI | None:
    global _openai_client
    if _openai_client is None and settings.openai_api_key:
        _openai_client = AsyncOpenAI(
            api_key=settings.openai_api_key, timeout=settings.ai_timeout_seconds
        )
    return _openai_client


def set_clients(
    perplexity: AsyncOpenAI | None = None, openai_client: AsyncOpenAI | None = None
) -> None:
    """Install the clients used for search (None falls back to settings)."""
    global _perplexity_client, _openai_client
    _perplexity_client = perplexity
    _openai_client = openai_client


def get_status() -> dict[str, Any]:
    perplexity_ready = get_perplexity_client() is not None
    fallback_ready = get_openai_client() is not None
    return {
        "perplexity_configured": perplexity_ready,
        "fallback_available": fallback_ready,
        "realtime_search": perplexity_ready,
        "citations": perplexity_ready,
        "recency_filters": True,
        "search_count": len(history),
        "ready": perplexity_ready or fallback_ready,
    }


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def _timestamp() -> str:
    return datetime.now(UTC).isoformat()


# =============================================================================
# Core search
# =============================================================================


async def search(
    query: str,
    *,
    recency_filter: str = "month",
    return_citations: bool = True,
    max_tokens: int = 2048,
    temperature: float = 0.2,
    system_prompt: str | None = None,
) -> dict[str, Any]:
    """Answer ``query`` with web grounding when Perplexity is configured."""
    start = time.perf_counter()
    client = get_perplexity_client()
    if client is None:
        return await _search_with_fallback(query, max_tokens, temperature, start)

    messages: list[dict[str, str]] = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": query})

    extra_body: dict[str, Any] = {"return_citations": return_citations}
    if recency_filter and recency_filter != "none":
        extra_body["search_recency_filter"] = recency_filter

    try:
        response = await client.chat.completions.create(
            model=PERPLEXITY_MODEL,
            messages=messages,
            max_tokens=max_tokens,
            temperature=temperature,
            extra_body=extra_body,
        )
        answer = response.choices[0].message.content or ""
        citations = list(getattr(response, "citations", None) or [])
    except Exception as exc:
        if get_openai_client() is None:
            raise
        logger.warning("Perplexity search failed, using fallback: %s", exc)
        return await _search_with_fallback(query, max_tokens, temperature, start)

    result = {
        "query": query,
        "answer": answer,
        "citations": citations,
        "model": response.model,
        "provider": "perplexity",
        "grounded": True,
        "recency_filter": recency_filter,
        "time_ms": _elapsed_ms(start),
        "timestamp": _timestamp(),
    }
    history.append(result)
    return result


async def _search_with_fallback(
    query: str, max_tokens: int, temperature: float, start: float
) -> dict[str, Any]:
    client = get_openai_client()
    if client is None:
        raise ProviderNotConfiguredError("No search provider available")

    response = await client.chat.completions.create(
        model=FALLBACK_MODEL,
        messages=[
            {"role": "system", "content": FALLBACK_SYSTEM_PROMPT},
            {"role": "user", "content": query},
        ],
        max_tokens=max_tokens,
        temperature=temperature,
    )
    result = {
        "query": query,
        "answer": response.choices[0].message.content or "",
        "citations": [],
        "model": response.model,
        "provider": "openai_fallback",
        "grounded": False,
        "recency_filter": None,
        "warning": "Using fallback - not real-time web data",
        "time_ms": _elapsed_ms(start),
        "timestamp": _timestamp(),
    }
    history.append(result)
    return result


# =============================================================================
# Specialised search modes
# =============================================================================


async def _search_with(query: str, defaults: dict[str, Any], options: dict[str, Any]) -> dict[str, Any]:
    return await search(query, **{**defaults, **options})


async def search_news(topic: str, **options: Any) -> dict[str, Any]:
    query = (
        f"Latest news and developments about: {topic}.\n"
        "Include recent events, announcements, and updates from the past week."
    )
    defaults = {
        "recency_filter": "week",
        "system_prompt": "You are a news researcher. Focus on factual, recent news. "
        "Include dates when events occurred.",
    }
    return await _search_with(query, defaults, options)


async def search_fact(claim: str, **options: Any) -> dict[str, Any]:
    """Search for evidence about ``claim`` and attach a verification verdict."""
    query = (
        f'Verify this claim with factual information: "{claim}"\n'
        "Is this accurate? Provide evidence and sources."
    )
    defaults = {
        "recency_filter": "month",
        "system_prompt": "You are a fact-checker. Verify claims with evidence. "
        "Be explicit about confidence level and sources.",
    }
    result = await _search_with(query, defaults, options)
    result["claim_verification"] = assess_verification(result["answer"], claim)
    return result


async def search_docs(technology: str, question: str, **options: Any) -> dict[str, Any]:
    query = (
        f"{technology} documentation: {question}\n"
        "Provide accurate technical information with code examples if relevant."
    )
    defaults = {
        "recency_filter": "month",
        "system_prompt": "You are a technical documentation expert. Provide accurate, "
        "up-to-date technical information with examples.",
    }
    return await _search_with(query, defaults, options)


async def search_research(topic: str, **options: Any) -> dict[str, Any]:
    query = (
        f"Academic and research information about: {topic}\n"
        "Include recent studies, findings, and expert perspectives."
    )
    defaults = {
        "recency_filter": "year",
        "system_prompt": "You are an academic researcher. Focus on peer-reviewed research, "
        "studies, and expert analysis.",
    }
    return await _search_with(query, defaults, options)


async def search_how_to(task: str, **options: Any) -> dict[str, Any]:
    query = f"How to: {task}\nProvide step-by-step instructions with best practices."
    defaults = {
        "recency_filter": "month",
        "system_prompt": "You are an expert instructor. Provide clear, actionable "
        "step-by-step guidance.",
    }
    return await _search_with(query, defaults, options)


async def search_compare(
    items: list[str] | str, criteria: list[str] | None = None, **options: Any
) -> dict[str, Any]:
    item_list = " vs ".join(items) if isinstance(items, list) else items
    criteria_text = f"Focus on: {', '.join(criteria)}" if criteria else ""
    query = (
        f"Compare: {item_list}. {criteria_text}\n"
        "Provide a balanced comparison with pros, cons, and recommendations."
    )
    defaults = {
        "recency_filter": "month",
        "system_prompt": "You are an analyst. Provide fair, balanced comparisons with clear criteria.",
    }
    return await _search_with(query, defaults, options)


# =============================================================================
# Grounding
# =============================================================================


def assess_verification(answer: str, claim: str) -> dict[str, Any]:
    """Keyword verdict on whether ``answer`` supports ``claim``."""
    text = answer.lower()
    verified = any(word in text for word in VERIFIED_WORDS)
    refuted = any(word in text for word in REFUTED_WORDS)
    uncertain = any(word in text for word in UNCERTAIN_WORDS)

    status = "unknown"
    if verified and not refuted:
        status = "verified"
    elif refuted and not verified:
        status = "refuted"
    elif uncertain or (verified and refuted):
        status = "uncertain"

    return {
        "status": status,
        "indicators": {"verified": verified, "refuted": refuted, "uncertain": uncertain},
    }


def _citation_confidence(citations: list[Any], default: float) -> float:
    if len(citations) > 2:
        return 0.9
    if citations:
        return 0.7
    return default


async def ground(statement: str, **options: Any) -> dict[str, Any]:
    defaults = {
        "recency_filter": "month",
        "system_prompt": "Verify and expand on this statement with current, factual information.\n"
        "If the statement contains errors, correct them.\n"
        "If it's accurate, confirm and add relevant context.",
    }
    result = await _search_with(statement, defaults, options)
    citations = result.get("citations") or []
    return {
        "original": statement,
        "grounded": result["answer"],
        "citations": citations,
        "confidence": _citation_confidence(citations, 0.5),
        "provider": result["provider"],
        "time_ms": result["time_ms"],
    }


async def grounded_answer(question: str, context: str = "", **options: Any) -> dict[str, Any]:
    query = f"Context: {context}\n\nQuestion: {question}" if context else question
    defaults = {
        "recency_filter": "month",
        "system_prompt": "Answer the question with accurate, well-sourced information. "
        "Cite your sources.",
    }
    result = await _search_with(query, defaults, options)
    citations = result.get("citations") or []
    return {
        "question": question,
        "answer": result["answer"],
        "citations": citations,
        "grounded": result["grounded"],
        "confidence": _citation_confidence(citations, 0.6 if result["grounded"] else 0.4),
        "provider": result["provider"],
        "time_ms": result["time_ms"],
    }


# =============================================================================
# Batch operations
# =============================================================================


def _unwrap(outcome: Any, label: str, item: str) -> dict[str, Any]:
    if isinstance(outcome, Exception):
        logger.warning("Batch item failed (%s=%r): %s", label, item, outcome)
        return {label: item, "error": str(outcome)}
    if isinstance(outcome, BaseException):
        raise outcome
    return outcome


async def search_batch(queries: list[str], **options: Any) -> dict[str, Any]:
    """Run several searches concurrently; failures are recorded per query."""
    outcomes = await asyncio.gather(
        *(search(q, **options) for q in queries), return_exceptions=True
    )
    results = [_unwrap(o, "query", q) for o, q in zip(outcomes, queries, strict=True)]
    errors = sum(1 for r in results if "error" in r)
    return {
        "queries": len(queries),
        "results": results,
        "success_count": len(results) - errors,
        "error_count": errors,
    }


async def verify_batch(claims: list[str], **options: Any) -> dict[str, Any]:
    """Fact-check several claims concurrently."""
    outcomes = await asyncio.gather(
        *(search_fact(c, **options) for c in claims), return_exceptions=True
    )
    results = [_unwrap(o, "claim", c) for o, c in zip(outcomes, claims, strict=True)]

    def count(status: str) -> int:
        return sum(
            1 for r in results if (r.get("claim_verification") or {}).get("status") == status
        )

    verified = count("verified")
    refuted = count("refuted")
    return {
        "claims": len(claims),
        "results": results,
        "summary": {
            "verified": verified,
            "refuted": refuted,
            "uncertain": len(claims) - verified - refuted,
        },
    }


# =============================================================================
# History and analytics
# =============================================================================


def get_search_history(limit: int = 50) -> list[dict[str, Any]]:
    return history.recent(limit)


def get_search_stats() -> dict[str, Any]:
    if not len(history):
        return {"message": "No search history yet"}

    providers: dict[str, int] = {}
    recency: dict[str, int] = {}
    total_time = 0
    grounded = 0
    for entry in history:
        providers[entry["provider"]] = providers.get(entry["provider"], 0) + 1
        if entry.get("recency_filter"):
            recency[entry["recency_filter"]] = recency.get(entry["recency_filter"], 0) + 1
        total_time += entry.get("time_ms") or 0
        if entry.get("grounded"):
            grounded += 1

    total = len(history)
    return {
        "total_searches": total,
        "grounded_searches": grounded,
        "grounding_rate": f"{round(grounded / total * 100)}%",
        "average_time_ms": round(total_time / total),
        "provider_breakdown": providers,
        "recency_breakdown": recency,
    }


def clear_history() -> dict[str, Any]:
    history.clear()
    return {"success": True, "message": "Search history cleared"}
