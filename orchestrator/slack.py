"""
Slack slash commands backed by the orchestrator services.

Every command acks straight away, posts an ephemeral progress note, runs
the service call and answers in the channel with Block Kit blocks. Block
builders are plain functions so they can be tested without Slack.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_bolt.async_app import AsyncApp

from . import ai, consensus, db, github, perplexity, scanners, security
from .config import settings
from .providers import AIResponse, OpenAIService, StabilityService

logger = logging.getLogger(__name__)

PROVIDER_NAMES = {"claude": "Claude", "gpt": "GPT-4o", "gemini": "Gemini"}

Respond = Callable[..., Awaitable[Any]]


# =============================================================================
# Block builders
# =============================================================================


def _header(text: str) -> dict[str, Any]:
    return {"type": "header", "text": {"type": "plain_text", "text": text}}


def _section(text: str) -> dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _context(text: str) -> dict[str, Any]:
    return {"type": "context", "elements": [{"type": "mrkdwn", "text": text}]}


DIVIDER = {"type": "divider"}


def format_multi_ai_response(results: Mapping[str, AIResponse], query: str) -> list[dict[str, Any]]:
    blocks = [_header("🤖 Multi-AI Response"), _section(f"*Query:* {query[:200]}"), DIVIDER]
    for provider, result in results.items():
        icon = "✅" if result.success else "❌"
        body = (result.response or "")[:500] if result.success else f"Error: {result.error}"
        blocks.append(
            _section(
                f"{icon} *{provider.capitalize()}* "
                f"({result.latency_ms}ms, ${result.cost_usd:.4f})\n{body}"
            )
        )
    total = sum(r.cost_usd for r in results.values() if r.success)
    blocks.append(_context(f"💰 Total: ${total:.4f}"))
    return blocks


def format_panel_response(
    results: Mapping[str, AIResponse], title: str, suffix: str = ""
) -> list[dict[str, Any]]:
    """Review/challenge panels: one section per successful provider."""
    blocks = [_header(title), DIVIDER]
    for provider, name in PROVIDER_NAMES.items():
        result = results.get(provider)
        if result is None or not result.success:
            continue
        blocks.append(_section(f"*{name}{suffix}:*\n{(result.response or '')[:800]}"))
        blocks.append(DIVIDER)
    return blocks


def format_consensus_response(outcome: consensus.ConsensusOutcome, query: str) -> list[dict[str, Any]]:
    return [
        _header("🤝 AI Consensus"),
        _section(f"*Question:* {query[:200]}"),
        DIVIDER,
        _section(outcome.response or "No consensus reached"),
        _context(f"Method: {outcome.method} | Winner: {outcome.winner}"),
    ]


def format_search_response(result: dict[str, Any]) -> list[dict[str, Any]]:
    blocks = [_header("🔎 Search"), _section(f"*Query:* {result['query'][:200]}"), DIVIDER]
    blocks.append(_section(result["answer"][:2900] or "No answer returned"))
    citations = result.get("citations") or []
    if citations:
        lines = "\n".join(f"{i}. {c}" for i, c in enumerate(citations[:5], start=1))
        blocks.append(_section(f"*Sources:*\n{lines}"))
    note = f"Provider: {result['provider']} | {result['time_ms']}ms"
    if result.get("warning"):
        note += f" | ⚠️ {result['warning']}"
    blocks.append(_context(note))
    return blocks


def format_verify_response(batch: dict[str, Any]) -> list[dict[str, Any]]:
    icons = {"verified": "✅", "refuted": "❌", "uncertain": "❓", "unknown": "❔"}
    blocks = [_header("🧪 Claim Verification"), DIVIDER]
    for item in batch["results"]:
        if "error" in item:
            blocks.append(_section(f"⚠️ *{item['claim'][:200]}*\nError: {item['error']}"))
            continue
        status = item["claim_verification"]["status"]
        blocks.append(_section(f"{icons.get(status, '❔')} *{status.upper()}*\n{item['answer'][:500]}"))
    summary = batch["summary"]
    blocks.append(
        _context(
            f"Verified: {summary['verified']} | Refuted: {summary['refuted']} | "
            f"Uncertain: {summary['uncertain']}"
        )
    )
    return blocks


def format_security_report(report: dict[str, Any]) -> list[dict[str, Any]]:
    summary = report["summary"]
    blocks = [
        _header(f"🛡️ Security Report: {report['repo']}"),
        _section(
            f"*Risk level:* {summary['risk_level']}\n"
            f"Critical: {summary['critical_issues']} | High: {summary['high_issues']}"
        ),
        DIVIDER,
    ]
    sections = (
        ("Dependabot", report["dependabot"], "alerts"),
        ("Code scanning", report["code_scanning"], "alerts"),
        ("Snyk", report["snyk"], "issues"),
    )
    for label, data, field in sections:
        if data["error"]:
            blocks.append(_section(f"*{label}:* ⚠️ {data['error']}"))
        else:
            blocks.append(_section(f"*{label}:* {len(data[field])} open"))
    sonar = report["sonar"]
    if sonar["metrics"]:
        m = sonar["metrics"]
        blocks.append(
            _section(
                f"*SonarQube:* {m['bugs']} bugs, {m['vulnerabilities']} vulnerabilities, "
                f"{m['coverage']}% coverage"
            )
        )
    elif sonar["error"]:
        blocks.append(_section(f"*SonarQube:* ⚠️ {sonar['error']}"))
    blocks.append(_context(report["timestamp"]))
    return blocks


def format_scan_response(secrets: dict[str, Any], patterns: dict[str, Any]) -> list[dict[str, Any]]:
    blocks = [_header("🔐 Code Scan"), DIVIDER]
    if secrets["has_secrets"]:
        lines = "\n".join(f"• {f['type']} ({f['count']})" for f in secrets["findings"])
        blocks.append(_section(f"*Possible secrets:*\n{lines}"))
    else:
        blocks.append(_section("*Possible secrets:* none found"))
    if patterns["findings"]:
        lines = "\n".join(
            f"• {f['name']} [{f['severity']}] x{f['count']}" for f in patterns["findings"]
        )
        blocks.append(_section(f"*Anti-patterns:*\n{lines}"))
    blocks.append(_context(f"Security score: {patterns['score']}/100"))
    return blocks


# =============================================================================
# Command handlers
# =============================================================================


def _parse_repo(text: str) -> tuple[str, str] | None:
    parts = [p for p in text.strip().split("/") if p]
    if len(parts) != 2:
        return None
    return parts[0], parts[1]


async def _run(
    respond: Respond,
    progress: str,
    work: Callable[[], Awaitable[list[dict[str, Any]]]],
) -> None:
    await respond(text=progress, response_type="ephemeral")
    try:
        blocks = await work()
    except Exception as exc:
        logger.exception("Slack command failed")
        await respond(text=f"❌ Error: {exc}")
        return
    await respond(blocks=blocks, response_type="in_channel")


async def handle_ask(ack, command, respond) -> None:
    await ack()
    query = (command.get("text") or "").strip()
    if not query:
        await respond(text="Usage: `/ask <your question>`")
        return

    async def work() -> list[dict[str, Any]]:
        return format_multi_ai_response(await ai.ask_all(query, "general"), query)

    await _run(respond, f'🤔 Asking Claude, GPT, and Gemini: "{query[:50]}..."', work)


async def handle_review(ack, command, respond) -> None:
    await ack()
    content = (command.get("text") or "").strip()
    if not content:
        await respond(text="Usage: `/review <code or description>`")
        return

    async def work() -> list[dict[str, Any]]:
        return format_panel_response(await ai.ask_all(content, "review"), "🔍 Code Review Panel")

    await _run(respond, "🔍 Running multi-AI code review...", work)


async def handle_challenge(ack, command, respond) -> None:
    await ack()
    content = (command.get("text") or "").strip()
    if not content:
        await respond(text="Usage: `/challenge <plan or approach>`")
        return

    async def work() -> list[dict[str, Any]]:
        results = await ai.ask_all(content, "challenge")
        return format_panel_response(results, "⚔️ Challenge Panel", " challenges")

    await _run(respond, "⚔️ Challenging your approach with 3 AIs...", work)


async def handle_consensus(ack, command, respond) -> None:
    await ack()
    query = (command.get("text") or "").strip()
    if not query:
        await respond(text="Usage: `/consensus <question>`")
        return

    async def work() -> list[dict[str, Any]]:
        results = await ai.ask_all(query, "general")
        outcome = await consensus.build_consensus(results, "weighted", synthesize=ai.synthesize)
        return format_consensus_response(outcome, query)

    await _run(respond, "🤝 Building AI consensus...", work)


async def handle_search(ack, command, respond) -> None:
    await ack()
    query = (command.get("text") or "").strip()
    if not query:
        await respond(text="Usage: `/search <query>`")
        return

    async def work() -> list[dict[str, Any]]:
        return format_search_response(await perplexity.search(query))

    await _run(respond, "🔎 Searching the web...", work)


async def handle_verify(ack, command, respond) -> None:
    await ack()
    claims = [c.strip() for c in (command.get("text") or "").split("|") if c.strip()]
    if not claims:
        await respond(text="Usage: `/verify <claim> | <another claim>`")
        return

    async def work() -> list[dict[str, Any]]:
        return format_verify_response(await perplexity.verify_batch(claims))

    await _run(respond, f"🧪 Verifying {len(claims)} claim(s)...", work)


async def handle_security(ack, command, respond) -> None:
    await ack()
    parsed = _parse_repo(command.get("text") or "")
    if parsed is None:
        await respond(text="Usage: `/security owner/repo`")
        return
    owner, repo = parsed

    async def work() -> list[dict[str, Any]]:
        return format_security_report(await security.get_security_report(owner, repo))

    await _run(respond, f"🛡️ Building security report for {owner}/{repo}...", work)


async def handle_scan(ack, command, respond) -> None:
    await ack()
    text = (command.get("text") or "").strip()
    if not text:
        await respond(text="Usage: `/scan [python|javascript] <code>`")
        return
    language = "javascript"
    first, _, rest = text.partition(" ")
    if first.lower() in scanners.ANTI_PATTERNS and rest:
        language, text = first.lower(), rest

    async def work() -> list[dict[str, Any]]:
        return format_scan_response(
            scanners.scan_for_secrets(text), scanners.scan_for_anti_patterns(text, language)
        )

    await _run(respond, "🔐 Scanning code...", work)


async def handle_image(ack, command, respond) -> None:
    await ack()
    prompt = (command.get("text") or "").strip()
    if not prompt:
        await respond(text="Usage: `/image <prompt>`")
        return

    async def work() -> list[dict[str, Any]]:
        dalle = OpenAIService()
        if dalle.configured:
            result = await dalle.generate_image(prompt)
            image = result["images"][0]
            return [
                _header("🎨 Image"),
                {"type": "image", "image_url": image["url"], "alt_text": prompt[:200]},
                _context(image.get("revised_prompt") or prompt[:200]),
            ]
        result = await StabilityService().generate_image(prompt)
        seeds = ", ".join(str(img["seed"]) for img in result["images"])
        return [
            _header("🎨 Image"),
            _section(f"Generated {len(result['images'])} image(s) with Stability AI (seed {seeds})."),
        ]

    await _run(respond, "🎨 Generating image...", work)


async def handle_usage(ack, command, respond) -> None:
    await ack()
    try:
        async with db.get_session() as session:
            today = await db.get_today_usage(session)
    except Exception as exc:
        logger.exception("Usage lookup failed")
        await respond(text=f"❌ Error: {exc}")
        return

    text = "*📊 Today's AI Usage:*\n"
    if not today:
        text += "No usage recorded today."
    else:
        total = 0.0
        for row in today:
            cost = float(row["cost"])
            total += cost
            text += f"• {row['provider']}: {row['calls']} calls, ${cost:.4f}\n"
        text += f"\n*Total: ${total:.4f}*"
    await respond(text=text, response_type="ephemeral")


async def handle_health(ack, command, respond) -> None:
    await ack()
    providers = ai.get_provider_status()
    healthy = all(providers.values())
    status = "✅ All systems operational" if healthy else "⚠️ Some providers unavailable"

    def mark(ok: bool) -> str:
        return "✅" if ok else "❌"

    text = (
        f"*🏥 System Health:*\n{status}\n\n"
        f"• Claude: {mark(providers['claude'])}\n"
        f"• GPT-4o: {mark(providers['gpt'])}\n"
        f"• Gemini: {mark(providers['gemini'])}\n"
        f"• GitHub: {mark(github.is_configured())}"
    )
    await respond(text=text, response_type="ephemeral")


COMMANDS: dict[str, Callable[..., Awaitable[None]]] = {
    "/ask": handle_ask,
    "/review": handle_review,
    "/challenge": handle_challenge,
    "/consensus": handle_consensus,
    "/search": handle_search,
    "/verify": handle_verify,
    "/security": handle_security,
    "/scan": handle_scan,
    "/image": handle_image,
    "/usage": handle_usage,
    "/health": handle_health,
}


def create_app() -> AsyncApp | None:
    """Build the Bolt app, or None when Slack credentials are missing."""
    if not settings.slack_bot_token or not settings.slack_signing_secret:
        logger.warning("Missing SLACK_BOT_TOKEN or SLACK_SIGNING_SECRET - Slack disabled")
        return None

    app = AsyncApp(token=settings.slack_bot_token, signing_secret=settings.slack_signing_secret)
    for name, handler in COMMANDS.items():
        app.command(name)(handler)
    logger.info("Slack app initialised with %d commands", len(COMMANDS))
    return app


def serve(app: AsyncApp) -> None:
    """Run over Socket Mode when an app token is set, else as an HTTP server."""
    if settings.slack_app_token:
        handler = AsyncSocketModeHandler(app, settings.slack_app_token)
        asyncio.run(handler.start_async())
    else:
        app.start(port=settings.port)
