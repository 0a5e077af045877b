"""Main CLI entry point for the orchestrator."""

import asyncio
import json
import sys
from collections.abc import Awaitable
from pathlib import Path
from typing import Any, TypeVar

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from sqlalchemy.engine import make_url

from . import __version__, ai, consensus, db, github, http, perplexity, scanners, security
from .config import settings
from .log import configure_logging
from .models import AI_PROVIDERS, Base, CONSENSUS_METHODS

console = Console()

T = TypeVar("T")


def _run(coro: Awaitable[T]) -> T:
    """Run a coroutine and close the shared HTTP client afterwards."""

    async def runner() -> T:
        try:
            return await coro
        finally:
            await http.aclose()

    return asyncio.run(runner())


def _ok(flag: bool) -> str:
    return "[green]✓[/green]" if flag else "[red]✗[/red]"


@click.group()
@click.version_option(version=__version__)
@click.option("--log-level", default=None, help="Override LOG_LEVEL")
def main(log_level: str | None) -> None:
    """Cloud orchestrator CLI.

    Query Claude, GPT and Gemini, build consensus answers, search the web and
    inspect repository security from the terminal.
    """
    configure_logging(log_level or settings.log_level, debug_sql=settings.debug_sql)


# =============================================================================
# Database
# =============================================================================


@main.command()
def migrate() -> None:
    """Create any missing tables and indexes (safe to run repeatedly)."""
    _run(db.init_db())
    console.print(f"[green]✓[/green] Schema ready ({len(Base.metadata.tables)} tables)")


@main.command(name="schema-check", help="Check that every table exists.")
def schema_check() -> None:
    async def check() -> set[str]:
        from sqlalchemy import text

        async with db.get_session() as session:
            result = await session.execute(
                text(
                    """
                    SELECT table_name FROM information_schema.tables
                    WHERE table_schema = current_schema()
                    """
                )
            )
            return {row[0] for row in result}

    present = _run(check())
    missing = sorted(set(Base.metadata.tables) - present)
    if missing:
        console.print(f"[red]Missing tables: {missing}[/red]")
        console.print("Run: `orchestrator migrate`")
        raise SystemExit(1)
    console.print("[green]Schema ready[/green]")


@main.command(name="db-info")
def db_info() -> None:
    """Show database connection info."""
    url = make_url(settings.database_url)
    console.print(
        Panel(
            f"Driver: {url.drivername}\n"
            f"Host: {url.host}\n"
            f"Port: {url.port}\n"
            f"Database: {url.database}\n"
            f"User: {url.username}",
            title="Database Configuration",
        )
    )


# =============================================================================
# Status / health
# =============================================================================


@main.command()
def status() -> None:
    """Show which providers are configured."""
    table = Table(title="Providers")
    table.add_column("Service")
    table.add_column("Provider")
    table.add_column("Configured", justify="center")

    for provider, ok in ai.get_provider_status().items():
        table.add_row("ai", provider, _ok(ok))
    search_status = perplexity.get_status()
    table.add_row("search", "perplexity", _ok(search_status["perplexity_configured"]))
    table.add_row("search", "openai fallback", _ok(search_status["fallback_available"]))
    for provider, ok in security.get_status().items():
        table.add_row("security", provider, _ok(ok))
    table.add_row("repos", "github", _ok(github.is_configured()))
    table.add_row("media", "stability", _ok(bool(settings.stability_api_key)))
    table.add_row("media", "elevenlabs", _ok(bool(settings.elevenlabs_api_key)))
    table.add_row(
        "chat", "slack", _ok(bool(settings.slack_bot_token and settings.slack_signing_secret))
    )
    console.print(table)


@main.command()
@click.option("--limit", default=10, help="Number of recent checks to show")
def health(limit: int) -> None:
    """Record a provider health check and show recent ones."""

    async def check() -> list[Any]:
        providers = ai.get_provider_status()
        configured = sum(providers.values())
        if configured == len(providers):
            state, message = "healthy", "All AI providers configured"
        elif configured:
            state, message = "warning", "Some AI providers unavailable"
        else:
            state, message = "critical", "No AI providers configured"
        async with db.get_session() as session:
            await db.log_health_check(session, "providers", state, message, providers)
            return await db.get_recent_health_checks(session, limit=limit)

    checks = _run(check())
    colors = {"healthy": "green", "warning": "yellow", "critical": "red"}
    table = Table(title="Health Checks")
    table.add_column("When")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Message")
    for c in checks:
        color = colors.get(c.status, "white")
        table.add_row(
            c.created_at.strftime("%Y-%m-%d %H:%M") if c.created_at else "-",
            c.check_type,
            f"[{color}]{c.status}[/{color}]",
            c.message or "",
        )
    console.print(table)


# =============================================================================
# AI
# =============================================================================


@main.command()
@click.argument("question")
@click.option(
    "--provider",
    "-p",
    "providers",
    multiple=True,
    type=click.Choice(list(AI_PROVIDERS)),
    help="Provider(s) to ask (default: all)",
)
@click.option("--mode", type=click.Choice(["general", "review", "challenge"]), default="general")
@click.option("--no-cache", is_flag=True, help="Bypass the response cache")
def ask(question: str, providers: tuple[str, ...], mode: str, no_cache: bool) -> None:
    """Ask one or more AI providers.

    QUESTION: The prompt to send
    """
    results = _run(
        ai.ask_all(question, mode, providers=providers or AI_PROVIDERS, no_cache=no_cache)
    )
    for provider, result in results.items():
        if result.success:
            suffix = " (cached)" if result.cached else ""
            console.print(
                Panel(
                    result.response or "",
                    title=f"{provider}{suffix}",
                    subtitle=f"{result.latency_ms}ms | ${result.cost_usd:.4f}",
                )
            )
        else:
            console.print(f"[red]{provider}: {result.error}[/red]")


@main.command(name="consensus")
@click.argument("question")
@click.option("--method", type=click.Choice(list(CONSENSUS_METHODS)), default="weighted")
@click.option("--mode", type=click.Choice(["general", "review", "challenge"]), default="general")
@click.option("--priority", default=0, help="Task priority (higher runs first)")
@click.option("--queue", is_flag=True, help="Only queue the task for process-tasks")
def consensus_cmd(question: str, method: str, mode: str, priority: int, queue: bool) -> None:
    """Ask all providers and store the consensus answer as a task.

    QUESTION: The prompt to send
    """
    if queue:

        async def enqueue() -> str:
            async with db.get_session() as session:
                task = await db.create_task(
                    session,
                    consensus.CONSENSUS_TASK,
                    {"content": question, "prompt_type": mode, "method": method},
                    priority=priority,
                )
                return task.id

        console.print(f"[green]Queued task {_run(enqueue())}[/green]")
        return

    result = _run(consensus.run_consensus_task(question, mode, method, priority=priority))
    _print_consensus(result)


def _print_consensus(result: dict[str, Any]) -> None:
    if not result.get("success"):
        console.print(f"[red]Task {result['task_id']} failed: {result.get('error')}[/red]")
        return

    console.print(
        Panel(
            result.get("response") or "",
            title=f"Consensus ({result['method']}) - winner: {result['winner']}",
            subtitle=f"task {result['task_id']}",
        )
    )
    scores = result.get("scores") or {}
    if scores:
        table = Table(title="Scores")
        for column in ("Provider", "Agreement", "Latency", "Completeness", "Reliability", "Total"):
            table.add_column(column)
        for provider, s in scores.items():
            table.add_row(
                provider,
                f"{s['agreement']:.1f}",
                f"{s['latency']:.1f}",
                f"{s['completeness']:.1f}",
                f"{s['reliability']:.1f}",
                f"[bold]{s['weighted_total']:.1f}[/bold]",
            )
        console.print(table)


@main.command(name="process-tasks")
@click.option("--limit", default=10, help="Maximum tasks to process")
def process_tasks(limit: int) -> None:
    """Run queued consensus tasks."""
    processed = _run(consensus.process_pending_tasks(limit))
    if not processed:
        console.print("[yellow]No pending tasks[/yellow]")
        return
    for result in processed:
        _print_consensus(result)


@main.command()
@click.option("--limit", default=20, help="Number of tasks to show")
@click.option("--status-filter", "status_filter", default=None, help="Filter by status")
def tasks(limit: int, status_filter: str | None) -> None:
    """List recent tasks."""

    async def fetch() -> list[Any]:
        async with db.get_session() as session:
            return await db.list_tasks(session, status=status_filter, limit=limit)

    rows = _run(fetch())
    if not rows:
        console.print("[yellow]No tasks found[/yellow]")
        return

    table = Table(title="Tasks")
    table.add_column("ID")
    table.add_column("Type")
    table.add_column("Status")
    table.add_column("Priority", justify="right")
    table.add_column("Created")
    for t in rows:
        table.add_row(
            t.id,
            t.type,
            t.status,
            str(t.priority),
            t.created_at.strftime("%Y-%m-%d %H:%M") if t.created_at else "-",
        )
    console.print(table)


@main.command()
@click.argument("task_id")
def task(task_id: str) -> None:
    """Show a task with its AI responses and consensus.

    TASK_ID: The task UUID
    """

    async def fetch() -> tuple[Any, list[Any], Any]:
        async with db.get_session() as session:
            found = await db.get_task(session, task_id)
            if found is None:
                return None, [], None
            responses = await db.get_ai_responses(session, task_id)
            result = await db.get_consensus_for_task(session, task_id)
            return found, responses, result

    found, responses, result = _run(fetch())
    if found is None:
        console.print(f"[red]Task not found: {task_id}[/red]")
        return

    console.print(
        Panel(
            f"Type: {found.type}\n"
            f"Status: [cyan]{found.status}[/cyan]\n"
            f"Priority: {found.priority}\n"
            f"Created: {found.created_at}\n"
            f"Started: {found.started_at or '-'}\n"
            f"Completed: {found.completed_at or '-'}"
            + (f"\n[red]Error: {found.error}[/red]" if found.error else ""),
            title=f"Task {found.id}",
        )
    )
    if responses:
        table = Table(title="AI Responses")
        table.add_column("Provider")
        table.add_column("OK", justify="center")
        table.add_column("Tokens in/out")
        table.add_column("Cost")
        table.add_column("Latency")
        for r in responses:
            table.add_row(
                r.provider,
                _ok(r.success),
                f"{r.tokens_in}/{r.tokens_out}",
                f"${r.cost_usd:.6f}",
                f"{r.latency_ms or 0}ms",
            )
        console.print(table)
    if result is not None:
        console.print(
            Panel(
                result.final_response or "",
                title=f"Consensus ({result.method}) - winner: {result.winner}",
                subtitle=result.reasoning or "",
            )
        )


@main.command()
@click.option("--days", default=30, help="Days of history (1-365)")
@click.option("--today", "today_only", is_flag=True, help="Only today's totals")
def usage(days: int, today_only: bool) -> None:
    """Show token and cost usage per provider."""

    async def fetch() -> list[dict[str, Any]]:
        async with db.get_session() as session:
            if today_only:
                return await db.get_today_usage(session)
            return await db.get_usage_summary(session, days)

    rows = _run(fetch())
    if not rows:
        console.print("[yellow]No usage recorded[/yellow]")
        return

    table = Table(title="Today's Usage" if today_only else f"Usage (last {db.clamp_days(days)} days)")
    if not today_only:
        table.add_column("Date")
    table.add_column("Provider")
    table.add_column("Calls", justify="right")
    table.add_column("Tokens in", justify="right")
    table.add_column("Tokens out", justify="right")
    table.add_column("Cost", justify="right")
    for row in rows:
        if today_only:
            table.add_row(
                row["provider"],
                str(row["calls"]),
                str(row["tokens_in"]),
                str(row["tokens_out"]),
                f"${float(row['cost']):.4f}",
            )
        else:
            table.add_row(
                str(row["date"]),
                row["provider"],
                str(row["calls"]),
                str(row["total_tokens_in"]),
                str(row["total_tokens_out"]),
                f"${float(row['total_cost']):.4f}",
            )
    console.print(table)


@main.command(name="cache-clear")
def cache_clear() -> None:
    """Delete cached AI responses from the memory table."""

    async def clear() -> None:
        async with db.get_session() as session:
            await db.clear_ai_cache(session)

    _run(clear())
    console.print("[green]✓[/green] AI cache cleared")


# =============================================================================
# Search
# =============================================================================


@main.command()
@click.argument("query")
@click.option(
    "--recency",
    type=click.Choice(["day", "week", "month", "year", "none"]),
    default="month",
    help="Recency filter for web results",
)
def search(query: str, recency: str) -> None:
    """Grounded web search.

    QUERY: What to search for
    """
    result = _run(perplexity.search(query, recency_filter=recency))
    console.print(Panel(result["answer"], title=f"{result['provider']} ({result['time_ms']}ms)"))
    for i, citation in enumerate(result["citations"], start=1):
        console.print(f"  [dim]{i}.[/dim] {citation}")
    if result.get("warning"):
        console.print(f"[yellow]{result['warning']}[/yellow]")


@main.command()
@click.argument("claims", nargs=-1, required=True)
def verify(claims: tuple[str, ...]) -> None:
    """Fact-check one or more claims.

    CLAIMS: Claims to verify (quote each one)
    """
    batch = _run(perplexity.verify_batch(list(claims)))
    table = Table(title="Claim Verification")
    table.add_column("Claim")
    table.add_column("Status")
    for claim, item in zip(claims, batch["results"], strict=True):
        if "error" in item:
            table.add_row(claim, f"[red]error: {item['error']}[/red]")
        else:
            table.add_row(claim, item["claim_verification"]["status"])
    console.print(table)
    summary = batch["summary"]
    console.print(
        f"Verified: {summary['verified']}  Refuted: {summary['refuted']}  "
        f"Uncertain: {summary['uncertain']}"
    )


# =============================================================================
# Security
# =============================================================================


@main.command(name="security-report")
@click.argument("repository")
@click.option("--json", "as_json", is_flag=True, help="Print the raw report as JSON")
def security_report(repository: str, as_json: bool) -> None:
    """Aggregated security report.

    REPOSITORY: owner/repo
    """
    owner, _, repo = repository.partition("/")
    if not owner or not repo:
        raise click.BadParameter("expected owner/repo", param_hint="REPOSITORY")

    report = _run(security.get_security_report(owner, repo))
    if as_json:
        click.echo(json.dumps(report, indent=2, default=str))
        return

    summary = report["summary"]
    colors = {"CRITICAL": "red", "HIGH": "red", "MEDIUM": "yellow", "LOW": "green"}
    color = colors[summary["risk_level"]]
    console.print(
        Panel(
            f"Risk level: [{color}]{summary['risk_level']}[/{color}]\n"
            f"Critical issues: {summary['critical_issues']}\n"
            f"High issues: {summary['high_issues']}",
            title=f"Security: {report['repo']}",
        )
    )
    table = Table()
    table.add_column("Source")
    table.add_column("Items", justify="right")
    table.add_column("Error")
    for label, key, field in (
        ("Dependabot", "dependabot", "alerts"),
        ("Code scanning", "code_scanning", "alerts"),
        ("Snyk", "snyk", "issues"),
    ):
        section = report[key]
        table.add_row(label, str(len(section[field])), section["error"] or "")
    sonar = report["sonar"]
    table.add_row(
        "SonarQube",
        "-" if sonar["metrics"] is None else f"{sonar['metrics']['bugs']} bugs",
        sonar["error"] or "",
    )
    console.print(table)


@main.command()
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path), required=False)
@click.option("--language", "-l", default=None, help="javascript or python (guessed from suffix)")
def scan(path: Path | None, language: str | None) -> None:
    """Scan a file (or stdin) for secrets and insecure patterns.

    PATH: File to scan; reads stdin when omitted
    """
    code = path.read_text(encoding="utf-8", errors="replace") if path else sys.stdin.read()
    if language is None:
        language = "python" if path and path.suffix == ".py" else "javascript"

    secrets = scanners.scan_for_secrets(code)
    patterns = scanners.scan_for_anti_patterns(code, language)

    table = Table(title="Findings")
    table.add_column("Kind")
    table.add_column("Name")
    table.add_column("Severity")
    table.add_column("Count", justify="right")
    for f in secrets["findings"]:
        table.add_row("secret", f["type"], "-", str(f["count"]))
    for f in patterns["findings"]:
        table.add_row("pattern", f["name"], f["severity"], str(f["count"]))
    console.print(table)
    console.print(f"Security score: [bold]{patterns['score']}[/bold]/100")
    if secrets["has_secrets"]:
        raise SystemExit(1)


# =============================================================================
# Slack
# =============================================================================


@main.command()
def serve() -> None:
    """Run the Slack app (Socket Mode when SLACK_APP_TOKEN is set)."""
    from .slack import create_app, serve as serve_app

    app = create_app()
    if app is None:
        console.print("[red]SLACK_BOT_TOKEN and SLACK_SIGNING_SECRET are required[/red]")
        raise SystemExit(1)
    mode = "Socket Mode" if settings.slack_app_token else f"HTTP on port {settings.port}"
    console.print(f"[green]Starting Slack app ({mode})[/green]")
    serve_app(app)


if __name__ == "__main__":
    main()
