"""
Consensus Scoring Example

Shows how the weighted consensus picks a winner from canned provider answers,
without calling any API.

Usage:
    python examples/consensus_scoring.py
"""

import asyncio

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from orchestrator.consensus import build_consensus
from orchestrator.providers import AIResponse

console = Console()


def canned(provider: str, response: str, latency_ms: int) -> AIResponse:
    return AIResponse(provider=provider, response=response, latency_ms=latency_ms)


async def main() -> None:
    results = {
        "claude": canned(
            "claude",
            "Use a connection pool and parameterized queries to avoid SQL injection.",
            1800,
        ),
        "gpt": canned(
            "gpt",
            "Parameterized queries avoid SQL injection; add a connection pool for load.",
            900,
        ),
        "gemini": canned("gemini", "Cache the results.", 400),
    }

    for method in ("weighted", "majority", "best_of"):
        outcome = await build_consensus(results, method)

        table = Table(title=f"{method} scores")
        table.add_column("Provider")
        table.add_column("Agreement", justify="right")
        table.add_column("Latency", justify="right")
        table.add_column("Completeness", justify="right")
        table.add_column("Reliability", justify="right")
        table.add_column("Total", justify="right")
        for provider, score in outcome.scores.items():
            row = score.to_dict()
            table.add_row(
                provider,
                f"{row['agreement']:.1f}",
                f"{row['latency']:.1f}",
                f"{row['completeness']:.1f}",
                f"{row['reliability']:.1f}",
                f"[bold]{row['weighted_total']:.1f}[/bold]",
            )
        console.print(table)
        console.print(
            Panel(outcome.response or "", title=f"winner: {outcome.winner}", subtitle=outcome.reasoning)
        )


if __name__ == "__main__":
    asyncio.run(main())
