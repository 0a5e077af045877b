"""Logging setup shared by the CLI and the Slack app."""

import logging

from rich.console import Console
from rich.logging import RichHandler

console = Console(stderr=True)


def configure_logging(level: str | int = "INFO", *, debug_sql: bool = False) -> None:
    """Route stdlib logging through rich."""
    logging.basicConfig(
        level=level,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    if debug_sql:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.INFO)
