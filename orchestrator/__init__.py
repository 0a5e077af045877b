"""Slack-facing orchestrator for AI, search and DevOps providers."""

__version__ = "0.1.0"
