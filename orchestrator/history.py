"""Bounded in-memory history used by the introspection commands."""

from __future__ import annotations

from collections import deque
from collections.abc import Iterator
from typing import Any

DEFAULT_MAXLEN = 200


class RollingHistory:
    """FIFO log that keeps only the newest ``maxlen`` entries."""

    def __init__(self, maxlen: int = DEFAULT_MAXLEN) -> None:
        if maxlen < 1:
            raise ValueError("maxlen must be positive")
        self._entries: deque[dict[str, Any]] = deque(maxlen=maxlen)

    @property
    def maxlen(self) -> int:
        return self._entries.maxlen or 0

    def append(self, entry: dict[str, Any]) -> None:
        self._entries.append(entry)

    def recent(self, limit: int = 50) -> list[dict[str, Any]]:
        """Return the last ``limit`` entries, oldest first."""
        if limit <= 0:
            return []
        return list(self._entries)[-limit:]

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[dict[str, Any]]:
        return iter(list(self._entries))
