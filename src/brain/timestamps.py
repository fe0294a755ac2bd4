"""UTC timestamp helpers shared by session documents, events and archives."""

from __future__ import annotations

from datetime import datetime, timezone


def now_iso() -> str:
    """UTC timestamp with millisecond precision and a ``Z`` suffix."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def path_safe(timestamp: str) -> str:
    """Timestamp usable inside a note path (``:`` and ``.`` become ``-``)."""
    return timestamp.replace(":", "-").replace(".", "-")
