"""Protocol interface for the external note store.

The note store is consumed through a single tool-call entry point. Keeping the
seam this small lets tests swap in an in-memory store without patching.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol


@dataclass(frozen=True)
class NoteSearchResult:
    title: str
    permalink: str
    content: str | None = None
    file_path: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


class NoteStore(Protocol):
    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str: ...


class NoteToolError(Exception):
    """The note store executed the tool and reported an error result."""

    def __init__(self, tool: str, message: str):
        super().__init__(f"{tool}: {message}")
        self.tool = tool
        self.message = message
