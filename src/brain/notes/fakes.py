"""Deterministic in-memory note store for tests and offline runs."""

from __future__ import annotations

import fnmatch
import json
from dataclasses import dataclass, field
from typing import Any, Callable

from brain.errors import BrainUnavailableError
from brain.notes.protocols import NoteToolError

__all__ = ["InMemoryNoteStore"]

DEFAULT_PROJECT = "default"


@dataclass
class _Failure:
    tool: str
    exc: Exception
    when: Callable[[dict[str, Any]], bool] | None
    remaining: int


@dataclass
class InMemoryNoteStore:
    """Implements the tool-call protocol over a dict keyed by (project, path)."""

    notes: dict[tuple[str, str], str] = field(default_factory=dict)
    calls: list[tuple[str, dict[str, Any]]] = field(default_factory=list)
    projects: list[str] = field(default_factory=list)
    _failures: list[_Failure] = field(default_factory=list)

    def inject_failure(
        self,
        tool: str,
        exc: Exception | None = None,
        *,
        when: Callable[[dict[str, Any]], bool] | None = None,
        times: int = 1,
    ) -> None:
        """Make the next `times` matching calls to `tool` raise `exc`."""
        self._failures.append(
            _Failure(tool, exc or BrainUnavailableError(f"Injected {tool} failure"), when, times)
        )

    def put(self, path: str, content: str, project: str = DEFAULT_PROJECT) -> None:
        self.notes[(project, path)] = content

    def get(self, path: str, project: str = DEFAULT_PROJECT) -> str | None:
        return self.notes.get((project, path))

    def paths(self, project: str = DEFAULT_PROJECT) -> list[str]:
        return sorted(p for proj, p in self.notes if proj == project)

    def _maybe_fail(self, name: str, arguments: dict[str, Any]) -> None:
        for failure in self._failures:
            if failure.tool != name or failure.remaining <= 0:
                continue
            if failure.when is not None and not failure.when(arguments):
                continue
            failure.remaining -= 1
            raise failure.exc

    def _resolve(self, project: str, identifier: str) -> str | None:
        if (project, identifier) in self.notes:
            return identifier
        key = identifier.removeprefix("memory://").lower()
        for proj, path in self.notes:
            if proj != project:
                continue
            if path.lower() == key or path.rsplit("/", 1)[-1].lower() == key:
                return path
        return None

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        self.calls.append((name, dict(arguments)))
        self._maybe_fail(name, arguments)
        project = arguments.get("project") or DEFAULT_PROJECT

        if name == "write_note":
            path = arguments["path"]
            self.notes[(project, path)] = arguments["content"]
            return f"# Created note\npermalink: {path}"

        if name == "read_note":
            path = self._resolve(project, arguments["identifier"])
            if path is None:
                raise NoteToolError(name, f"Note not found: {arguments['identifier']}")
            return self.notes[(project, path)]

        if name == "delete_note":
            path = self._resolve(project, arguments["identifier"])
            if path is None:
                return "false"
            del self.notes[(project, path)]
            return "true"

        if name == "search_notes":
            return json.dumps({"results": self._search(project, arguments)})

        if name == "build_context":
            pattern = arguments["url"].removeprefix("memory://") or "*"
            results = [
                {"title": path.rsplit("/", 1)[-1], "permalink": path}
                for proj, path in sorted(self.notes)
                if proj == project and fnmatch.fnmatch(path, pattern)
            ]
            return json.dumps({"results": results})

        if name == "list_memory_projects":
            names = sorted(set(self.projects) | {proj for proj, _ in self.notes})
            return json.dumps({"projects": [{"name": n} for n in names]})

        raise NoteToolError(name, f"Unknown tool: {name}")

    def _search(self, project: str, arguments: dict[str, Any]) -> list[dict[str, Any]]:
        query = str(arguments.get("query", "")).lower()
        folders = arguments.get("folders") or []
        limit = int(arguments.get("limit", 10))
        full = bool(arguments.get("fullContent"))

        hits = []
        for (proj, path), content in sorted(self.notes.items()):
            if proj != project:
                continue
            if folders and not any(path.startswith(f.rstrip("/") + "/") for f in folders):
                continue
            if query not in ("", "*") and query not in path.lower() and query not in content.lower():
                continue
            hit: dict[str, Any] = {
                "title": path.rsplit("/", 1)[-1],
                "permalink": path,
                "file_path": f"{path}.md",
            }
            if full:
                hit["content"] = content
            hits.append(hit)
        return hits[:limit]
