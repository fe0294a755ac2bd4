"""Typed client over the note store's tool-call protocol.

All durable Brain state goes through this class. Transport failures surface as
``BrainUnavailableError``; a missing note is ``None``, never an error.
"""

from __future__ import annotations

import json
from typing import Any

from brain.errors import BrainUnavailableError
from brain.notes.protocols import NoteSearchResult, NoteStore, NoteToolError
from brain.observability.logging import get_logger

logger = get_logger(__name__)

_MISSING_MARKERS = ("not found", "note not found", "does not exist")


def _is_missing(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _MISSING_MARKERS)


class NoteStoreClient:
    """Note store operations bound to a default project."""

    def __init__(self, store: NoteStore, project: str | None = None):
        self.store = store
        self.project = project

    def _args(self, project: str | None, **arguments: Any) -> dict[str, Any]:
        target = project or self.project
        if target:
            arguments["project"] = target
        return {k: v for k, v in arguments.items() if v is not None}

    async def _call(self, name: str, arguments: dict[str, Any]) -> str:
        try:
            return await self.store.call_tool(name, arguments)
        except BrainUnavailableError:
            raise
        except NoteToolError:
            raise
        except OSError as exc:
            raise BrainUnavailableError(f"Note store call {name} failed: {exc}") from exc

    async def write_note(self, path: str, content: str, project: str | None = None) -> str:
        try:
            return await self._call("write_note", self._args(project, path=path, content=content))
        except NoteToolError as exc:
            raise BrainUnavailableError(f"write_note failed for {path}: {exc.message}") from exc

    async def read_note(self, identifier: str, project: str | None = None) -> str | None:
        try:
            text = await self._call("read_note", self._args(project, identifier=identifier))
        except NoteToolError as exc:
            if _is_missing(exc.message):
                return None
            raise BrainUnavailableError(f"read_note failed for {identifier}: {exc.message}") from exc
        if not text or not text.strip():
            return None
        first_line = text.strip().splitlines()[0]
        if first_line.lstrip("# ").lower().startswith("note not found"):
            return None
        return text

    async def delete_note(self, identifier: str, project: str | None = None) -> bool:
        try:
            text = await self._call("delete_note", self._args(project, identifier=identifier))
        except NoteToolError as exc:
            if _is_missing(exc.message):
                return False
            raise BrainUnavailableError(f"delete_note failed for {identifier}: {exc.message}") from exc
        return text.strip().lower() not in {"false", "0"}

    async def search_notes(
        self,
        query: str,
        project: str | None = None,
        *,
        limit: int = 10,
        mode: str | None = None,
        folders: list[str] | None = None,
        full_content: bool = False,
    ) -> list[NoteSearchResult]:
        arguments = self._args(
            project,
            query=query,
            limit=limit,
            mode=mode,
            folders=folders,
            fullContent=full_content or None,
        )
        try:
            text = await self._call("search_notes", arguments)
        except NoteToolError as exc:
            raise BrainUnavailableError(f"search_notes failed: {exc.message}") from exc
        return parse_search_results(text)

    async def build_context(self, url: str, project: str | None = None) -> str:
        try:
            return await self._call("build_context", self._args(project, url=url))
        except NoteToolError as exc:
            raise BrainUnavailableError(f"build_context failed for {url}: {exc.message}") from exc

    async def list_memory_projects(self) -> list[str]:
        try:
            text = await self._call("list_memory_projects", {})
        except NoteToolError as exc:
            raise BrainUnavailableError(f"list_memory_projects failed: {exc.message}") from exc
        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            return [line.strip("-* ").strip() for line in text.splitlines() if line.strip("-* ").strip()]
        if isinstance(data, dict):
            data = data.get("projects", [])
        names = []
        for item in data if isinstance(data, list) else []:
            names.append(item.get("name", "") if isinstance(item, dict) else str(item))
        return [n for n in names if n]


def parse_search_results(text: str) -> list[NoteSearchResult]:
    """Parse a ``search_notes`` payload (``{"results": [...]}`` or a bare list)."""
    if not text or not text.strip():
        return []
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        logger.warning("search_results_not_json", preview=text[:80])
        return []
    items = data.get("results", []) if isinstance(data, dict) else data
    results = []
    for item in items if isinstance(items, list) else []:
        if not isinstance(item, dict):
            continue
        results.append(
            NoteSearchResult(
                title=str(item.get("title", "")),
                permalink=str(item.get("permalink", "")),
                content=item.get("content"),
                file_path=item.get("file_path"),
                metadata=item.get("metadata") or {},
            )
        )
    return results
