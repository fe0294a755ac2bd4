"""Note store access: protocol, HTTP transport, typed client and fake."""

from brain.notes.client import NoteStoreClient, parse_search_results
from brain.notes.fakes import InMemoryNoteStore
from brain.notes.protocols import NoteSearchResult, NoteStore, NoteToolError
from brain.notes.transport import HttpNoteStoreTransport

__all__ = [
    "NoteStore",
    "NoteStoreClient",
    "NoteSearchResult",
    "NoteToolError",
    "HttpNoteStoreTransport",
    "InMemoryNoteStore",
    "parse_search_results",
    "build_note_store",
]


def build_note_store(provider: str, url: str, timeout: float) -> NoteStore:
    """Return the note store for a provider mode (``real`` or ``fake``)."""
    if provider == "fake":
        return InMemoryNoteStore()
    return HttpNoteStoreTransport(url, timeout=timeout)
