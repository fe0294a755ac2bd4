"""HTTP transport for the note store's tool-call endpoint.

Requests are JSON-RPC 2.0 ``tools/call`` POSTs. The response's first ``text``
content item is the tool's result.
"""

from __future__ import annotations

import itertools
from typing import Any

import httpx

from brain.errors import BrainUnavailableError
from brain.notes.protocols import NoteToolError
from brain.observability.logging import get_logger

logger = get_logger(__name__)


class HttpNoteStoreTransport:
    """NoteStore implementation backed by httpx."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client
        self._ids = itertools.count(1)

    def _payload(self, name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": "tools/call",
            "params": {"name": name, "arguments": arguments},
        }

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> httpx.Response:
        resp = await client.post(
            self.url,
            json=payload,
            headers={"Accept": "application/json, text/event-stream"},
        )
        resp.raise_for_status()
        return resp

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> str:
        """Invoke a note-store tool and return its text payload.

        Raises:
            BrainUnavailableError: Connection failure, timeout, non-2xx status or
                a malformed response.
            NoteToolError: The tool ran and reported ``isError``.
        """
        payload = self._payload(name, arguments)
        try:
            if self._client is not None:
                resp = await self._post(self._client, payload)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    resp = await self._post(client, payload)
            body = resp.json()
        except httpx.TimeoutException as exc:
            logger.error("note_store_timeout", tool=name, url=self.url)
            raise BrainUnavailableError(f"Note store timed out calling {name}") from exc
        except httpx.HTTPStatusError as exc:
            logger.error(
                "note_store_http_error", tool=name, status_code=exc.response.status_code
            )
            raise BrainUnavailableError(
                f"Note store returned {exc.response.status_code} for {name}"
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("note_store_unavailable", tool=name, url=self.url, error=str(exc))
            raise BrainUnavailableError(f"Note store unavailable: {exc}") from exc
        except ValueError as exc:
            raise BrainUnavailableError(f"Note store returned invalid JSON for {name}") from exc

        if not isinstance(body, dict):
            raise BrainUnavailableError(f"Note store returned an unexpected payload for {name}")
        if "error" in body:
            error = body["error"] or {}
            message = error.get("message", "unknown error") if isinstance(error, dict) else str(error)
            raise BrainUnavailableError(f"Note store RPC error for {name}: {message}")

        result = body.get("result") or {}
        text = _first_text(result.get("content") or [])
        if result.get("isError"):
            raise NoteToolError(name, text or "tool reported an error")
        return text


def _first_text(content: list[Any]) -> str:
    for item in content:
        if isinstance(item, dict) and item.get("type") == "text":
            return str(item.get("text", ""))
    return ""
