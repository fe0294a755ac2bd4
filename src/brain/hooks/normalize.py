"""Hook normalization.

Both hosts deliver hook events as JSON on stdin. The secondary host always
includes a string ``hook_event_name``; the primary host never does, so its
event comes from the hook the CLI was invoked as, or is inferred from the
payload shape. `normalize_event` turns either into a `NormalizedHookEvent`
and `format_response` renders a `HookResponse` back into the envelope the
originating host expects.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal, Union

from pydantic import BaseModel, Field

Platform = Literal["primary", "secondary"]
HookEventName = Literal["session-start", "prompt-submit", "pre-tool-use", "stop"]

PRIMARY_EVENT_HINTS: dict[str, HookEventName] = {
    "PreToolUse": "pre-tool-use",
    "UserPromptSubmit": "prompt-submit",
    "Stop": "stop",
    "SessionStart": "session-start",
}

PRIMARY_HOOK_NAMES: dict[HookEventName, str] = {event: hint for hint, event in PRIMARY_EVENT_HINTS.items()}

SECONDARY_EVENTS: dict[str, HookEventName] = {
    "beforeSubmitPrompt": "prompt-submit",
    "beforeShellExecution": "pre-tool-use",
    "beforeMCPExecution": "pre-tool-use",
    "beforeReadFile": "pre-tool-use",
    "stop": "stop",
    "sessionStart": "session-start",
}

# Secondary-host events that stand for a fixed tool
SECONDARY_TOOLS: dict[str, str] = {
    "beforeShellExecution": "Bash",
    "beforeReadFile": "Read",
}


class PreToolUsePayload(BaseModel):
    tool_name: str = ""
    tool_input: dict[str, Any] = Field(default_factory=dict)


class PromptSubmitPayload(BaseModel):
    prompt: str = ""


class SessionStartPayload(BaseModel):
    source: str | None = None


class StopPayload(BaseModel):
    status: str | None = None


HookPayload = Union[PreToolUsePayload, PromptSubmitPayload, SessionStartPayload, StopPayload]


class NormalizedHookEvent(BaseModel):
    platform: Platform
    event: HookEventName
    session_id: str = ""
    workspace_root: str = ""
    payload: HookPayload
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def hook_name(self) -> str:
        """Host-facing event name, used in primary-host envelopes."""
        if self.platform == "secondary":
            return str(self.raw.get("hook_event_name", self.event))
        return PRIMARY_HOOK_NAMES[self.event]


@dataclass(frozen=True)
class BlockingSemantics:
    can_block: bool
    info_only: bool


_BLOCKING: dict[HookEventName, dict[Platform, BlockingSemantics]] = {
    "pre-tool-use": {
        "primary": BlockingSemantics(True, False),
        "secondary": BlockingSemantics(True, False),
    },
    "prompt-submit": {
        "primary": BlockingSemantics(True, False),
        "secondary": BlockingSemantics(False, True),
    },
    "stop": {
        "primary": BlockingSemantics(True, False),
        "secondary": BlockingSemantics(False, True),
    },
    "session-start": {
        "primary": BlockingSemantics(False, True),
        "secondary": BlockingSemantics(False, True),
    },
}


def blocking_semantics(event: HookEventName, platform: Platform) -> BlockingSemantics:
    return _BLOCKING.get(event, {}).get(platform, BlockingSemantics(False, True))


def detect_platform(raw: dict[str, Any]) -> Platform:
    return "secondary" if isinstance(raw.get("hook_event_name"), str) else "primary"


def _primary_event(raw: dict[str, Any], hint: str | None) -> HookEventName:
    if hint and hint in PRIMARY_EVENT_HINTS:
        return PRIMARY_EVENT_HINTS[hint]
    if hint and hint in PRIMARY_HOOK_NAMES:
        return hint  # type: ignore[return-value]
    if isinstance(raw.get("prompt"), str):
        return "prompt-submit"
    if isinstance(raw.get("tool_name"), str):
        return "pre-tool-use"
    if isinstance(raw.get("session_id"), str) and len(raw) <= 2:
        return "session-start"
    return "prompt-submit"


def _string(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _session_id(raw: dict[str, Any], platform: Platform) -> str:
    if platform == "secondary":
        return _string(raw.get("conversation_id")) or _string(raw.get("session_id"))
    return _string(raw.get("session_id"))


def _workspace_root(raw: dict[str, Any], platform: Platform) -> str:
    if platform == "secondary":
        roots = raw.get("workspace_roots")
        if isinstance(roots, list) and roots and isinstance(roots[0], str):
            return roots[0]
        return _string(raw.get("cwd"))
    return _string(raw.get("cwd"))


def _payload(raw: dict[str, Any], platform: Platform, event: HookEventName) -> HookPayload:
    if event == "pre-tool-use":
        tool_input = raw.get("tool_input")
        tool_input = dict(tool_input) if isinstance(tool_input, dict) else {}
        tool_name = _string(raw.get("tool_name"))
        if platform == "secondary":
            hook = raw.get("hook_event_name", "")
            tool_name = SECONDARY_TOOLS.get(hook, tool_name)
            if hook == "beforeShellExecution" and "command" in raw:
                tool_input.setdefault("command", raw.get("command"))
            elif hook == "beforeReadFile" and "file_path" in raw:
                tool_input.setdefault("file_path", raw.get("file_path"))
        return PreToolUsePayload(tool_name=tool_name, tool_input=tool_input)
    if event == "prompt-submit":
        return PromptSubmitPayload(prompt=_string(raw.get("prompt")))
    if event == "session-start":
        return SessionStartPayload(source=raw.get("source") if isinstance(raw.get("source"), str) else None)
    return StopPayload(status=raw.get("status") if isinstance(raw.get("status"), str) else None)


def normalize_event(raw: dict[str, Any], hint: str | None = None) -> NormalizedHookEvent:
    """Normalize a raw host payload.

    `hint` is the hook the CLI was invoked as (``PreToolUse`` or
    ``pre-tool-use``); it is ignored for the secondary host, whose payload
    names its own event.
    """
    platform = detect_platform(raw)
    if platform == "secondary":
        event = SECONDARY_EVENTS.get(raw["hook_event_name"], "prompt-submit")
    else:
        event = _primary_event(raw, hint)
    return NormalizedHookEvent(
        platform=platform,
        event=event,
        session_id=_session_id(raw, platform),
        workspace_root=_workspace_root(raw, platform),
        payload=_payload(raw, platform, event),
        raw=raw,
    )


@dataclass
class HookResponse:
    """Host-neutral hook outcome."""

    blocked: bool = False
    reason: str | None = None
    additional_context: str | None = None
    user_message: str | None = None
    updated_input: dict[str, Any] | None = None
    env: dict[str, str] = field(default_factory=dict)


def _primary_envelope(event: NormalizedHookEvent, response: HookResponse) -> dict[str, Any]:
    if event.event == "pre-tool-use":
        envelope: dict[str, Any] = {"decision": "block" if response.blocked else "allow"}
        if response.reason:
            envelope["reason"] = response.reason
        return envelope
    if event.event in ("prompt-submit", "stop") and response.blocked:
        return {"decision": "block", "reason": response.reason or ""}
    if response.additional_context and event.event in ("prompt-submit", "session-start"):
        return {
            "hookSpecificOutput": {
                "hookEventName": event.hook_name,
                "additionalContext": response.additional_context,
            }
        }
    return {}


def _secondary_envelope(event: NormalizedHookEvent, response: HookResponse) -> dict[str, Any]:
    if event.event == "pre-tool-use":
        envelope: dict[str, Any] = {"decision": "deny" if response.blocked else "allow"}
        if response.reason:
            envelope["reason"] = response.reason
        if response.updated_input is not None:
            envelope["updated_input"] = response.updated_input
        return envelope
    if event.event == "prompt-submit":
        if response.blocked:
            return {"continue": False, "user_message": response.user_message or response.reason or ""}
        envelope = {"continue": True}
        if response.user_message:
            envelope["user_message"] = response.user_message
        return envelope
    if event.event == "session-start":
        envelope = {}
        if response.env:
            envelope["env"] = dict(response.env)
        if response.additional_context:
            envelope["additional_context"] = response.additional_context
        envelope["continue"] = True
        return envelope
    # stop is informational on this host
    message = response.user_message or (response.reason if response.blocked else None)
    return {"followup_message": message} if message else {}


def format_response(event: NormalizedHookEvent, response: HookResponse) -> dict[str, Any]:
    if event.platform == "secondary":
        return _secondary_envelope(event, response)
    return _primary_envelope(event, response)


def exit_code_for(event: NormalizedHookEvent, response: HookResponse) -> int:
    """2 when the response blocks and the host honours blocking for this event."""
    if response.blocked and blocking_semantics(event.event, event.platform).can_block:
        return 2
    return 0
