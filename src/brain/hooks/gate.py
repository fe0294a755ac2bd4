"""Mode-based tool gate.

Fail-closed: when the session state cannot be loaded, only read-only tools
pass. ``disabled`` mode, an empty mode and unknown modes allow everything.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from brain.errors import BrainError
from brain.hooks.normalize import HookResponse, NormalizedHookEvent, PreToolUsePayload
from brain.observability.logging import get_logger

if TYPE_CHECKING:
    from brain.runtime import BrainRuntime

logger = get_logger(__name__)

READ_ONLY_TOOLS = frozenset({"Read", "Glob", "Grep", "LSP", "WebFetch", "WebSearch"})
ALWAYS_ALLOWED_TOOLS = frozenset({"Task"})

MODE_BLOCKED_TOOLS: dict[str, frozenset[str]] = {
    "analysis": frozenset({"Edit", "Write", "Bash", "NotebookEdit"}),
    "planning": frozenset({"Edit", "Write", "NotebookEdit"}),
    "coding": frozenset(),
    "disabled": frozenset(),
}

GATE_MODE_DESCRIPTIONS = {
    "analysis": "Analysis mode is for research and investigation. Code modifications are not allowed.",
    "planning": "Planning mode is for design and planning. Direct file edits are not allowed.",
}

UNKNOWN_MODE = "unknown"


@dataclass(frozen=True)
class GateCheckResult:
    allowed: bool
    mode: str
    tool: str
    message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"allowed": self.allowed, "mode": self.mode, "tool": self.tool}
        if self.message:
            data["message"] = self.message
        return data


def is_read_only_tool(tool: str) -> bool:
    return tool in READ_ONLY_TOOLS


def format_block_message(tool: str, mode: str) -> str:
    description = GATE_MODE_DESCRIPTIONS.get(mode, f"Current mode ({mode}) does not allow this tool.")
    return (
        f"[BLOCKED] Tool '{tool}' is not allowed in {mode} mode.\n\n"
        f"{description}\n\n"
        'To proceed with code changes, transition to coding mode first using: set_mode(mode="coding")'
    )


def check_tool_blocked(tool: str, mode: str) -> GateCheckResult:
    if tool in ALWAYS_ALLOWED_TOOLS or not mode or mode == "disabled":
        return GateCheckResult(True, mode, tool)
    blocked = MODE_BLOCKED_TOOLS.get(mode)
    if blocked is None:
        return GateCheckResult(True, mode, tool)
    if tool in blocked:
        return GateCheckResult(False, mode, tool, format_block_message(tool, mode))
    return GateCheckResult(True, mode, tool)


def state_unavailable_result(tool: str) -> GateCheckResult:
    if is_read_only_tool(tool):
        return GateCheckResult(True, UNKNOWN_MODE, tool, "Session state unavailable. Read-only tool allowed.")
    return GateCheckResult(
        False,
        UNKNOWN_MODE,
        tool,
        f"[BLOCKED] Session state unavailable. Cannot verify mode for destructive tool '{tool}'. "
        "Start a session or use read-only tools only.",
    )


ModeLoader = Callable[[], Awaitable["str | None"]]


async def perform_gate_check(tool: str, load_mode: ModeLoader) -> GateCheckResult:
    """Decide whether `tool` may run given the mode `load_mode` returns.

    `load_mode` returning None or raising a `BrainError` means the session
    state is unavailable.
    """
    try:
        mode = await load_mode()
    except BrainError as exc:
        logger.warning("gate_state_unavailable", tool=tool, error=exc.message)
        mode = None
    if mode is None:
        result = state_unavailable_result(tool)
    else:
        result = check_tool_blocked(tool, mode)
    if not result.allowed:
        logger.info("gate_blocked", tool=tool, mode=result.mode)
    return result


async def handle_pre_tool_use(event: NormalizedHookEvent, runtime: BrainRuntime | None) -> HookResponse:
    tool = event.payload.tool_name if isinstance(event.payload, PreToolUsePayload) else ""

    async def load_mode() -> str | None:
        if runtime is None:
            return None
        state = await runtime.persistence.load_session()
        return state.current_mode if state is not None else None

    result = await perform_gate_check(tool, load_mode)
    if result.allowed:
        return HookResponse()
    return HookResponse(blocked=True, reason=result.message)
