"""Hook dispatch: raw stdin in, host envelope and exit code out.

Nothing raised by a handler reaches the host. A failure during
``pre-tool-use`` is answered fail-closed through the gate; a failure in any
other hook is reported as advisory with exit code 1.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from brain.hooks.gate import handle_pre_tool_use, state_unavailable_result
from brain.hooks.normalize import (
    HookEventName,
    HookResponse,
    NormalizedHookEvent,
    PreToolUsePayload,
    exit_code_for,
    format_response,
    normalize_event,
)
from brain.hooks.session_start import handle_session_start
from brain.hooks.stop import handle_stop
from brain.hooks.user_prompt import handle_prompt_submit
from brain.observability.logging import get_logger, session_id_var

if TYPE_CHECKING:
    from brain.runtime import BrainRuntime

logger = get_logger(__name__)

HookHandler = Callable[[NormalizedHookEvent, "BrainRuntime | None"], Awaitable[HookResponse]]
RuntimeFactory = Callable[[NormalizedHookEvent], "BrainRuntime | None"]

HOOK_HANDLERS: dict[HookEventName, HookHandler] = {
    "pre-tool-use": handle_pre_tool_use,
    "prompt-submit": handle_prompt_submit,
    "session-start": handle_session_start,
    "stop": handle_stop,
}

EXIT_UNEXPECTED = 1


@dataclass(frozen=True)
class HookOutcome:
    envelope: dict[str, Any]
    exit_code: int
    event: NormalizedHookEvent

    def render(self) -> str:
        return json.dumps(self.envelope)


def parse_hook_input(text: str, hook: str) -> dict[str, Any]:
    """Parse stdin; a non-JSON prompt-submit body is taken as the prompt itself."""
    stripped = text.strip()
    if not stripped:
        return {}
    try:
        data = json.loads(stripped)
    except json.JSONDecodeError:
        if hook == "prompt-submit":
            return {"prompt": stripped}
        logger.warning("hook_input_unparseable", hook=hook)
        return {}
    return data if isinstance(data, dict) else {}


def _failure_response(event: NormalizedHookEvent) -> tuple[HookResponse, int]:
    if event.event == "pre-tool-use":
        tool = event.payload.tool_name if isinstance(event.payload, PreToolUsePayload) else ""
        result = state_unavailable_result(tool)
        response = HookResponse(blocked=not result.allowed, reason=result.message if not result.allowed else None)
        return response, exit_code_for(event, response)
    return HookResponse(), EXIT_UNEXPECTED


async def run_hook(hook: HookEventName, stdin_text: str, runtime_factory: RuntimeFactory) -> HookOutcome:
    raw = parse_hook_input(stdin_text, hook)
    event = normalize_event(raw, hook)
    token = session_id_var.set(event.session_id)
    try:
        try:
            runtime = runtime_factory(event)
            response = await HOOK_HANDLERS[event.event](event, runtime)
            exit_code = exit_code_for(event, response)
        except Exception as exc:
            logger.error("hook_failed", hook=event.event, platform=event.platform, error=str(exc), exc_info=True)
            response, exit_code = _failure_response(event)
        logger.info(
            "hook_completed",
            hook=event.event,
            platform=event.platform,
            blocked=response.blocked,
            exit_code=exit_code,
        )
        return HookOutcome(format_response(event, response), exit_code, event)
    finally:
        session_id_var.reset(token)
