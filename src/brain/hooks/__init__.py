"""Host hook handling: normalization, gate check and per-event handlers."""

from brain.hooks.gate import GateCheckResult, check_tool_blocked, perform_gate_check
from brain.hooks.normalize import (
    BlockingSemantics,
    HookResponse,
    NormalizedHookEvent,
    blocking_semantics,
    format_response,
    normalize_event,
)
from brain.hooks.runner import HookOutcome, run_hook
from brain.hooks.scenario import ScenarioResult, detect_scenario

__all__ = [
    "BlockingSemantics",
    "GateCheckResult",
    "HookOutcome",
    "HookResponse",
    "NormalizedHookEvent",
    "ScenarioResult",
    "blocking_semantics",
    "check_tool_blocked",
    "detect_scenario",
    "format_response",
    "normalize_event",
    "perform_gate_check",
    "run_hook",
]
