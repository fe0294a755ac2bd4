"""Stop hook: decide whether the session may end."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from brain.hooks.normalize import HookResponse, NormalizedHookEvent
from brain.hooks.user_prompt import load_state_summary
from brain.observability.logging import get_logger

if TYPE_CHECKING:
    from brain.runtime import BrainRuntime

logger = get_logger(__name__)

NO_WORKFLOW_MESSAGE = "No active workflow - session can end"


@dataclass(frozen=True)
class Check:
    name: str
    passed: bool
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "passed": self.passed, "message": self.message}


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    message: str
    checks: list[Check] = field(default_factory=list)
    remediation: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "valid": self.valid,
            "message": self.message,
            "checks": [check.to_dict() for check in self.checks],
        }
        if self.remediation:
            data["remediation"] = self.remediation
        return data


def validate_stop_readiness(state: dict[str, Any] | None) -> ValidationResult:
    """Pausing is always safe; the checks are reported for visibility."""
    checks = [Check("no_blocking_ops", True, "No blocking operations detected")]
    if state is None:
        checks.append(Check("state_available", False, "Workflow state unavailable"))
    else:
        mode = state.get("mode")
        message = f"Workflow state available: mode={mode}" if mode else "Workflow state available"
        checks.append(Check("state_available", True, message))
    return ValidationResult(valid=True, message="Session can be paused safely", checks=checks)


def validate_session(state: dict[str, Any] | None) -> ValidationResult:
    checks: list[Check] = []
    mode = (state or {}).get("mode")
    if mode:
        checks.append(Check("workflow_state", True, f"Workflow state persisted with mode: {mode}"))
    else:
        checks.append(Check("workflow_state", True, "No active workflow state"))

    updated_at = (state or {}).get("updatedAt")
    if updated_at:
        checks.append(Check("recent_activity", True, f"Recent activity at: {updated_at}"))
    else:
        # Research modes must leave a trace before the session ends
        failing = state is not None and mode in ("analysis", "planning")
        checks.append(Check("recent_activity", not failing, "No recent activity captured"))

    task = (state or {}).get("task")
    checks.append(Check("task_status", True, f"Active task: {task}" if task else "No active task"))

    valid = all(check.passed for check in checks)
    return ValidationResult(
        valid=valid,
        message="Session ready to end" if valid else "Session validation failed",
        checks=checks,
        remediation="" if valid else "Capture observations before ending session",
    )


async def handle_stop(event: NormalizedHookEvent, runtime: BrainRuntime | None) -> HookResponse:
    summary = await load_state_summary(runtime)
    if summary is None:
        return HookResponse(reason=NO_WORKFLOW_MESSAGE)

    readiness = validate_stop_readiness(summary)
    result = validate_session(summary)
    logger.info(
        "stop_validated",
        valid=result.valid,
        checks=[check.to_dict() for check in (*readiness.checks, *result.checks)],
    )
    if result.valid:
        return HookResponse(reason=result.message)
    return HookResponse(
        blocked=True,
        reason=f"{result.message}. {result.remediation}",
        user_message=result.remediation,
    )
