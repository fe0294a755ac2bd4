"""Prompt-submit hook: scenario hints and workflow state, never blocking."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from brain.errors import BrainError
from brain.hooks.normalize import HookResponse, NormalizedHookEvent, PromptSubmitPayload
from brain.hooks.scenario import ScenarioResult, detect_scenario, has_planning_keywords
from brain.observability.logging import get_logger

if TYPE_CHECKING:
    from brain.runtime import BrainRuntime

logger = get_logger(__name__)


def format_scenario(result: ScenarioResult) -> str:
    return (
        f"### Scenario Detected: {result.scenario}\n\n"
        f"**Triggers**: {', '.join(result.keywords)}\n"
        f"**Recommended**: {result.recommended}\n"
        f"**Directory**: {result.directory}/ (note type: {result.note_type})\n"
    )


def format_workflow_state(summary: dict[str, Any]) -> str:
    lines = ["### Workflow State", "", f"**Mode:** {summary.get('mode')}"]
    if summary.get("modeDescription"):
        lines.append(f"**Description:** {summary['modeDescription']}")
    if summary.get("feature"):
        lines.append(f"**Feature:** {summary['feature']}")
    if summary.get("task"):
        lines.append(f"**Task:** {summary['task']}")
    if summary.get("updatedAt"):
        lines.append(f"**Updated:** {summary['updatedAt']}")
    return "\n".join(lines) + "\n"


async def load_state_summary(runtime: BrainRuntime | None) -> dict[str, Any] | None:
    if runtime is None:
        return None
    try:
        return await runtime.sessions.get_state_summary()
    except BrainError as exc:
        logger.warning("workflow_state_unavailable", error=exc.message)
        return None


async def handle_prompt_submit(event: NormalizedHookEvent, runtime: BrainRuntime | None) -> HookResponse:
    prompt = event.payload.prompt if isinstance(event.payload, PromptSubmitPayload) else ""
    sections: list[str] = []
    user_message: str | None = None

    scenario = detect_scenario(prompt)
    if scenario.detected:
        sections.append(format_scenario(scenario))
        user_message = f"[{scenario.scenario}] {scenario.recommended}"

    if has_planning_keywords(prompt):
        summary = await load_state_summary(runtime)
        if summary is not None:
            sections.append(format_workflow_state(summary))

    return HookResponse(
        additional_context="\n".join(sections) or None,
        user_message=user_message,
    )
