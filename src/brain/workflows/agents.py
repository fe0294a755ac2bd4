"""Specialist agent runners used by the completion workflow.

Running the agents themselves is outside this package; the default runners
are placeholders that pass. Real runners are injected through
`CompletionWorkflow(runners=...)`.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable

from pydantic import ValidationError as PydanticValidationError

from brain.errors import AgentFailure, validate_feature_id, wrap_agent_execution
from brain.observability.logging import get_logger
from brain.workflows.verdicts import AgentVerdict

logger = get_logger(__name__)

COMPLETION_AGENTS: tuple[str, ...] = ("qa", "analyst", "architect", "roadmap")

AgentRunner = Callable[[str, dict[str, Any]], Awaitable[Any]]


def placeholder_runner(agent: str) -> AgentRunner:
    async def run(feature_id: str, context: dict[str, Any]) -> AgentVerdict:
        logger.debug("Running %s agent validation", agent, feature_id=feature_id)
        return AgentVerdict(agent=agent, verdict="PASS", details=f"{agent} validation placeholder")

    return run


def default_runners() -> dict[str, AgentRunner]:
    return {agent: placeholder_runner(agent) for agent in COMPLETION_AGENTS}


def _coerce_verdict(agent: str, value: Any) -> AgentVerdict:
    if value is None:
        raise AgentFailure(agent, "agent returned no verdict")
    if isinstance(value, AgentVerdict):
        return value
    try:
        data = dict(value)
        data.setdefault("agent", agent)
        return AgentVerdict.model_validate(data)
    except (TypeError, ValueError, PydanticValidationError) as exc:
        raise AgentFailure(agent, f"invalid verdict: {exc}") from exc


async def run_agent(
    agent: str, runner: AgentRunner, feature_id: str, context: dict[str, Any]
) -> AgentVerdict:
    """Run one agent and return its verdict.

    Raises:
        ValidationError: `feature_id` is empty (never retried).
        AgentFailure: The runner raised or produced no usable verdict.
    """
    validate_feature_id(feature_id)
    result = await wrap_agent_execution(agent, lambda: runner(feature_id, context))
    return _coerce_verdict(agent, result)
