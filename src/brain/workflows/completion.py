"""Feature completion workflow.

A LangGraph graph validates the request, fans out to the four completion
agents in parallel, then aggregates their verdicts:

    START -> validate -> (qa | analyst | architect | roadmap) -> aggregate -> END

Runs are checkpointed per ``thread_id = featureId``. Agent failures are retried
up to the configured attempts; validation failures are never retried.
"""

from __future__ import annotations

import json
import operator
from typing import Annotated, Any, Mapping, TypedDict
from uuid import uuid4

from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from brain.errors import (
    AgentFailure,
    BrainError,
    ValidationError,
    WorkflowErrorType,
    format_workflow_error,
    validate_feature_id,
)
from brain.notes.client import NoteStoreClient
from brain.observability.logging import get_logger
from brain.workflows.agents import COMPLETION_AGENTS, AgentRunner, default_runners, run_agent
from brain.workflows.events import WorkflowEvent
from brain.workflows.retry import DEFAULT_CONFIG, MaxRetriesExceeded, RetryConfig, async_with_retry
from brain.workflows.verdicts import AgentVerdict, FinalVerdict, merge_verdicts

logger = get_logger(__name__)

COMPLETION_NOTE_FOLDER = "features"


class CompletionState(TypedDict, total=False):
    feature_id: str
    context: dict[str, Any]
    verdicts: Annotated[dict[str, dict[str, Any]], operator.or_]
    final_verdict: dict[str, Any]


class FeatureCompletionResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    feature_id: str
    verdicts: dict[str, AgentVerdict] = Field(default_factory=dict)
    final_verdict: FinalVerdict
    overall_verdict: str

    def to_json_dict(self) -> dict[str, Any]:
        return {
            "featureId": self.feature_id,
            "verdicts": {k: v.to_json_dict() for k, v in self.verdicts.items()},
            "finalVerdict": self.final_verdict.to_json_dict(),
            "overallVerdict": self.overall_verdict,
        }


class FeatureCompletionError(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    feature_id: str
    error: str
    error_type: str
    is_retriable: bool

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def check_tasks(tasks: list[Mapping[str, Any]]) -> list[str]:
    """Messages for tasks that are IN_PROGRESS but not completed."""
    problems = []
    for task in tasks:
        if task.get("status") == "IN_PROGRESS" and not task.get("completed"):
            name = task.get("name") or "unnamed"
            problems.append(f'Task "{name}" is IN_PROGRESS but not complete')
    return problems


def _validate_request(feature_id: Any, context: Any) -> None:
    validate_feature_id(feature_id)
    if context is not None and not isinstance(context, dict):
        raise ValidationError(
            format_workflow_error(WorkflowErrorType.VALIDATION_ERROR, "context must be an object if provided")
        )
    tasks = (context or {}).get("tasks") or []
    problems = check_tasks(tasks)
    if problems:
        raise ValidationError(
            format_workflow_error(
                WorkflowErrorType.VALIDATION_ERROR,
                f"Cannot proceed with feature completion: {'; '.join(problems)}",
            ),
            context={"remediation": "Complete all IN_PROGRESS tasks before proceeding"},
        )


class CompletionWorkflow:
    """Runs the feature completion graph."""

    def __init__(
        self,
        *,
        runners: Mapping[str, AgentRunner] | None = None,
        retry_config: RetryConfig | None = None,
        checkpointer: Any | None = None,
        notes: NoteStoreClient | None = None,
    ):
        self.runners = {**default_runners(), **(runners or {})}
        self.retry_config = retry_config or DEFAULT_CONFIG
        self.checkpointer = checkpointer if checkpointer is not None else MemorySaver()
        self.notes = notes
        self.graph = self._build()

    def _agent_node(self, agent: str):
        runner = self.runners[agent]

        async def node(state: CompletionState) -> dict[str, Any]:
            verdict = await async_with_retry(
                run_agent,
                agent,
                runner,
                state["feature_id"],
                state.get("context") or {},
                config=self.retry_config,
                operation_name=f"agent-{agent}",
            )
            return {"verdicts": {agent: verdict.to_json_dict()}}

        node.__name__ = f"agent_{agent}"
        return node

    def _build(self) -> Any:
        def validate(state: CompletionState) -> dict[str, Any]:
            _validate_request(state.get("feature_id"), state.get("context"))
            logger.info(
                "Validated workflow input",
                feature_id=state["feature_id"],
                has_context=bool(state.get("context")),
            )
            return {}

        def aggregate(state: CompletionState) -> dict[str, Any]:
            verdicts = [AgentVerdict.model_validate(state["verdicts"][agent]) for agent in COMPLETION_AGENTS]
            return {"final_verdict": merge_verdicts(verdicts).to_json_dict()}

        graph = StateGraph(CompletionState)
        graph.add_node("validate", validate)
        for agent in COMPLETION_AGENTS:
            graph.add_node(agent, self._agent_node(agent))
            graph.add_edge("validate", agent)
        graph.add_node("aggregate", aggregate)
        graph.add_edge(START, "validate")
        graph.add_edge(list(COMPLETION_AGENTS), "aggregate")
        graph.add_edge("aggregate", END)
        return graph.compile(checkpointer=self.checkpointer)

    async def handle_completion_requested(
        self, event: WorkflowEvent
    ) -> FeatureCompletionResult | FeatureCompletionError:
        return await self.run(event.data.get("featureId"), event.data.get("context"))

    async def run(
        self, feature_id: Any, context: dict[str, Any] | None = None
    ) -> FeatureCompletionResult | FeatureCompletionError:
        thread_id = feature_id if isinstance(feature_id, str) and feature_id.strip() else f"invalid-{uuid4()}"
        config = {"configurable": {"thread_id": thread_id}}
        logger.info("Starting feature completion workflow", feature_id=feature_id)

        try:
            final_state = await self.graph.ainvoke(
                {"feature_id": feature_id, "context": context or {}}, config=config
            )
        except MaxRetriesExceeded as exc:
            cause = exc.last_exception
            return self._failure(feature_id, cause if isinstance(cause, BrainError) else exc)
        except BrainError as exc:
            return self._failure(feature_id, exc)

        verdicts = {agent: AgentVerdict.model_validate(final_state["verdicts"][agent]) for agent in COMPLETION_AGENTS}
        final = FinalVerdict.model_validate(final_state["final_verdict"])
        result = FeatureCompletionResult(
            feature_id=feature_id,
            verdicts=verdicts,
            final_verdict=final,
            overall_verdict=final.verdict,
        )
        logger.info(
            "Feature completion workflow finished",
            feature_id=feature_id,
            overall_verdict=final.verdict,
            is_blocking=final.is_blocking,
            reason=final.reason,
        )
        await self._persist(result)
        return result

    def _failure(self, feature_id: Any, exc: Exception) -> FeatureCompletionError:
        if isinstance(exc, BrainError) and exc.error_type is not None:
            error_type = exc.error_type.value
        elif isinstance(exc, MaxRetriesExceeded):
            error_type = WorkflowErrorType.AGENT_FAILURE.value
        else:
            error_type = WorkflowErrorType.VALIDATION_ERROR.value
        retriable = isinstance(exc, (AgentFailure, MaxRetriesExceeded)) or (
            isinstance(exc, BrainError) and exc.retriable
        )
        message = exc.message if isinstance(exc, BrainError) else str(exc)
        logger.error(
            "Feature completion workflow failed",
            feature_id=feature_id,
            error=message,
            error_type=error_type,
            is_retriable=retriable,
        )
        return FeatureCompletionError(
            feature_id=str(feature_id or ""),
            error=message,
            error_type=error_type,
            is_retriable=retriable,
        )

    async def _persist(self, result: FeatureCompletionResult) -> None:
        if self.notes is None:
            return
        path = f"{COMPLETION_NOTE_FOLDER}/{result.feature_id}-completion"
        try:
            await self.notes.write_note(path, json.dumps(result.to_json_dict(), indent=2))
        except BrainError as exc:
            logger.warning("Failed to persist completion result", feature_id=result.feature_id, error=exc.message)
