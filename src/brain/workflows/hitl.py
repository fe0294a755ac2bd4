"""Human-in-the-loop approval workflow.

``approval/requested`` starts a LangGraph run keyed by ``thread_id =
approvalId`` that suspends in ``await_decision`` via ``interrupt()``. A
correlated ``approval/granted`` or ``approval/denied`` resumes it with
``Command(resume=...)``; `expire_overdue` resumes overdue runs with a timeout
decision. Each request is also recorded as a note so that another process can
replay the suspended run and deliver the decision.
"""

from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Literal, TypedDict

from langgraph.checkpoint.memory import MemorySaver
from langgraph.graph import END, START, StateGraph
from langgraph.types import Command, interrupt
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from brain.errors import ValidationError
from brain.notes.client import NoteStoreClient
from brain.observability.logging import get_logger
from brain.workflows.events import WorkflowEvent

logger = get_logger(__name__)

APPROVALS_FOLDER = "approvals"
DEFAULT_TIMEOUT_SECONDS = 7 * 24 * 60 * 60

ApprovalStatus = Literal["APPROVED", "DENIED", "TIMEOUT"]


class ApprovalState(TypedDict, total=False):
    approval_id: str
    approval_type: str
    description: str
    deadline: str
    decision: dict[str, Any]
    result: dict[str, Any]


class ApprovalResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: ApprovalStatus
    approval_id: str
    approved_by: str | None = None
    comment: str | None = None
    denied_by: str | None = None
    reason: str | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ApprovalRecord(BaseModel):
    """Durable request record stored at ``approvals/{approvalId}``."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    approval_id: str
    approval_type: str
    description: str
    requested_at: str
    deadline: str
    result: ApprovalResult | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def initial_state(self) -> ApprovalState:
        return {
            "approval_id": self.approval_id,
            "approval_type": self.approval_type,
            "description": self.description,
            "deadline": self.deadline,
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_iso(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def await_decision(state: ApprovalState) -> dict[str, Any]:
    """Suspend until a decision for this approval arrives."""
    decision = interrupt(
        {
            "approvalId": state["approval_id"],
            "approvalType": state.get("approval_type"),
            "description": state.get("description"),
            "deadline": state.get("deadline"),
        }
    )
    return {"decision": decision if isinstance(decision, dict) else {"status": "TIMEOUT"}}


def finalize(state: ApprovalState) -> dict[str, Any]:
    decision = state.get("decision") or {}
    status = decision.get("status")
    approval_id = state["approval_id"]
    if status == "APPROVED":
        result = ApprovalResult(
            status="APPROVED",
            approval_id=approval_id,
            approved_by=decision.get("approvedBy"),
            comment=decision.get("comment"),
        )
    elif status == "DENIED":
        result = ApprovalResult(
            status="DENIED",
            approval_id=approval_id,
            denied_by=decision.get("deniedBy"),
            reason=decision.get("reason"),
        )
    else:
        # Timeouts carry no user identity
        result = ApprovalResult(status="TIMEOUT", approval_id=approval_id)
    return {"result": result.to_json_dict()}


def build_approval_graph(checkpointer: Any) -> Any:
    graph = StateGraph(ApprovalState)
    graph.add_node("await_decision", await_decision)
    graph.add_node("finalize", finalize)
    graph.add_edge(START, "await_decision")
    graph.add_edge("await_decision", "finalize")
    graph.add_edge("finalize", END)
    return graph.compile(checkpointer=checkpointer)


class HitlWorkflow:
    """Suspend-and-resume approval runs correlated by approval id."""

    def __init__(
        self,
        *,
        notes: NoteStoreClient | None = None,
        timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS,
        checkpointer: Any | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.notes = notes
        self.timeout_seconds = timeout_seconds
        self.clock = clock
        self.graph = build_approval_graph(checkpointer if checkpointer is not None else MemorySaver())
        self._records: dict[str, ApprovalRecord] = {}

    @staticmethod
    def _config(approval_id: str) -> dict[str, Any]:
        return {"configurable": {"thread_id": approval_id}}

    # --- records ---

    async def _save_record(self, record: ApprovalRecord) -> None:
        self._records[record.approval_id] = record
        if self.notes is not None:
            await self.notes.write_note(
                f"{APPROVALS_FOLDER}/{record.approval_id}", json.dumps(record.to_json_dict(), indent=2)
            )

    async def get_record(self, approval_id: str) -> ApprovalRecord | None:
        record = self._records.get(approval_id)
        if record is not None or self.notes is None:
            return record
        text = await self.notes.read_note(f"{APPROVALS_FOLDER}/{approval_id}")
        if text is None:
            return None
        try:
            record = ApprovalRecord.model_validate(json.loads(text))
        except ValueError:
            logger.warning("approval_record_unreadable", approval_id=approval_id)
            return None
        self._records[approval_id] = record
        return record

    async def pending(self) -> list[ApprovalRecord]:
        if self.notes is not None:
            for found in await self.notes.search_notes(
                "approval", folders=[APPROVALS_FOLDER], limit=500, full_content=True
            ):
                approval_id = (found.permalink or found.title).rsplit("/", 1)[-1]
                if approval_id not in self._records:
                    await self.get_record(approval_id)
        return [record for record in self._records.values() if record.result is None]

    # --- lifecycle ---

    async def handle_requested(self, event: WorkflowEvent) -> ApprovalRecord:
        return await self.request(
            event.data["approvalId"],
            event.data.get("approvalType", ""),
            event.data.get("description", ""),
            timeout_seconds=event.data.get("timeoutSeconds"),
        )

    async def request(
        self,
        approval_id: str,
        approval_type: str,
        description: str,
        *,
        timeout_seconds: int | None = None,
    ) -> ApprovalRecord:
        if not approval_id or not approval_id.strip():
            raise ValidationError("approvalId must be a non-empty string")
        existing = await self.get_record(approval_id)
        if existing is not None:
            logger.info("approval_already_requested", approval_id=approval_id)
            return existing

        now = self.clock()
        record = ApprovalRecord(
            approval_id=approval_id,
            approval_type=approval_type,
            description=description,
            requested_at=_iso(now),
            deadline=_iso(now + timedelta(seconds=timeout_seconds or self.timeout_seconds)),
        )
        await self.graph.ainvoke(record.initial_state(), config=self._config(approval_id))
        await self._save_record(record)
        logger.info(
            "HITL approval workflow started",
            approval_id=approval_id,
            approval_type=approval_type,
            deadline=record.deadline,
        )
        return record

    async def _ensure_suspended(self, record: ApprovalRecord) -> None:
        """Replay the run up to its interrupt when this process has no checkpoint for it."""
        config = self._config(record.approval_id)
        snapshot = await self.graph.aget_state(config)
        if not snapshot.next:
            await self.graph.ainvoke(record.initial_state(), config=config)

    async def _resume(self, approval_id: str, decision: dict[str, Any]) -> ApprovalResult | None:
        record = await self.get_record(approval_id)
        if record is None:
            logger.warning("approval_unknown", approval_id=approval_id, decision=decision.get("status"))
            return None
        if record.result is not None:
            return record.result
        if decision.get("status") != "TIMEOUT" and self.clock() > _parse_iso(record.deadline):
            # The wait ended at the deadline; late decisions are dropped
            logger.warning(
                "approval_decision_after_deadline",
                approval_id=approval_id,
                decision=decision.get("status"),
                deadline=record.deadline,
            )
            decision = {"status": "TIMEOUT"}

        await self._ensure_suspended(record)
        final_state = await self.graph.ainvoke(Command(resume=decision), config=self._config(approval_id))
        result = ApprovalResult.model_validate(final_state["result"])
        record.result = result
        await self._save_record(record)
        logger.info("HITL approval resolved", approval_id=approval_id, status=result.status)
        return result

    async def grant(self, approval_id: str, approved_by: str, comment: str | None = None) -> ApprovalResult | None:
        return await self._resume(
            approval_id, {"status": "APPROVED", "approvedBy": approved_by, "comment": comment}
        )

    async def deny(self, approval_id: str, denied_by: str, reason: str) -> ApprovalResult | None:
        return await self._resume(approval_id, {"status": "DENIED", "deniedBy": denied_by, "reason": reason})

    async def handle_granted(self, event: WorkflowEvent) -> ApprovalResult | None:
        return await self.grant(event.data["approvalId"], event.data["approvedBy"], event.data.get("comment"))

    async def handle_denied(self, event: WorkflowEvent) -> ApprovalResult | None:
        return await self.deny(event.data["approvalId"], event.data["deniedBy"], event.data["reason"])

    async def expire_overdue(self, now: datetime | None = None) -> list[ApprovalResult]:
        """Resolve every pending approval past its deadline as TIMEOUT."""
        moment = now or self.clock()
        expired: list[ApprovalResult] = []
        for record in await self.pending():
            if _parse_iso(record.deadline) <= moment:
                result = await self._resume(record.approval_id, {"status": "TIMEOUT"})
                if result is not None:
                    logger.warning("HITL approval timed out", approval_id=record.approval_id)
                    expired.append(result)
        return expired
