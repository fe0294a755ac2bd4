"""Workflow events.

Payloads are pydantic models validated on emit. The bus is constructed at the
composition root and handed to whatever emits or consumes events.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from brain.observability.logging import get_logger
from brain.timestamps import now_iso

logger = get_logger(__name__)

SESSION_PROTOCOL_START = "session/protocol.start"
SESSION_PROTOCOL_END = "session/protocol.end"
SESSION_STATE_UPDATE = "session/state.update"
SESSION_MODE_CHANGED = "session/mode.changed"
AGENT_INVOKED = "orchestrator/agent.invoked"
AGENT_COMPLETED = "orchestrator/agent.completed"
FEATURE_COMPLETION_REQUESTED = "feature/completion.requested"
APPROVAL_REQUESTED = "approval/requested"
APPROVAL_GRANTED = "approval/granted"
APPROVAL_DENIED = "approval/denied"


class EventPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class SessionProtocolStartPayload(EventPayload):
    session_id: str
    working_directory: str
    timestamp: str = Field(default_factory=now_iso)


class SessionProtocolEndPayload(EventPayload):
    session_id: str
    working_directory: str
    timestamp: str = Field(default_factory=now_iso)


class SessionStateUpdatePayload(EventPayload):
    session_id: str
    version: int


class SessionModeChangedPayload(EventPayload):
    session_id: str
    previous_mode: str
    new_mode: str


class AgentInvokedPayload(EventPayload):
    session_id: str
    agent: str
    prompt: str
    context: dict[str, Any] = Field(default_factory=dict)
    artifacts: list[str] = Field(default_factory=list)
    handoff_from: str | None = None
    handoff_reason: str = ""


class AgentCompletedPayload(EventPayload):
    session_id: str
    agent: str
    output: dict[str, Any]
    handoff_to: str | None = None
    handoff_reason: str = ""


class FeatureCompletionRequestedPayload(EventPayload):
    feature_id: str
    context: dict[str, Any] = Field(default_factory=dict)


class ApprovalRequestedPayload(EventPayload):
    approval_id: str
    approval_type: str
    description: str
    timeout_seconds: int | None = None


class ApprovalGrantedPayload(EventPayload):
    approval_id: str
    approved_by: str
    comment: str | None = None


class ApprovalDeniedPayload(EventPayload):
    approval_id: str
    denied_by: str
    reason: str


EVENT_PAYLOADS: dict[str, type[EventPayload]] = {
    SESSION_PROTOCOL_START: SessionProtocolStartPayload,
    SESSION_PROTOCOL_END: SessionProtocolEndPayload,
    SESSION_STATE_UPDATE: SessionStateUpdatePayload,
    SESSION_MODE_CHANGED: SessionModeChangedPayload,
    AGENT_INVOKED: AgentInvokedPayload,
    AGENT_COMPLETED: AgentCompletedPayload,
    FEATURE_COMPLETION_REQUESTED: FeatureCompletionRequestedPayload,
    APPROVAL_REQUESTED: ApprovalRequestedPayload,
    APPROVAL_GRANTED: ApprovalGrantedPayload,
    APPROVAL_DENIED: ApprovalDeniedPayload,
}


@dataclass(frozen=True)
class WorkflowEvent:
    name: str
    data: dict[str, Any]
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: str = field(default_factory=now_iso)

    def payload(self) -> EventPayload:
        return EVENT_PAYLOADS[self.name].model_validate(self.data)


EventHandler = Callable[[WorkflowEvent], Awaitable[Any]]


class EventBus:
    """In-process event bus that records every emitted event."""

    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = {}
        self.sent: list[WorkflowEvent] = []

    def subscribe(self, name: str, handler: EventHandler) -> None:
        if name not in EVENT_PAYLOADS:
            raise ValueError(f"Unknown event: {name}")
        self._handlers.setdefault(name, []).append(handler)

    def handlers(self, name: str) -> list[EventHandler]:
        return list(self._handlers.get(name, []))

    def record(self, name: str, data: dict[str, Any] | EventPayload) -> WorkflowEvent:
        """Validate and record an event without dispatching it.

        Raises:
            ValueError: Unknown event name.
            pydantic.ValidationError: Payload does not match the event's model.
        """
        model = EVENT_PAYLOADS.get(name)
        if model is None:
            raise ValueError(f"Unknown event: {name}")
        payload = data if isinstance(data, model) else model.model_validate(
            data.to_json_dict() if isinstance(data, EventPayload) else data
        )
        event = WorkflowEvent(name=name, data=payload.to_json_dict())
        self.sent.append(event)
        logger.debug("event_emitted", event_name=name, event_id=event.id)
        return event

    async def emit(self, name: str, data: dict[str, Any] | EventPayload) -> list[Any]:
        """Validate, record and dispatch an event.

        Handlers run in registration order; their return values are returned.
        Handler exceptions propagate to the emitter.
        """
        event = self.record(name, data)
        results = []
        for handler in self.handlers(name):
            results.append(await handler(event))
        return results

    def events_named(self, name: str) -> list[WorkflowEvent]:
        return [event for event in self.sent if event.name == name]
