"""Brain workflows - durable, event-triggered runs.

Architecture:
- events.py: event names, payload models and the EventBus
- steps.py: journaled StepRunner (replay skips completed steps)
- orchestrator.py: agent invocation lifecycle and history compaction
- completion.py / hitl.py: LangGraph-based completion and approval runs
- protocol_start.py / protocol_end.py: session start and end protocols
"""

from brain.workflows.events import EventBus, WorkflowEvent
from brain.workflows.retry import RetryConfig, async_with_retry
from brain.workflows.state import StepFail, StepOk, StepRetry

__all__ = [
    "EventBus",
    "WorkflowEvent",
    "RetryConfig",
    "async_with_retry",
    "StepOk",
    "StepRetry",
    "StepFail",
]
