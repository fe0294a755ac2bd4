"""Tagged results a workflow step may return to `StepRunner`."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Generic, TypeVar, Union

from brain.errors import WorkflowErrorType

T = TypeVar("T")


@dataclass(frozen=True)
class StepOk(Generic[T]):
    """The step finished; `value` is memoized in the journal."""

    value: T


@dataclass(frozen=True)
class StepRetry:
    """Transient failure; the runner tries the step again."""

    reason: str


@dataclass(frozen=True)
class StepFail:
    """Terminal failure; the runner stops the workflow."""

    kind: WorkflowErrorType
    message: str


StepOutcome = Union[StepOk[Any], StepRetry, StepFail]
