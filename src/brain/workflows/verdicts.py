"""Verdict aggregation across parallel specialist agents.

Verdicts form a fixed lattice split into three classes. The final verdict is
the highest verdict of the highest non-empty class; only the blocking class
blocks the workflow.
"""

from __future__ import annotations

from typing import Any, Literal, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

VerdictValue = Literal[
    "CRITICAL_FAIL",
    "REJECTED",
    "FAIL",
    "NEEDS_REVIEW",
    "WARN",
    "PARTIAL",
    "COMPLIANT",
    "PASS",
]

VERDICTS: tuple[str, ...] = get_args(VerdictValue)

# Highest priority first within each class
BLOCKING_VERDICTS: tuple[str, ...] = ("CRITICAL_FAIL", "REJECTED", "FAIL", "NEEDS_REVIEW")
WARNING_VERDICTS: tuple[str, ...] = ("WARN", "PARTIAL")
PASSING_VERDICTS: tuple[str, ...] = ("COMPLIANT", "PASS")


class AgentVerdict(BaseModel):
    model_config = ConfigDict(frozen=True)

    agent: str
    verdict: VerdictValue
    details: str | None = None

    def to_json_dict(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class FinalVerdict(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    verdict: VerdictValue
    is_blocking: bool
    reason: str
    agent_results: dict[str, AgentVerdict] = Field(default_factory=dict)
    blocking_agents: list[str] = Field(default_factory=list)
    warning_agents: list[str] = Field(default_factory=list)
    passing_agents: list[str] = Field(default_factory=list)

    def to_json_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", by_alias=True)
        data["agentResults"] = {k: v.to_json_dict() for k, v in self.agent_results.items()}
        return data


def is_blocking_verdict(verdict: str) -> bool:
    return verdict in BLOCKING_VERDICTS


def is_warning_verdict(verdict: str) -> bool:
    return verdict in WARNING_VERDICTS


def _highest(members: list[AgentVerdict], order: tuple[str, ...]) -> str:
    # Lattice order first; input order breaks ties among equal verdicts
    return min(members, key=lambda v: order.index(v.verdict)).verdict


def _reason(members: list[AgentVerdict], single: str, multiple: str) -> str:
    if len(members) == 1:
        only = members[0]
        base = f"{single} {only.agent} agent with {only.verdict}"
        return f"{base}: {only.details}" if only.details else base
    listed = ", ".join(f"{v.agent} ({v.verdict})" for v in members)
    return f"{multiple} {len(members)} agents: {listed}"


def strongest_per_agent(verdicts: list[AgentVerdict]) -> list[AgentVerdict]:
    """One verdict per agent, the most severe it reported, in first-seen order."""
    by_agent: dict[str, AgentVerdict] = {}
    for verdict in verdicts:
        current = by_agent.get(verdict.agent)
        if current is None or VERDICTS.index(verdict.verdict) < VERDICTS.index(current.verdict):
            by_agent[verdict.agent] = verdict
    return list(by_agent.values())


def merge_verdicts(verdicts: list[AgentVerdict]) -> FinalVerdict:
    """Merge agent verdicts into one final verdict.

    Priority (highest first): CRITICAL_FAIL, REJECTED, FAIL, NEEDS_REVIEW
    (blocking); WARN, PARTIAL (warning); COMPLIANT, PASS (passing). An agent
    that reports more than once counts once, with its most severe verdict.
    """
    if not verdicts:
        return FinalVerdict(verdict="PASS", is_blocking=False, reason="No verdicts to aggregate")
    verdicts = strongest_per_agent(verdicts)

    blocking = [v for v in verdicts if is_blocking_verdict(v.verdict)]
    warning = [v for v in verdicts if is_warning_verdict(v.verdict)]
    passing = [v for v in verdicts if v.verdict in PASSING_VERDICTS]

    if blocking:
        final = _highest(blocking, BLOCKING_VERDICTS)
        reason = _reason(blocking, "Blocked by", "Blocked by")
    elif warning:
        final = _highest(warning, WARNING_VERDICTS)
        reason = _reason(warning, "Warning from", "Warnings from")
    else:
        final = _highest(passing, PASSING_VERDICTS)
        reason = f"All {len(verdicts)} agents passed validation"

    return FinalVerdict(
        verdict=final,  # type: ignore[arg-type]
        is_blocking=bool(blocking),
        reason=reason,
        agent_results={v.agent: v for v in verdicts},
        blocking_agents=[v.agent for v in blocking],
        warning_agents=[v.agent for v in warning],
        passing_agents=[v.agent for v in passing],
    )


def can_proceed(final: FinalVerdict) -> bool:
    return not final.is_blocking
