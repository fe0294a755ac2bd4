"""Keyword-based scenario detection for submitted prompts."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class ScenarioConfig:
    name: str
    keywords: tuple[str, ...]
    directory: str
    note_type: str

    @property
    def recommended(self) -> str:
        return f"Create {self.name.lower()} note in {self.directory}/ before proceeding"


# Checked in this order; the first scenario with a keyword hit wins
SCENARIOS: tuple[ScenarioConfig, ...] = (
    ScenarioConfig(
        "BUG",
        ("bug", "error", "issue", "broken", "fix", "debug", "crash", "not working", "fails"),
        "bugs",
        "bug",
    ),
    ScenarioConfig(
        "FEATURE",
        ("implement", "build feature", "create feature", "add feature", "new feature", "develop"),
        "features",
        "feature-overview",
    ),
    ScenarioConfig(
        "SPEC",
        ("define", "spec", "specification", "api", "interface", "contract", "schema"),
        "specs",
        "spec",
    ),
    ScenarioConfig(
        "ANALYSIS",
        ("analyze", "examine", "review", "investigate", "study", "assess", "audit"),
        "analysis",
        "analysis-overview",
    ),
    ScenarioConfig(
        "RESEARCH",
        ("research", "explore", "discover", "learn about", "understand", "look into"),
        "research",
        "research-overview",
    ),
    ScenarioConfig(
        "DECISION",
        ("decide", "choose", "vs", " or ", "compare", "evaluate options", "should i", "which"),
        "decisions",
        "decision",
    ),
    ScenarioConfig(
        "TESTING",
        ("test", "validate", "verify", "check", "qa", "quality assurance"),
        "testing",
        "testing-overview",
    ),
)

PLANNING_KEYWORDS: tuple[str, ...] = (
    "plan",
    "implement",
    "build",
    "feature",
    "create",
    "develop",
    "design",
    "architect",
    "phase",
    "task",
    "milestone",
    "epic",
    "spec",
    "specification",
    "requirement",
)


@dataclass(frozen=True)
class ScenarioResult:
    detected: bool
    scenario: str = ""
    keywords: list[str] = field(default_factory=list)
    recommended: str = ""
    directory: str = ""
    note_type: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "detected": self.detected,
            "scenario": self.scenario,
            "keywords": list(self.keywords),
            "recommended": self.recommended,
            "directory": self.directory,
            "noteType": self.note_type,
        }


def detect_scenario(prompt: str) -> ScenarioResult:
    lowered = prompt.lower()
    for config in SCENARIOS:
        matched = [keyword for keyword in config.keywords if keyword in lowered]
        if matched:
            return ScenarioResult(
                detected=True,
                scenario=config.name,
                keywords=matched,
                recommended=config.recommended,
                directory=config.directory,
                note_type=config.note_type,
            )
    return ScenarioResult(detected=False)


def has_planning_keywords(prompt: str) -> bool:
    lowered = prompt.lower()
    return any(keyword in lowered for keyword in PLANNING_KEYWORDS)
