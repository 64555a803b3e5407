"""Heuristic task analysis: complexity and required capabilities."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal

Complexity = Literal["simple", "medium", "complex"]

CAPABILITY_DETECTION = (
    ("script", "script_editing"),
    ("code", "script_editing"),
    ("function", "script_editing"),
    ("gui", "ui_creation"),
    ("ui", "ui_creation"),
    ("button", "ui_creation"),
    ("frame", "ui_creation"),
    ("part", "instance_creation"),
    ("model", "instance_creation"),
    ("data", "data_management"),
    ("save", "data_management"),
    ("load", "data_management"),
    ("remote", "networking"),
    ("server", "networking"),
    ("client", "networking"),
)

SIMPLE_KEYWORDS = ("change", "fix", "update", "set", "get", "read", "check", "look")
MEDIUM_KEYWORDS = ("add", "create", "make", "build", "implement", "modify")
COMPLEX_KEYWORDS = ("system", "complete", "full", "entire", "refactor", "redesign", "integrate", "architecture")

SIMPLE_THRESHOLD = 2
MEDIUM_THRESHOLD = 5


@dataclass
class TaskAnalysis:
    complexity: Complexity = "simple"
    capabilities: List[str] = field(default_factory=list)
    score: int = 0

    @property
    def should_plan(self) -> bool:
        return self.complexity != "simple"

    def to_dict(self) -> Dict[str, Any]:
        return {"complexity": self.complexity, "capabilities": list(self.capabilities), "score": self.score}


def analyze_task(message: str) -> TaskAnalysis:
    lowered = message.lower()

    capabilities: List[str] = []
    for needle, capability in CAPABILITY_DETECTION:
        if needle in lowered and capability not in capabilities:
            capabilities.append(capability)

    score = 0
    score -= sum(1 for keyword in SIMPLE_KEYWORDS if keyword in lowered)
    score += sum(1 for keyword in MEDIUM_KEYWORDS if keyword in lowered)
    score += sum(3 for keyword in COMPLEX_KEYWORDS if keyword in lowered)
    score += 2 * len(capabilities)

    if score <= SIMPLE_THRESHOLD:
        complexity: Complexity = "simple"
    elif score <= MEDIUM_THRESHOLD:
        complexity = "medium"
    else:
        complexity = "complex"

    return TaskAnalysis(complexity=complexity, capabilities=capabilities, score=score)
