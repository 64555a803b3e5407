"""Loop outcomes and the serializable paused continuation."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field

PauseKind = Literal["approval", "feedback"]


class PausedState(BaseModel):
    """A tool batch suspended on a human decision.

    Everything needed to finish the batch lives here, so the state can be
    stored as JSON (model_dump_json) and restored (model_validate_json)
    between the pause and the answer. It is consumed exactly once.
    """

    kind: PauseKind
    batch_id: str
    task_id: Optional[str] = None
    iteration: int = 0
    resume_index: int
    tool_calls: List[Dict[str, Any]] = Field(default_factory=list)
    results: List[Dict[str, Any]] = Field(default_factory=list)
    operation_id: Optional[int] = None
    feedback_request: Optional[Dict[str, Any]] = None


@dataclass
class Done:
    text: str


@dataclass
class Failed:
    reason: str
    fatal: bool = False


@dataclass
class AwaitingApproval:
    operation_id: Optional[int]
    description: str
    payload: Dict[str, Any]
    paused: PausedState
    tool_name: str = ""


@dataclass
class AwaitingFeedback:
    question: str
    paused: PausedState
    context: str = ""
    verification_type: str = "general"
    suggestions: List[str] = field(default_factory=list)


LoopOutcome = Union[Done, Failed, AwaitingApproval, AwaitingFeedback]
