"""Living plan for one task plus the reflection schedule.

A plan is a short list of tickets created from the task analysis when the
task is not simple. Tickets advance from the tool calls the agent makes:
inspection runs the discovery ticket, the first change runs the
implementation ticket, inspection after a change runs verification. Every
few tool calls, and after any failure, a reflection is due and the
coordinator asks the agent to reassess its approach.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

from guardedAgent.config.settings import PlanningSettings
from guardedAgent.tools.schema import get_spec

from .task_analysis import TaskAnalysis

LOGGER = logging.getLogger(__name__)

TicketStatus = Literal["pending", "running", "done", "failed", "retrying"]
TicketType = Literal["discovery", "implementation", "verification", "custom"]

STATUS_MARKERS: Dict[str, str] = {
    "pending": "[ ]",
    "running": "[>]",
    "done": "[x]",
    "failed": "[!]",
    "retrying": "[~]",
}

REFLECTION_PROMPT = """## Reflection Checkpoint

Before the next tool call, briefly reassess:
1. Is the current approach making progress toward the goal?
2. Did any recent result contradict what you expected?
3. Should the plan change (add, reorder or drop steps)?"""


@dataclass
class Ticket:
    id: int
    text: str
    type: TicketType = "custom"
    status: TicketStatus = "pending"
    tool: Optional[str] = None
    output: Optional[str] = None


@dataclass
class Plan:
    goal: str
    complexity: str
    tickets: List[Ticket] = field(default_factory=list)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    status: Literal["in_progress", "completed", "failed"] = "in_progress"
    current_ticket_id: int = 1
    created_at: float = 0.0

    def ticket(self, ticket_type: TicketType) -> Optional[Ticket]:
        return next((t for t in self.tickets if t.type == ticket_type), None)


@dataclass
class _Failure:
    ticket_id: int
    error: str
    timestamp: float


@dataclass
class SessionAction:
    text: str
    success: bool


class TaskPlanner:
    """Tracks the current plan, recent failures and when to reflect."""

    def __init__(self, settings: Optional[PlanningSettings] = None, clock: Callable[[], float] = time.monotonic):
        self.settings = settings or PlanningSettings()
        self._clock = clock
        self.reset_session()

    # ========== Lifecycle ==========

    def reset_session(self) -> None:
        self.plan: Optional[Plan] = None
        self.recent_failures: List[_Failure] = []
        self.session_history: List[SessionAction] = []
        self.reflection_due = False
        self.tool_calls_since_reflection = 0

    def on_new_task(self, message: str, analysis: TaskAnalysis) -> Optional[Plan]:
        """Drop the previous task's plan and counters; plan again when the task needs it."""
        self.clear_plan()
        self.recent_failures = []
        self.reflection_completed()
        if self.settings.enabled and analysis.should_plan:
            return self.create_plan(message, analysis)
        return None

    def clear_plan(self) -> None:
        self.plan = None

    def create_plan(self, message: str, analysis: TaskAnalysis) -> Plan:
        plan = Plan(goal=message, complexity=analysis.complexity, created_at=self._clock())
        plan.tickets.append(Ticket(1, "Scan and understand current project state", "discovery"))
        if analysis.complexity == "complex":
            plan.tickets.append(Ticket(2, "Implement core logic/structure", "implementation"))
            plan.tickets.append(Ticket(3, "Verify functionality and performance", "verification"))
        else:
            plan.tickets.append(Ticket(2, "Implement requested change", "implementation"))
        self.plan = plan
        LOGGER.info(f"Plan created ({plan.complexity}): {len(plan.tickets)} tickets")
        return plan

    def on_task_complete(self, success: bool, summary: str = "", task: Optional[str] = None) -> None:
        self.session_history.append(SessionAction(text=task or summary or "Task", success=success))
        plan = self.plan
        if plan is None:
            return
        if success:
            for ticket in plan.tickets:
                if ticket.status in ("pending", "running", "retrying"):
                    ticket.status = "done"
            plan.status = "completed"
        else:
            self.update_ticket(plan.current_ticket_id, "failed", summary)
            plan.status = "failed"

    # ========== Tickets ==========

    def update_ticket(self, ticket_id: int, status: TicketStatus, output: Optional[str] = None) -> None:
        if self.plan is None:
            return
        for ticket in self.plan.tickets:
            if ticket.id != ticket_id:
                continue
            ticket.status = status
            if output:
                ticket.output = output
            if status == "running":
                self.plan.current_ticket_id = ticket_id
            elif status == "failed":
                self.recent_failures.append(_Failure(ticket_id, output or "", self._clock()))
            return

    def add_ticket(self, text: str, after_id: Optional[int] = None) -> Optional[Ticket]:
        """Insert a ticket (at the end, or after after_id) and renumber the ones behind it."""
        plan = self.plan
        if plan is None:
            return None

        ticket = Ticket(id=len(plan.tickets) + 1, text=text)
        index = len(plan.tickets)
        if after_id is not None:
            index = next((i + 1 for i, t in enumerate(plan.tickets) if t.id == after_id), index)
        plan.tickets.insert(index, ticket)
        for position, existing in enumerate(plan.tickets, start=1):
            existing.id = position

        if len(plan.tickets) > self.settings.escalation_ticket_count and plan.complexity != "complex":
            LOGGER.info(f"Plan grew to {len(plan.tickets)} tickets, escalating to complex")
            plan.complexity = "complex"
        return ticket

    def _advance(self, tool: str, success: bool) -> None:
        plan = self.plan
        spec = get_spec(tool)
        if plan is None or spec is None:
            return

        discovery = plan.ticket("discovery")
        implementation = plan.ticket("implementation")
        verification = plan.ticket("verification")
        changed = implementation is not None and implementation.status in ("running", "done")

        if spec.category in ("modify", "create"):
            if discovery is not None and discovery.status != "done":
                discovery.status = "done"
            if implementation is not None:
                self.update_ticket(implementation.id, "running" if success else "retrying")
                implementation.tool = tool
                if not success:
                    self.recent_failures.append(_Failure(implementation.id, f"{tool} failed", self._clock()))
        elif spec.category in ("read", "search", "feedback"):
            if changed and verification is not None:
                if implementation.status == "running":
                    implementation.status = "done"
                self.update_ticket(verification.id, "running")
                verification.tool = tool
            elif discovery is not None and discovery.status == "pending":
                self.update_ticket(discovery.id, "running")
                discovery.tool = tool

    # ========== Reflection ==========

    def record_tool_call(self, tool: str, success: bool) -> None:
        self.tool_calls_since_reflection += 1
        if not success and self.settings.reflect_on_failure:
            self.reflection_due = True
        self._advance(tool, success)

    def is_reflection_due(self) -> bool:
        return self.reflection_due or self.tool_calls_since_reflection >= self.settings.reflection_interval

    def reflection_completed(self) -> None:
        self.reflection_due = False
        self.tool_calls_since_reflection = 0

    def get_recent_failure_count(self) -> int:
        return len(self.recent_failures)

    # ========== Prompt ==========

    def format_plan(self) -> str:
        plan = self.plan
        if plan is None:
            return ""
        lines = [f"### Living Plan: {plan.complexity.upper()}", ""]
        for ticket in plan.tickets:
            line = f"{STATUS_MARKERS[ticket.status]} {ticket.text}"
            if ticket.status == "running" and ticket.tool:
                line += f" (active: `{ticket.tool}`)"
            lines.append(line)
        return "\n".join(lines)

    def format_session_history(self) -> str:
        if not self.session_history:
            return ""
        lines = ["## Session History", ""]
        for action in self.session_history[-self.settings.session_history_size:]:
            lines.append(f"- {'✓' if action.success else '✗'} {action.text[:60]}")
        return "\n".join(lines)

    def get_status(self) -> Dict[str, Any]:
        plan = self.plan
        return {
            "has_plan": plan is not None,
            "complexity": plan.complexity if plan else None,
            "tickets": {t.id: t.status for t in plan.tickets} if plan else {},
            "reflection_due": self.is_reflection_due(),
            "recent_failures": len(self.recent_failures),
        }
