"""Session scope: lifecycle hooks, task analysis and planning."""

from .coordinator import PreflightDecision, SessionCoordinator, SessionState
from .task_analysis import TaskAnalysis, analyze_task
from .task_planner import Plan, TaskPlanner, Ticket

__all__ = [
    "PreflightDecision",
    "SessionCoordinator",
    "SessionState",
    "TaskAnalysis",
    "analyze_task",
    "Plan",
    "TaskPlanner",
    "Ticket",
]
