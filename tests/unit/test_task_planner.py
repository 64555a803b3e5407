"""Unit tests for TaskPlanner plans, tickets and reflection."""

import pytest

from guardedAgent.config.settings import PlanningSettings
from guardedAgent.session.task_analysis import analyze_task
from guardedAgent.session.task_planner import TaskPlanner

COMPLEX = "Create a complete inventory system with gui buttons and save data"
MEDIUM = "add a remote event for the leaderboard"


@pytest.fixture
def planner(clock):
    return TaskPlanner(PlanningSettings(), clock=clock)


def start(planner, message=COMPLEX):
    return planner.on_new_task(message, analyze_task(message))


def statuses(planner):
    return planner.get_status()["tickets"]


class TestPlanCreation:
    def test_simple_task_has_no_plan(self, planner):
        assert start(planner, "read the shop script") is None
        assert planner.format_plan() == ""

    def test_complex_plan(self, planner):
        plan = start(planner)

        assert [t.text for t in plan.tickets] == [
            "Scan and understand current project state",
            "Implement core logic/structure",
            "Verify functionality and performance",
        ]
        assert [t.type for t in plan.tickets] == ["discovery", "implementation", "verification"]

    def test_medium_plan(self, planner):
        plan = start(planner, MEDIUM)

        assert plan.complexity == "medium"
        assert [t.text for t in plan.tickets] == [
            "Scan and understand current project state",
            "Implement requested change",
        ]

    def test_disabled_planning(self, clock):
        planner = TaskPlanner(PlanningSettings(enabled=False), clock=clock)

        assert start(planner) is None

    def test_new_task_replaces_plan(self, planner):
        start(planner)

        start(planner, "read the shop script")

        assert planner.plan is None


class TestTickets:
    def test_tool_calls_advance_tickets(self, planner):
        start(planner)

        planner.record_tool_call("list_children", True)
        assert statuses(planner) == {1: "running", 2: "pending", 3: "pending"}

        planner.record_tool_call("create_instance", True)
        assert statuses(planner) == {1: "done", 2: "running", 3: "pending"}

        planner.record_tool_call("get_instance", True)
        assert statuses(planner) == {1: "done", 2: "done", 3: "running"}

    def test_failed_change_is_retrying(self, planner):
        start(planner)

        planner.record_tool_call("patch_script", False)

        assert statuses(planner)[2] == "retrying"
        assert planner.get_recent_failure_count() == 1

    def test_add_ticket_renumbers_and_escalates(self, planner):
        start(planner, MEDIUM)

        planner.add_ticket("Create the RemoteEvent", after_id=1)

        assert [(t.id, t.text) for t in planner.plan.tickets] == [
            (1, "Scan and understand current project state"),
            (2, "Create the RemoteEvent"),
            (3, "Implement requested change"),
        ]

        for n in range(3):
            planner.add_ticket(f"Extra step {n}")

        assert len(planner.plan.tickets) == 6
        assert planner.plan.complexity == "complex"

    def test_add_ticket_without_plan(self, planner):
        assert planner.add_ticket("anything") is None

    def test_format_plan(self, planner):
        start(planner)
        planner.record_tool_call("list_children", True)

        assert planner.format_plan() == (
            "### Living Plan: COMPLEX\n\n"
            "[>] Scan and understand current project state (active: `list_children`)\n"
            "[ ] Implement core logic/structure\n"
            "[ ] Verify functionality and performance"
        )

    def test_successful_task_closes_tickets(self, planner):
        start(planner)

        planner.on_task_complete(True, "Inventory built", COMPLEX)

        assert set(statuses(planner).values()) == {"done"}
        assert planner.plan.status == "completed"

    def test_failed_task_marks_current_ticket(self, planner):
        start(planner)
        planner.record_tool_call("list_children", True)

        planner.on_task_complete(False, "gave up")

        assert statuses(planner)[1] == "failed"
        assert planner.plan.status == "failed"
        assert planner.recent_failures[0].error == "gave up"


class TestReflection:
    def test_due_after_interval(self, planner):
        for _ in range(4):
            planner.record_tool_call("get_script", True)
        assert planner.is_reflection_due() is False

        planner.record_tool_call("get_script", True)
        assert planner.is_reflection_due() is True

        planner.reflection_completed()
        assert planner.is_reflection_due() is False

    def test_failure_forces_reflection(self, planner):
        planner.record_tool_call("get_script", False)

        assert planner.is_reflection_due() is True

    def test_failure_reflection_can_be_disabled(self, clock):
        planner = TaskPlanner(PlanningSettings(reflect_on_failure=False), clock=clock)

        planner.record_tool_call("get_script", False)

        assert planner.is_reflection_due() is False

    def test_session_history_keeps_latest(self, planner):
        for n in range(8):
            planner.on_task_complete(n != 7, task=f"task {n}")

        lines = planner.format_session_history().splitlines()

        assert lines[0] == "## Session History"
        assert lines[2:] == ["- ✓ task 2", "- ✓ task 3", "- ✓ task 4", "- ✓ task 5", "- ✓ task 6", "- ✗ task 7"]

    def test_reset_session(self, planner):
        start(planner)
        planner.record_tool_call("get_script", False)
        planner.on_task_complete(False, "x")

        planner.reset_session()

        assert planner.get_status() == {
            "has_plan": False,
            "complexity": None,
            "tickets": {},
            "reflection_due": False,
            "recent_failures": 0,
        }
        assert planner.format_session_history() == ""
