"""Unit tests for heuristic task analysis."""

import pytest

from guardedAgent.session.task_analysis import analyze_task


@pytest.mark.parametrize(
    "message, complexity",
    [
        ("read the shop script", "simple"),
        ("add a remote event for the leaderboard", "medium"),
        ("Create a complete inventory system with gui buttons and save data", "complex"),
    ],
)
def test_complexity(message, complexity):
    assert analyze_task(message).complexity == complexity


def test_capabilities_are_unique_and_ordered():
    analysis = analyze_task("Create a complete inventory system with gui buttons and save data")

    assert analysis.capabilities == ["ui_creation", "data_management"]
    assert analysis.should_plan is True


def test_simple_task_does_not_plan():
    analysis = analyze_task("read the shop script")

    assert analysis.should_plan is False
    assert analysis.to_dict() == {"complexity": "simple", "capabilities": ["script_editing"], "score": 1}
