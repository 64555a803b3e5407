"""Unit tests for WorkingMemory.

Tests tier placement, exponential decay, access boost, compaction and goals.
"""

import pytest

from guardedAgent.config.settings import MemorySettings
from guardedAgent.context.working_memory import WorkingMemory
from tests.fakes import ManualClock


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def memory(clock):
    return WorkingMemory(MemorySettings(half_life_seconds=300, relevance_floor=10), clock=clock)


class TestTiers:
    def test_critical_types_go_to_critical_tier(self, memory):
        memory.add("decision", "Use a ModuleScript for shop logic")
        memory.add("tool_result", "✓ get_script: ServerScriptService.ShopHandler")

        assert [item.type for item in memory.critical] == ["decision"]
        assert [item.type for item in memory.working] == ["tool_result"]

    def test_unknown_type_uses_general_relevance(self, memory):
        memory.add("something_else", "misc")

        assert memory.working[0].base_relevance == 50


class TestDecay:
    def test_relevance_halves_every_half_life(self, memory, clock):
        memory.add("tool_result", "result")
        item = memory.working[0]

        clock.advance(300)

        assert memory.relevance_of(item) == pytest.approx(35.0)

    def test_decay_is_monotonic_and_floored(self, memory, clock):
        memory.add("script_read", "Read ServerScriptService.Combat (7 lines)")
        item = memory.working[0]

        values = []
        for _ in range(20):
            clock.advance(120)
            memory.decay()
            values.append(item.current_relevance)

        assert all(later <= earlier for earlier, later in zip(values, values[1:]))
        assert values[-1] == pytest.approx(10.0)

    def test_critical_items_never_decay(self, memory, clock):
        memory.add("key_finding", "Prices live in ReplicatedStorage.Prices")
        clock.advance(10_000)
        memory.decay()

        assert memory.critical[0].current_relevance == 85
        assert memory.relevance_of(memory.critical[0]) == 85

    def test_access_boosts_and_restarts_clock(self, memory, clock):
        item_id = memory.add("tool_result", "result")
        clock.advance(600)

        item = memory.access(item_id)

        assert item.base_relevance == 75
        assert memory.relevance_of(item) == pytest.approx(75)


class TestCompaction:
    def test_overflow_moves_least_relevant_to_background(self, memory, clock):
        for i in range(21):
            memory.add("tool_result", f"result {i}")
            clock.advance(10)

        assert len(memory.working) == 15
        assert len(memory.background) == 6
        assert all(item.tier == "background" for item in memory.background)
        # Oldest items decayed most
        assert "result 0" in {item.summary for item in memory.background}


class TestGoals:
    def test_archive_and_replace_goal(self, memory):
        memory.set_goal("Add a shop GUI")
        memory.archive_current_goal()
        memory.set_goal("Fix combat damage")

        text = memory.format_for_prompt()

        assert "## Active Goal" in text
        assert "- Fix combat damage" in text
        assert "Add a shop GUI" not in text
        assert memory.get_statistics()["has_goal"] is True

    def test_critical_items_are_never_evicted(self, memory):
        memory.set_goal("Active goal")
        first = memory.add("decision", "Use RemoteEvents for the shop")
        for i in range(12):
            memory.add("decision", f"decision {i}")
            memory.add("key_finding", f"finding {i}")
        for i in range(30):
            memory.add("tool_result", f"result {i}")

        ids = [item.id for item in memory.critical]
        assert first in ids
        assert len(memory.critical) == 26
        assert memory.current_goal in memory.critical

    def test_prompt_filters_low_relevance(self, memory, clock):
        memory.add("tool_result", "old result")
        clock.advance(3000)
        memory.add("tool_result", "new result")

        text = memory.format_for_prompt()

        assert "new result" in text
        assert "old result" not in text

    def test_clear(self, memory):
        memory.set_goal("goal")
        memory.add("tool_result", "result")

        memory.clear()

        assert memory.get_statistics()["critical_count"] == 0
        assert memory.current_goal is None
