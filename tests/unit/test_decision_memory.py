"""Unit tests for DecisionMemory pattern learning."""

import pytest

from guardedAgent.config.settings import PersistenceSettings
from guardedAgent.memory.decision_memory import DecisionMemory, extract_keywords
from guardedAgent.memory.store import DocumentStore
from tests.fakes import ManualClock

DAY = 86400
TASK = "Fix the shop purchase price calculation"


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def memory(clock):
    return DecisionMemory(settings=PersistenceSettings(), clock=clock)


def record(memory, task=TASK, success=True, capabilities=("script_editing",), tools=(("get_script", True), ("patch_script", True))):
    memory.start_sequence(task, "simple", capabilities)
    for name, ok in tools:
        memory.record_tool(name, ok)
    return memory.end_sequence(success)


def test_extract_keywords_skips_short_and_stop_words():
    assert extract_keywords("Please fix the shop purchase, 2024") == {"shop", "purchase"}


class TestRecording:
    def test_end_sequence_builds_pattern(self, memory, clock):
        memory.start_sequence(TASK, "simple", ["script_editing"])
        memory.record_tool("get_script", True)
        clock.advance(12)
        memory.record_tool("patch_script", False, "Search content not found")

        pattern = memory.end_sequence(False)

        assert pattern.tool_sequence == ["get_script", "patch_script"]
        assert pattern.tool_success_rate == 0.5
        assert pattern.duration == 12
        assert memory.patterns.failed == [pattern]
        assert memory.current is None

    def test_record_without_sequence_is_ignored(self, memory):
        memory.record_tool("get_script", True)

        assert memory.end_sequence(True) is None


class TestSuggestions:
    def test_proven_approach_is_suggested(self, memory):
        record(memory)

        result = memory.get_suggestions("shop purchase price is wrong", ["script_editing"])

        assert len(result["suggestions"]) == 1
        suggestion = result["suggestions"][0]
        assert suggestion.tool_sequence == ["get_script", "patch_script"]
        assert "Similar task succeeded using: get_script -> patch_script" in suggestion.message
        assert suggestion.confidence >= 0.8
        assert memory.patterns.successful[0].use_count == 2

    def test_needs_enough_keyword_overlap(self, memory):
        record(memory)

        assert memory.get_suggestions("shop layout", ["script_editing"])["suggestions"] == []

    def test_capabilities_must_overlap(self, memory):
        record(memory)

        assert memory.get_suggestions("shop purchase price", ["ui_creation"])["suggestions"] == []

    def test_failed_pattern_becomes_warning(self, memory):
        record(memory, success=False, tools=(("edit_script", False), ("get_script", True)))

        text = memory.format_for_prompt("shop purchase price again", ["script_editing"])

        assert "**What to avoid:**" in text
        assert "Avoid: edit_script -> get_script" in text

    def test_nothing_to_say(self, memory):
        assert memory.format_for_prompt("shop purchase price") == ""


class TestMaintenance:
    def test_persists_across_instances(self, clock, tmp_path):
        db_path = str(tmp_path / "knowledge.db")
        record(DecisionMemory(DocumentStore(db_path), clock=clock))

        reloaded = DecisionMemory(DocumentStore(db_path), clock=clock)
        reloaded.load()

        assert reloaded.get_statistics()["successful_patterns"] == 1

    def test_decay_old_patterns(self, memory, clock):
        record(memory)
        clock.advance(8 * DAY)

        assert memory.decay_old_patterns() == 1
        assert memory.get_statistics()["total_patterns"] == 0

    def test_save_caps_patterns(self, clock):
        memory = DecisionMemory(settings=PersistenceSettings(max_patterns=2), clock=clock)
        for _ in range(3):
            record(memory)
            clock.advance(1)

        assert len(memory.patterns.successful) == 2

    def test_statistics(self, memory):
        record(memory)
        record(memory, tools=(("get_script", True),))

        stats = memory.get_statistics()

        assert stats["most_used_tools"][0] == ("get_script", 2)
        assert stats["average_tools_per_task"] == 1.5

    def test_clear_all(self, clock, tmp_path):
        store = DocumentStore(str(tmp_path / "knowledge.db"))
        memory = DecisionMemory(store, clock=clock)
        record(memory)

        memory.clear_all()

        assert store.load("decision_memory") is None
        assert memory.get_statistics()["total_patterns"] == 0
