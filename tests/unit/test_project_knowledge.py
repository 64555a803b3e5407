"""Unit tests for ProjectKnowledge (anchored, self-validating facts)."""

import pytest

from guardedAgent.config.settings import PersistenceSettings
from guardedAgent.memory.project_knowledge import Anchor, ProjectKnowledge, compute_hash
from guardedAgent.memory.store import DocumentStore
from tests.fakes import SHOP_SOURCE, ManualClock

SHOP = "ServerScriptService.ShopHandler"
COMBAT = "ServerScriptService.Combat"
DAY = 86400


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def knowledge(backend, clock):
    return ProjectKnowledge(backend, settings=PersistenceSettings(max_project_entries=3), clock=clock)


class TestAnchors:
    def test_anchor_kinds(self, knowledge):
        assert knowledge.validate_anchor(None) is True
        assert knowledge.validate_anchor(Anchor(type="path_exists", path="Workspace.Baseplate")) is True
        assert knowledge.validate_anchor(Anchor(type="path_exists", path="Workspace.Gone")) is False
        assert knowledge.validate_anchor(Anchor(type="path_contains", path=SHOP, pattern="purchase")) is True
        assert knowledge.validate_anchor(Anchor(type="path_contains", path=SHOP, pattern="refund")) is False
        assert knowledge.validate_anchor(Anchor(type="content_hash", path=SHOP, hash=compute_hash(SHOP_SOURCE)))

    def test_broken_anchor_marks_entry_stale(self, knowledge, backend):
        knowledge.add_entry(
            "architecture",
            "ShopHandler exposes purchase()",
            anchor=Anchor(type="path_contains", path=SHOP, pattern="ShopHandler.purchase"),
        )
        assert knowledge.validate_all()["valid"] == 1

        backend.set_source(SHOP, "return {}")
        report = knowledge.validate_all()

        assert report["stale"] == 1
        assert report["stale_entries"][0]["reason"] == f"Anchor no longer valid: {SHOP}"
        assert knowledge.get_entries() == []
        assert len(knowledge.get_entries(include_stale=True)) == 1

    def test_unverified_for_a_week_is_stale(self, knowledge, clock):
        knowledge.add_entry("convention", "Modules return a table")
        clock.advance(8 * DAY)

        report = knowledge.validate_all()

        assert report["stale_entries"][0]["reason"] == "Not verified in 7 days"


class TestEntries:
    def test_rejects_unknown_type_and_duplicates(self, knowledge):
        assert knowledge.add_entry("gossip", "x")["success"] is False
        assert knowledge.add_entry("warning", "Never anchor the ball")["success"] is True
        assert knowledge.add_entry("warning", "Never anchor the ball") == {
            "success": False,
            "error": "Duplicate context entry",
        }

    def test_long_content_is_truncated(self, backend, clock):
        knowledge = ProjectKnowledge(backend, settings=PersistenceSettings(max_entry_length=50), clock=clock)

        knowledge.add_entry("convention", "a" * 80)

        assert knowledge.get_entries()[0].content == "a" * 50 + "..."

    def test_full_store_evicts_stale_first(self, knowledge):
        knowledge.add_entry("convention", "first")
        knowledge.add_entry("convention", "second", anchor=Anchor(type="path_exists", path="Workspace.Gone"))
        knowledge.add_entry("convention", "third")
        knowledge.validate_all()

        knowledge.add_entry("convention", "fourth")

        contents = [entry.content for entry in knowledge.get_entries(include_stale=True)]
        assert contents == ["first", "third", "fourth"]

    def test_remove_and_clear_stale(self, knowledge):
        knowledge.add_entry("convention", "keep")
        knowledge.add_entry("convention", "drop", anchor=Anchor(type="path_exists", path="Workspace.Gone"))
        knowledge.validate_all()

        assert knowledge.clear_stale() == 1
        assert knowledge.remove_entry(5) is False
        assert knowledge.remove_entry(0) is True
        assert knowledge.get_session_info()["is_new"] is True

    def test_cascade_invalidation_follows_anchors(self, knowledge):
        knowledge.add_entry(
            "dependency",
            "Shop calls Combat.damage",
            anchor=Anchor(type="path_exists", path=SHOP),
            dependencies=[COMBAT],
        )
        knowledge.add_entry("warning", "Shop prices are server-authoritative", dependencies=[SHOP])

        assert knowledge.cascade_invalidation(COMBAT) == 2
        assert all(entry.is_stale for entry in knowledge.get_entries(include_stale=True))


class TestPersistenceAndPrompt:
    def test_persists_across_instances(self, backend, clock, tmp_path):
        store = DocumentStore(str(tmp_path / "knowledge.db"))
        first = ProjectKnowledge(backend, store, clock=clock)
        first.add_entry("architecture", "Combat lives in ServerScriptService")
        first.save()

        second = ProjectKnowledge(backend, DocumentStore(str(tmp_path / "knowledge.db")), clock=clock)
        second.load()

        assert [entry.content for entry in second.get_entries()] == ["Combat lives in ServerScriptService"]
        assert second.get_session_info() == {"is_new": False, "total_entries": 1, "stale_count": 0}

    def test_prompt_groups_by_type(self, knowledge):
        knowledge.add_entry("warning", "Do not touch Baseplate")
        knowledge.add_entry("architecture", "Shop is a ModuleScript")

        text = knowledge.format_for_prompt()

        assert text.startswith("## Project Knowledge (validated)")
        assert text.index("### Architecture") < text.index("### Warnings")
        assert "- Do not touch Baseplate" in text

    def test_empty_prompt(self, knowledge):
        assert knowledge.format_for_prompt() == ""
