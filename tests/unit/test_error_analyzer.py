"""Unit tests for ErrorAnalyzer classification, loop detection and recovery."""

import pytest

from guardedAgent.config.settings import ErrorAnalysisSettings
from guardedAgent.safety.error_analyzer import ErrorAnalyzer

SHOP = "ServerScriptService.ShopHandler"
MISSING = "Instance not found: Workspace.Missing"


@pytest.fixture
def analyzer(clock):
    analyzer = ErrorAnalyzer(ErrorAnalysisSettings(), clock=clock)
    analyzer.on_new_task("1000_1")
    return analyzer


def fail_lookup(analyzer, times=1):
    for _ in range(times):
        analyzer.classify("get_instance", {"path": "Workspace.Missing"}, MISSING)


class TestClassification:
    @pytest.mark.parametrize(
        "error, category",
        [
            ("Search content not found. Please verify the code exists exactly as specified.", "search_failed"),
            ("Failed to apply: Search content not found", "search_failed"),
            ("Ambiguous match: Found 2 occurrences at lines 1, 1. Please provide more context.", "ambiguous_match"),
            ("Parent not found: ServerScriptService.Shop", "parent_error"),
            (MISSING, "missing_resource"),
            (f"Script already exists: {SHOP}", "already_exists"),
            ("Tool timeout after 30s", "rate_limited"),
            ("Color expected number, got string", "type_error"),
            ("Cannot delete service: Workspace", "unknown"),
        ],
    )
    def test_categories(self, analyzer, error, category):
        assert analyzer.classify("patch_script", {"path": SHOP}, error).category == category

    def test_enhanced_message(self, analyzer):
        analysis = analyzer.classify("patch_script", {"path": SHOP}, "Search content not found.")

        text = analysis.enhanced_message()

        assert text.startswith("[SEARCH FAILED] Search content not found.")
        assert "  3. The code might have been modified by a previous operation" in text
        assert "  4." not in text
        assert f"For {SHOP}, use get_script first to see the exact current content" in text

    def test_create_in_missing_parent_names_the_parent(self, analyzer):
        analysis = analyzer.classify(
            "create_script",
            {"path": "ServerScriptService.Shop.Main", "source": "return {}"},
            "Parent not found: ServerScriptService.Shop",
        )

        assert analysis.contextual == ["First verify ServerScriptService.Shop exists using list_children on its parent"]

    def test_unknown_error_stays_plain(self, analyzer):
        text = analyzer.analyze("delete_instance", {"path": "Workspace"}, "Cannot delete service: Workspace")

        assert text == "[UNKNOWN] Cannot delete service: Workspace"


class TestLoopDetection:
    def test_same_category_three_times(self, analyzer):
        fail_lookup(analyzer, 3)

        loop = analyzer.detect_error_loop()

        assert loop.kind == "category"
        assert loop.count == 3
        assert loop.message.startswith("ERROR LOOP DETECTED: 3 'missing_resource' errors in a row.")

    def test_same_tool_with_different_errors(self, analyzer):
        for error in (MISSING, f"Script already exists: {SHOP}", "Parent not found: Workspace.Map"):
            analyzer.classify("create_script", {"path": SHOP}, error)

        loop = analyzer.detect_error_loop()

        assert loop.kind == "tool"
        assert loop.message == (
            "TOOL LOOP DETECTED: create_script has failed 3 times recently. "
            "Stop using this tool and try an alternative approach."
        )

    def test_previous_task_errors_do_not_count(self, analyzer):
        fail_lookup(analyzer, 2)
        analyzer.on_new_task("1000_2")
        fail_lookup(analyzer)

        assert analyzer.detect_error_loop() is None

    def test_old_errors_expire(self, analyzer, clock):
        fail_lookup(analyzer, 2)
        clock.advance(121)
        fail_lookup(analyzer)

        assert analyzer.detect_error_loop() is None

    def test_loop_replaces_recommendation(self, analyzer):
        fail_lookup(analyzer, 2)

        text = analyzer.analyze("get_instance", {"path": "Workspace.Missing"}, MISSING)

        assert "ERROR LOOP DETECTED: 3 'missing_resource' errors" in text
        assert "Recommended:" not in text
        assert analyzer.format_for_prompt().startswith("ERROR LOOP DETECTED")


class TestAdaptiveRecovery:
    def test_followed_strategy_is_not_recommended_first(self, analyzer):
        analysis = analyzer.classify("patch_script", {"path": SHOP}, "Search content not found")

        text = analyzer.format_for_llm(analysis)
        analyzer.record_tool_use("get_script")

        assert text.endswith("Recommended: Use get_script before retrying")
        assert analyzer.recovery_attempts["search_failed"]["reread_source"] == 1
        assert analyzer.adaptive_recovery(analysis).recommended.strategy == "partial_match"

    def test_other_tools_do_not_count_as_attempts(self, analyzer):
        analyzer.analyze("patch_script", {"path": SHOP}, "Search content not found")

        analyzer.record_tool_use("list_children")

        assert analyzer.recovery_attempts == {}

    def test_exhausted_strategies_escalate(self, analyzer):
        for strategy in ("add_context", "unique_anchor"):
            analyzer.record_recovery_attempt("ambiguous_match", strategy)
            analyzer.record_recovery_attempt("ambiguous_match", strategy)
        analysis = analyzer.classify("patch_script", {"path": SHOP}, "Ambiguous match: Found 2 occurrences")

        plan = analyzer.adaptive_recovery(analysis)

        assert plan.escalated is True
        assert plan.requires_user_input is True
        assert plan.message.startswith("ESCALATION: All 2 recovery strategies for 'ambiguous_match' have been attempted.")

    def test_new_task_resets_attempts(self, analyzer):
        analyzer.record_recovery_attempt("search_failed", "reread_source")

        analyzer.on_new_task("1000_2")

        assert analyzer.recovery_attempts == {}


class TestStatistics:
    def test_counts(self, analyzer):
        fail_lookup(analyzer)
        analyzer.classify("patch_script", {"path": SHOP}, "Search content not found")

        stats = analyzer.get_statistics()

        assert stats["total_errors"] == 2
        assert stats["by_category"] == {"missing_resource": 1, "search_failed": 1}
        assert stats["by_tool"] == {"get_instance": 1, "patch_script": 1}
        assert stats["trend"] == "stable"

    def test_worsening_trend(self, analyzer, clock):
        fail_lookup(analyzer, 3)
        clock.advance(200)
        fail_lookup(analyzer, 8)

        assert analyzer.get_statistics()["trend"] == "worsening"

    def test_clear_history(self, analyzer):
        fail_lookup(analyzer, 3)

        analyzer.clear_history()

        assert analyzer.get_statistics()["total_errors"] == 0
        assert analyzer.detect_error_loop() is None
