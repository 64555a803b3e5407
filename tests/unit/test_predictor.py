"""Unit tests for ErrorPredictor."""

import pytest

from guardedAgent.config.settings import PredictorSettings
from guardedAgent.safety.predictor import ErrorPredictor
from guardedAgent.tools.schema import ToolCall
from tests.fakes import ManualClock

SHOP = "ServerScriptService.ShopHandler"


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def predictor(backend, clock):
    return ErrorPredictor(backend, PredictorSettings(freshness_threshold_seconds=120), clock=clock)


def patch(search="local price = item.price -- full line"):
    return ToolCall("patch_script", {"path": SHOP, "search_content": search, "replace_content": "x"})


class TestPatchRisks:
    def test_unread_script_is_high_risk(self, predictor):
        assessment = predictor.assess(patch())

        assert assessment.overall == "high"
        assert assessment.risks[0].reason == "Script not read in this session - content unknown"

    def test_fresh_read_has_no_risk(self, predictor):
        predictor.record_read(SHOP)

        assessment = predictor.assess(patch())

        assert assessment.should_warn is False
        assert assessment.overall == "low"
        assert predictor.format_warnings(assessment) is None

    def test_old_read_is_medium_risk(self, predictor, clock):
        predictor.record_read(SHOP)
        clock.advance(200)

        assessment = predictor.assess(patch())

        assert assessment.overall == "medium"
        assert "200 seconds ago" in assessment.risks[0].reason

    def test_external_change_after_read(self, predictor, clock):
        predictor.record_read(SHOP)
        clock.advance(5)
        predictor.record_external_modification(SHOP)

        assessment = predictor.assess(patch())

        assert any(risk.reason == "Script was modified after you last read it" for risk in assessment.risks)

    def test_own_modification_counts_as_read(self, predictor):
        predictor.record_modified(SHOP)

        assert predictor.assess(patch()).should_warn is False

    def test_short_and_padded_search_content(self, predictor):
        predictor.record_read(SHOP)

        assessment = predictor.assess(patch(search=" price "))

        reasons = [risk.reason for risk in assessment.risks]
        assert any("very short" in reason for reason in reasons)
        assert any("whitespace" in reason for reason in reasons)

    def test_mark_all_stale(self, predictor):
        predictor.record_read(SHOP)

        predictor.mark_all_stale()

        assert predictor.assess(patch()).overall == "medium"


class TestOtherTools:
    def test_delete_is_always_high(self, predictor):
        assessment = predictor.assess(ToolCall("delete_instance", {"path": "Workspace.Baseplate"}))

        assert assessment.overall == "high"

    def test_create_over_existing(self, predictor):
        assessment = predictor.assess(ToolCall("create_script", {"path": SHOP, "source": "return {}"}))

        assert "Something already exists at ServerScriptService.ShopHandler" == assessment.risks[0].reason

    def test_set_properties_without_inspection(self, predictor):
        call = ToolCall("set_instance_properties", {"path": "Workspace.Baseplate", "properties": {"Anchored": False}})

        assert predictor.assess(call).overall == "medium"

        predictor.record_read("Workspace.Baseplate")
        assert predictor.assess(call).should_warn is False

    def test_read_tools_are_low_risk(self, predictor):
        assert predictor.assess(ToolCall("get_script", {"path": SHOP})).overall == "low"


class TestFailurePatterns:
    def test_repeated_failures_raise_risk(self, predictor, clock):
        call = ToolCall("get_instance", {"path": "Workspace.Missing"})
        predictor.record_failure("get_instance", call.args, "Instance not found: Workspace.Missing")
        predictor.record_failure("get_instance", call.args, "Instance not found: Workspace.Missing")

        assessment = predictor.assess(call)

        assert assessment.overall == "high"
        assert "failed 2 times recently" in assessment.risks[0].reason
        text = predictor.format_warnings(assessment)
        assert text.startswith("PRE-FLIGHT RISK ASSESSMENT:")
        assert "Last error: Instance not found" in text

    def test_failures_expire(self, predictor, clock):
        args = {"path": "Workspace.Missing"}
        predictor.record_failure("get_instance", args, "gone")
        predictor.record_failure("get_instance", args, "gone")
        clock.advance(121)

        assert predictor.assess(ToolCall("get_instance", args)).should_warn is False

    def test_reset(self, predictor):
        predictor.record_read(SHOP)
        predictor.record_failure("get_script", {"path": SHOP}, "x")

        predictor.reset()

        assert predictor.read_times == {}
        assert predictor.recent_failures == []
