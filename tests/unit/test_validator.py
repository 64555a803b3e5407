"""Unit tests for OutputValidator.

Tests required fields, hallucinated paths, placeholder rules and syntax checks.
"""

import pytest

from guardedAgent.config.settings import ValidationSettings
from guardedAgent.safety.validator import OutputValidator, format_for_llm, load_placeholder_rules
from guardedAgent.tools.schema import ToolCall


@pytest.fixture
def validator(backend):
    return OutputValidator(backend, ValidationSettings())


def patch_call(**overrides):
    args = {
        "path": "ServerScriptService.ShopHandler",
        "search_content": "local price = item.price",
        "replace_content": "local price = item.price * 2",
    }
    args.update(overrides)
    return ToolCall("patch_script", args)


class TestRequiredFields:
    def test_valid_call(self, validator):
        result = validator.validate(patch_call())

        assert result.valid is True
        assert result.critical == []

    def test_missing_required_field(self, validator):
        call = ToolCall("patch_script", {"path": "ServerScriptService.ShopHandler", "replace_content": "x = 1"})

        result = validator.validate(call)

        assert result.valid is False
        assert any("'search_content' is missing" in issue.message for issue in result.critical)

    def test_blank_required_field(self, validator):
        result = validator.validate(ToolCall("search_scripts", {"query": "   "}))

        assert result.valid is False
        assert "empty or whitespace" in result.critical[0].message

    def test_unknown_tool(self, validator):
        result = validator.validate(ToolCall("format_disk", {}))

        assert result.valid is False
        assert result.critical[0].message == "Unknown tool: format_disk"


class TestPaths:
    def test_hallucinated_path_gets_suggestion(self, validator):
        result = validator.validate(ToolCall("get_script", {"path": "ServerStorage.ShopHandler"}))

        assert result.valid is False
        assert result.critical[0].message == "Path doesn't exist: ServerStorage.ShopHandler"
        assert result.suggestions[0] == "Did you mean: ServerScriptService.ShopHandler"

    def test_create_script_checks_parent(self, validator):
        missing = validator.validate(
            ToolCall("create_script", {"path": "ServerScriptService.Shop.Prices", "source": "return {}\n-- prices"})
        )
        present = validator.validate(
            ToolCall("create_script", {"path": "ServerScriptService.Prices", "source": "return {}\n-- prices"})
        )

        assert missing.valid is False
        assert "Parent path doesn't exist: ServerScriptService.Shop" in missing.critical[0].message
        assert present.valid is True

    def test_create_instance_checks_parent(self, validator):
        result = validator.validate(ToolCall("create_instance", {"class_name": "Frame", "parent": "StarterGui.Nope", "name": "Main"}))

        assert result.valid is False


class TestContent:
    def test_placeholder_comment_is_critical(self, validator):
        result = validator.validate(patch_call(replace_content="-- your code here"))

        assert result.valid is False
        assert "placeholder" in result.critical[0].message

    def test_todo_is_only_a_warning(self, validator):
        result = validator.validate(patch_call(replace_content="local price = item.price -- TODO discounts"))

        assert result.valid is True
        assert any("TODO" in issue.message for issue in result.warnings)

    def test_rules_file_adds_critical_pattern(self, validator):
        result = validator.validate(patch_call(replace_content="error('NOT IMPLEMENTED')"))

        assert result.valid is False
        assert any("NOT IMPLEMENTED" in issue.message for issue in result.critical)

    def test_unbalanced_parentheses(self, validator):
        result = validator.validate(patch_call(replace_content="print((item.price)"))

        assert result.valid is False
        assert "Unbalanced parentheses: 2 open, 1 close" in result.critical[0].message

    def test_typo_warning(self, validator):
        result = validator.validate(patch_call(replace_content="retrun item.price"))

        assert result.valid is True
        assert any("did you mean 'return'" in issue.message for issue in result.warnings)

    def test_identical_search_and_replace(self, validator):
        result = validator.validate(patch_call(replace_content="local price = item.price"))

        assert any("identical" in issue.message for issue in result.warnings)

    def test_checks_can_be_disabled(self, backend):
        validator = OutputValidator(backend, ValidationSettings(check_placeholders=False, check_syntax=False))

        result = validator.validate(patch_call(replace_content="print(( -- your code here"))

        assert result.valid is True


class TestRulesFile:
    def test_missing_file_gives_no_rules(self, tmp_path):
        assert load_placeholder_rules(tmp_path / "nope.yaml") == []

    def test_invalid_entries_are_skipped(self, tmp_path):
        rules_file = tmp_path / "rules.yaml"
        rules_file.write_text(
            "placeholders:\n"
            "  - pattern: 'STUB'\n"
            "    severity: critical\n"
            "  - message: 'no pattern'\n"
            "  - pattern: '('\n",
            encoding="utf-8",
        )

        rules = load_placeholder_rules(rules_file)

        assert len(rules) == 1
        assert rules[0].severity == "critical"


class TestFormatting:
    def test_format_for_llm(self, validator):
        result = validator.validate(ToolCall("get_script", {"path": "ServerStorage.ShopHandler"}))

        text = format_for_llm(result)

        assert text.startswith("TOOL CALL VALIDATION ISSUES:")
        assert "CRITICAL (must fix):" in text
        assert "> Did you mean: ServerScriptService.ShopHandler" in text

    def test_clean_result_formats_to_none(self, validator):
        assert format_for_llm(validator.validate(ToolCall("get_script", {"path": "ServerScriptService.Combat"}))) is None
