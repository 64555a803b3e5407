"""Unit tests for post-apply verification."""

import pytest

from guardedAgent.config.settings import VerificationSettings
from guardedAgent.runtime.verification import OperationVerifier, VerificationResult, check_source_syntax, summarize
from guardedAgent.tools.schema import ToolCall
from tests.fakes import SHOP_SOURCE

SHOP = "ServerScriptService.ShopHandler"
BASEPLATE = "Workspace.Baseplate"


@pytest.fixture
def verifier(backend):
    return OperationVerifier(backend)


def patch_call(search="local price = item.price", replace="local cost = item.price"):
    return ToolCall("patch_script", {"path": SHOP, "search_content": search, "replace_content": replace})


class TestSyntax:
    def test_clean_script(self):
        assert check_source_syntax(SHOP_SOURCE) == []

    def test_missing_end(self):
        source = "function a()\nfunction b()\nfunction c()\nfunction d()\n"

        assert check_source_syntax(source) == ["Possibly missing 'end' statements (found 4 openers, 0 closers)"]

    def test_typos_and_braces(self):
        issues = check_source_syntax("lcoal t = {{}\nretrun t\n")

        assert issues == [
            "Unbalanced braces: 2 '{' vs 1 '}'",
            "Possible typos: 'retrun' should be 'return', 'lcoal' should be 'local'",
        ]

    def test_else_if(self):
        source = "if a then\n  x()\nelse if b then\n  y()\nend\nend\n"

        assert check_source_syntax(source) == ["Possible typos: 'else if' should be 'elseif'"]


class TestScripts:
    def test_applied_patch(self, backend, verifier):
        backend.set_source(SHOP, SHOP_SOURCE.replace("local price", "local cost"))

        result = verifier.verify(patch_call())

        assert result.verified is True
        assert result.line_count == 9
        assert result.to_dict() == {"verified": True, "issues": []}
        assert result.format_report() == "Verification PASSED: patch_script\n  9 lines"

    def test_patch_that_did_not_land(self, verifier):
        result = verifier.verify(patch_call())

        assert result.verified is False
        assert result.issues == [
            "Replacement content not found in script after patch",
            "Original search content still present after patch",
        ]

    def test_replacement_containing_search(self, backend, verifier):
        replace = "local price = item.price * 2"
        backend.set_source(SHOP, SHOP_SOURCE.replace("local price = item.price", replace))

        assert verifier.verify(patch_call(replace=replace)).verified is True

    def test_patch_breaking_syntax(self, backend, verifier):
        backend.set_source(SHOP, SHOP_SOURCE.replace("return price", "return (price"))

        result = verifier.verify(patch_call("return price", "return (price"))

        assert result.issues == ["Syntax: Unbalanced parentheses: 2 '(' vs 1 ')'"]
        assert "  - Review the code for syntax errors" in result.format_report()

    def test_edit_mismatch(self, verifier):
        result = verifier.verify(ToolCall("edit_script", {"path": SHOP, "new_source": "return {}"}))

        assert result.issues == ["Script source differs from the requested new_source"]

    def test_created_script_mismatch(self, backend, verifier):
        backend.add_script("ServerScriptService.Inventory", "return {}", "ModuleScript")
        source = "local x = 1\n" * 9 + "return {}"

        result = verifier.verify(
            ToolCall(
                "create_script",
                {"path": "ServerScriptService.Inventory", "source": source, "script_type": "Script"},
            )
        )

        assert result.class_name == "ModuleScript"
        assert result.issues == [
            "Script type mismatch: expected Script, got ModuleScript",
            "Line count mismatch: expected ~10, got 1",
        ]

    def test_missing_script(self, verifier):
        result = verifier.verify(ToolCall("edit_script", {"path": "ServerScriptService.Gone", "new_source": "x"}))

        report = result.format_report()

        assert result.issues == ["Script not found at path: ServerScriptService.Gone"]
        assert report.startswith("Verification FAILED: edit_script\n  - Script not found")
        assert "  - Check if the path is correct" in report

    def test_instance_that_is_not_a_script(self, verifier):
        result = verifier.verify_script("edit_script", BASEPLATE)

        assert result.issues == [f"Instance exists but is not a script: {BASEPLATE}"]


class TestInstances:
    def test_created_instance(self, backend, verifier):
        backend.add_instance("Workspace.Coin", "Part", {"Anchored": True})

        result = verifier.verify(
            ToolCall(
                "create_instance",
                {"parent": "Workspace", "name": "Coin", "class_name": "Part", "properties": {"Anchored": True}},
            )
        )

        assert result.verified is True
        assert result.class_name == "Part"

    def test_property_mismatch(self, verifier):
        call = ToolCall("set_instance_properties", {"path": BASEPLATE, "properties": {"Anchored": False, "Transparency": 0.5}})

        result = verifier.verify(call)

        assert result.issues == [
            "Property 'Anchored': expected False, got True",
            "Property 'Transparency' could not be read",
        ]

    def test_delete_still_present(self, verifier):
        result = verifier.verify(ToolCall("delete_instance", {"path": BASEPLATE}))

        assert result.issues == [f"Instance still exists after delete: {BASEPLATE}"]

    def test_delete_of_absent_path(self, verifier):
        assert verifier.verify(ToolCall("delete_instance", {"path": "Workspace.Gone"})).verified is True

    def test_backend_without_details_checks_existence_only(self, backend):
        class PathsOnly:
            path_exists = backend.path_exists
            read_source = backend.read_source

        verifier = OperationVerifier(PathsOnly())
        call = ToolCall("create_instance", {"parent": "Workspace", "name": "Baseplate", "class_name": "Model"})

        result = verifier.verify(call)

        assert result.verified is True
        assert result.class_name is None


class TestSkipping:
    def test_read_tools_are_skipped(self, verifier):
        result = verifier.verify(ToolCall("get_script", {"path": SHOP}))

        assert result.skipped is True
        assert result.to_dict() == {"verified": True, "skipped": True}

    def test_disabled(self, backend):
        verifier = OperationVerifier(backend, VerificationSettings(enabled=False))

        assert verifier.verify(patch_call()).skipped is True

    def test_create_checks_can_be_disabled(self, backend):
        verifier = OperationVerifier(backend, VerificationSettings(verify_after_create=False))

        created = verifier.verify(ToolCall("create_script", {"path": "ServerScriptService.Gone", "source": "x"}))
        patched = verifier.verify(patch_call())

        assert created.skipped is True
        assert patched.skipped is False

    def test_summarize(self):
        results = [
            VerificationResult("patch_script", verified=True),
            VerificationResult("delete_instance", issues=["Instance still exists after delete: Workspace.Part"]),
            VerificationResult("get_script", verified=True, skipped=True),
        ]

        assert summarize(results) == {
            "total": 2,
            "passed": 1,
            "failed": 1,
            "issues": [{"operation": "delete_instance", "issue": "Instance still exists after delete: Workspace.Part"}],
        }
