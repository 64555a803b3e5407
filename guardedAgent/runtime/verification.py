"""Post-apply verification of approved operations.

A backend that reports success has only said the write happened. After an
approved operation is applied, the verifier reads the workspace back and
checks the operation actually took effect: the script exists and carries
the new content, the instance has the requested class and properties, a
deleted path is gone. The whole resulting source also gets a pattern-based
syntax pass, since a patch that is balanced on its own can still unbalance
the script around it.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

from guardedAgent.config.settings import VerificationSettings
from guardedAgent.safety.validator import COMMON_TYPOS
from guardedAgent.tools.backend import ToolBackend
from guardedAgent.tools.schema import ToolCall, ToolKind

LOGGER = logging.getLogger(__name__)

BLOCK_OPENERS = re.compile(r"\b(function|if|do|repeat)\b")
BLOCK_CLOSERS = re.compile(r"\b(end|until)\b")
# Keywords inside strings and comments are counted too
BLOCK_SLACK = 2


def check_source_syntax(source: str) -> List[str]:
    """Pattern-based problems in a complete script; no parsing, no execution."""
    issues: List[str] = []

    opened, closed = source.count("("), source.count(")")
    if opened != closed:
        issues.append(f"Unbalanced parentheses: {opened} '(' vs {closed} ')'")
    opened, closed = source.count("{"), source.count("}")
    if opened != closed:
        issues.append(f"Unbalanced braces: {opened} '{{' vs {closed} '}}'")

    openers, closers = len(BLOCK_OPENERS.findall(source)), len(BLOCK_CLOSERS.findall(source))
    if openers > closers + BLOCK_SLACK:
        issues.append(f"Possibly missing 'end' statements (found {openers} openers, {closers} closers)")
    elif closers > openers + BLOCK_SLACK:
        issues.append(f"Possibly extra 'end' statements (found {openers} openers, {closers} closers)")

    if source.count("[[") > source.count("]]"):
        issues.append("Unclosed long string ([[ without ]])")

    typos = [f"'{typo}' should be '{correct}'" for typo, correct in COMMON_TYPOS if re.search(rf"\b{typo}\b", source)]
    if re.search(r"\belse\s+if\b", source):
        typos.append("'else if' should be 'elseif'")
    if typos:
        issues.append("Possible typos: " + ", ".join(typos))
    return issues


@dataclass
class VerificationResult:
    operation: str
    path: Optional[str] = None
    verified: bool = False
    skipped: bool = False
    exists: bool = False
    line_count: Optional[int] = None
    class_name: Optional[str] = None
    issues: List[str] = field(default_factory=list)
    syntax_issues: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Compact form attached to the tool result the model sees."""
        if self.skipped:
            return {"verified": True, "skipped": True}
        return {"verified": self.verified, "issues": list(self.issues)}

    def format_report(self) -> str:
        if self.skipped:
            return "Verification skipped (disabled)"
        if self.verified:
            parts = [f"Verification PASSED: {self.operation}"]
            if self.line_count is not None:
                parts.append(f"  {self.line_count} lines")
            if self.class_name:
                parts.append(f"  Class: {self.class_name}")
            return "\n".join(parts)

        parts = [f"Verification FAILED: {self.operation}"]
        parts.extend(f"  - {issue}" for issue in self.issues)
        parts.append("Suggestions:")
        if not self.exists and self.operation != ToolKind.DELETE_INSTANCE.value:
            parts.append("  - Check if the path is correct")
            parts.append("  - Verify the parent container exists")
        elif self.syntax_issues:
            parts.append("  - Review the code for syntax errors")
            parts.append("  - Use get_script to read the current state")
        else:
            parts.append("  - Inspect the target with get_script or get_instance before continuing")
        return "\n".join(parts)


def summarize(results: List[VerificationResult]) -> Dict[str, Any]:
    """Pass/fail counts over several verifications; skipped ones are not counted."""
    counted = [r for r in results if not r.skipped]
    failed = [r for r in counted if not r.verified]
    return {
        "total": len(counted),
        "passed": len(counted) - len(failed),
        "failed": len(failed),
        "issues": [{"operation": r.operation, "issue": issue} for r in failed for issue in r.issues],
    }


class OperationVerifier:
    """Reads the workspace back after an approved operation was applied.

    Instance class and property checks need the optional backend method
    ``describe_instance(path) -> {"class_name", "properties"} | None``;
    without it only existence is checked.
    """

    def __init__(self, backend: ToolBackend, settings: Optional[VerificationSettings] = None):
        self.backend = backend
        self.settings = settings or VerificationSettings()
        self._describe: Optional[Callable[[str], Optional[Dict[str, Any]]]] = getattr(
            backend, "describe_instance", None
        )
        self._verifiers: Dict[ToolKind, Callable[[ToolCall], VerificationResult]] = {
            ToolKind.PATCH_SCRIPT: self._verify_patch,
            ToolKind.EDIT_SCRIPT: self._verify_edit,
            ToolKind.CREATE_SCRIPT: self._verify_script_creation,
            ToolKind.CREATE_INSTANCE: self._verify_instance_creation,
            ToolKind.SET_INSTANCE_PROPERTIES: self._verify_properties,
            ToolKind.DELETE_INSTANCE: self._verify_delete,
        }

    def verify(self, call: ToolCall) -> VerificationResult:
        kind = call.kind
        verifier = self._verifiers.get(kind) if kind else None
        if verifier is None or not self._enabled_for(kind):
            return VerificationResult(operation=call.name, path=call.target_path, verified=True, skipped=True)

        result = verifier(call)
        if not result.issues:
            result.verified = True
        level = logging.INFO if result.verified else logging.WARNING
        LOGGER.log(
            level,
            f"Verification {'passed' if result.verified else 'failed'} for {call.name} {result.path or ''}: "
            f"{'; '.join(result.issues) or 'ok'}",
        )
        return result

    def _enabled_for(self, kind: ToolKind) -> bool:
        if not self.settings.enabled:
            return False
        if kind in (ToolKind.CREATE_SCRIPT, ToolKind.CREATE_INSTANCE):
            return self.settings.verify_after_create
        return self.settings.verify_after_edit

    # ========== Scripts ==========

    def verify_script(self, operation: str, path: str, expected: Optional[List[str]] = None) -> VerificationResult:
        """The script exists, has a source, passes the syntax pass and contains every expected string."""
        result = VerificationResult(operation=operation, path=path)
        source = self.backend.read_source(path)
        if source is None:
            if self.backend.path_exists(path):
                result.issues.append(f"Instance exists but is not a script: {path}")
            else:
                result.issues.append(f"Script not found at path: {path}")
            return result

        result.exists = True
        if not source:
            result.issues.append("Script exists but has no source code")
            return result

        result.line_count = source.count("\n") + 1
        result.syntax_issues = check_source_syntax(source)
        result.issues.extend(f"Syntax: {issue}" for issue in result.syntax_issues)
        for text in expected or []:
            if text not in source:
                result.issues.append(f"Expected content not found: {text[:50]}")
        return result

    def _verify_patch(self, call: ToolCall) -> VerificationResult:
        args = call.args
        path = args.get("path", "")
        replace = args.get("replace_content") or ""
        result = self.verify_script(call.name, path)
        if not result.exists:
            return result

        source = self.backend.read_source(path) or ""
        if replace and replace not in source:
            result.issues.append("Replacement content not found in script after patch")
        search = args.get("search_content") or ""
        if search and search not in replace and search in source:
            result.issues.append("Original search content still present after patch")
        return result

    def _verify_edit(self, call: ToolCall) -> VerificationResult:
        path = call.args.get("path", "")
        result = self.verify_script(call.name, path)
        if result.exists and self.backend.read_source(path) != call.args.get("new_source"):
            result.issues.append("Script source differs from the requested new_source")
        return result

    def _verify_script_creation(self, call: ToolCall) -> VerificationResult:
        args = call.args
        path = args.get("path", "")
        result = self.verify_script(call.name, path)
        if not result.exists:
            return result

        expected_type = args.get("script_type") or "Script"
        details = self._details(path)
        if details is not None:
            result.class_name = details.get("class_name")
            if result.class_name != expected_type:
                result.issues.append(f"Script type mismatch: expected {expected_type}, got {result.class_name}")

        source = args.get("source")
        if isinstance(source, str) and result.line_count is not None:
            expected_lines = source.count("\n") + 1
            if abs(expected_lines - result.line_count) > self.settings.line_count_tolerance:
                result.issues.append(f"Line count mismatch: expected ~{expected_lines}, got {result.line_count}")
        return result

    # ========== Instances ==========

    def verify_instance(
        self,
        operation: str,
        path: str,
        expected_class: Optional[str] = None,
        expected_properties: Optional[Mapping[str, Any]] = None,
    ) -> VerificationResult:
        result = VerificationResult(operation=operation, path=path)
        if not self.backend.path_exists(path):
            result.issues.append(f"Instance not found at path: {path}")
            return result
        result.exists = True

        details = self._details(path)
        if details is None:
            return result

        result.class_name = details.get("class_name")
        if expected_class and result.class_name != expected_class:
            result.issues.append(f"Class mismatch: expected {expected_class}, got {result.class_name}")

        actual = details.get("properties") or {}
        for name, expected in (expected_properties or {}).items():
            if name not in actual:
                result.issues.append(f"Property '{name}' could not be read")
            elif str(actual[name]) != str(expected):
                result.issues.append(f"Property '{name}': expected {expected}, got {actual[name]}")
        return result

    def _verify_instance_creation(self, call: ToolCall) -> VerificationResult:
        args = call.args
        path = f"{args.get('parent', '')}.{args.get('name', '')}"
        return self.verify_instance(call.name, path, args.get("class_name"), args.get("properties"))

    def _verify_properties(self, call: ToolCall) -> VerificationResult:
        properties = call.args.get("properties")
        return self.verify_instance(
            call.name,
            call.args.get("path", ""),
            expected_properties=properties if isinstance(properties, Mapping) else None,
        )

    def _verify_delete(self, call: ToolCall) -> VerificationResult:
        path = call.args.get("path", "")
        result = VerificationResult(operation=call.name, path=path)
        if self.backend.path_exists(path):
            result.exists = True
            result.issues.append(f"Instance still exists after delete: {path}")
        return result

    def _details(self, path: str) -> Optional[Dict[str, Any]]:
        return self._describe(path) if self._describe is not None else None
