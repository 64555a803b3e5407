"""Pre-flight validation of tool calls.

Catches obviously broken calls before they reach the backend:
1. Missing or blank required arguments
2. Hallucinated paths (with "Did you mean" suggestions)
3. Placeholder / incomplete code
4. Bracket imbalance and common typos
5. Tool-specific mistakes

Any critical issue blocks the call; warnings are passed along to the model.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Pattern, Tuple

import yaml

from guardedAgent.config.project_root import resolve_project_path
from guardedAgent.config.settings import ValidationSettings
from guardedAgent.tools.backend import ToolBackend
from guardedAgent.tools.schema import ToolCall, ToolKind, get_spec

LOGGER = logging.getLogger(__name__)

Severity = Literal["critical", "warning"]


@dataclass
class ValidationIssue:
    severity: Severity
    field: str
    message: str


@dataclass
class ValidationResult:
    valid: bool
    issues: List[ValidationIssue] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    @property
    def critical(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "critical"]

    @property
    def warnings(self) -> List[ValidationIssue]:
        return [issue for issue in self.issues if issue.severity == "warning"]


@dataclass(frozen=True)
class PlaceholderRule:
    pattern: Pattern[str]
    message: str
    severity: Severity


def _rule(pattern: str, message: str, severity: Severity, flags: int = re.IGNORECASE) -> PlaceholderRule:
    return PlaceholderRule(pattern=re.compile(pattern, flags), message=message, severity=severity)


DEFAULT_PLACEHOLDER_RULES: Tuple[PlaceholderRule, ...] = (
    _rule(r"TODO", "Contains TODO marker", "warning"),
    _rule(r"FIXME", "Contains FIXME marker", "warning"),
    _rule(r"XXX", "Contains XXX marker", "warning"),
    _rule(r"HACK", "Contains HACK marker", "warning"),
    _rule(r"\.\.\.", "Contains ellipsis (possibly truncated)", "warning"),
    _rule(r"--\s*your\s*code\s*here", "Contains placeholder comment", "critical"),
    _rule(r"--\s*add\s*code\s*here", "Contains placeholder comment", "critical"),
    _rule(r"--\s*implement", "Contains unimplemented marker", "warning"),
    _rule(r"INSERT\s*\w*\s*HERE", "Contains INSERT HERE placeholder", "critical"),
    _rule(r"REPLACE\s*THIS", "Contains REPLACE THIS placeholder", "critical"),
    _rule(r"<\s*\w+\s*>", "Contains template placeholder like <name>", "warning", flags=0),
)

COMMON_TYPOS: Tuple[Tuple[str, str], ...] = (
    ("funciton", "function"),
    ("functoin", "function"),
    ("funtion", "function"),
    ("retrun", "return"),
    ("reutrn", "return"),
    ("lcoal", "local"),
    ("locla", "local"),
    ("thn", "then"),
    ("esle", "else"),
)

EMPTY_FUNCTION = re.compile(r"function\s*[\w.:]*\s*\([^)]*\)\s*end")


def load_placeholder_rules(rules_path: Optional[Path]) -> List[PlaceholderRule]:
    """Extra placeholder rules from YAML:

    placeholders:
      - pattern: "NOT IMPLEMENTED"
        message: "Contains NOT IMPLEMENTED marker"
        severity: critical
    """
    if not rules_path or not rules_path.exists():
        return []

    try:
        with open(rules_path, "r", encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        LOGGER.warning(f"Failed to load validation rules from {rules_path}: {e}")
        return []

    rules: List[PlaceholderRule] = []
    for entry in config.get("placeholders", []) or []:
        if not isinstance(entry, dict) or not entry.get("pattern"):
            continue
        severity = entry.get("severity", "warning")
        if severity not in ("critical", "warning"):
            severity = "warning"
        try:
            rules.append(_rule(entry["pattern"], entry.get("message", f"Matches '{entry['pattern']}'"), severity))
        except re.error as e:
            LOGGER.warning(f"Invalid placeholder pattern {entry['pattern']!r}: {e}")
    return rules


class OutputValidator:
    """Validate model-issued tool calls against the static schema and the workspace."""

    def __init__(self, backend: ToolBackend, settings: Optional[ValidationSettings] = None):
        self.backend = backend
        self.settings = settings or ValidationSettings()
        rules_path = resolve_project_path(self.settings.rules_path) if self.settings.rules_path else None
        self.placeholder_rules: List[PlaceholderRule] = [
            *DEFAULT_PLACEHOLDER_RULES,
            *load_placeholder_rules(rules_path),
        ]

    def validate(self, call: ToolCall) -> ValidationResult:
        issues: List[ValidationIssue] = []
        suggestions: List[str] = []
        args = dict(call.args)

        self._check_required_fields(call, args, issues)
        if self.settings.check_path_exists:
            self._check_paths(call, args, issues, suggestions)
        if self.settings.check_placeholders:
            self._check_content(call, args, issues)
        if self.settings.check_syntax:
            self._check_syntax(call, args, issues)
        self._check_tool_specific(call, args, issues)

        has_critical = any(issue.severity == "critical" for issue in issues)
        if issues:
            LOGGER.debug(
                f"{call.name}: {len(issues)} issues ({'INVALID' if has_critical else 'warnings only'})"
            )
        return ValidationResult(valid=not has_critical, issues=issues, suggestions=suggestions)

    # ========== Checks ==========

    def _check_required_fields(self, call: ToolCall, args: Mapping[str, Any], issues: List[ValidationIssue]) -> None:
        spec = call.spec
        if spec is None:
            issues.append(ValidationIssue("critical", "name", f"Unknown tool: {call.name}"))
            return

        for name in spec.required:
            value = args.get(name)
            if value is None:
                issues.append(ValidationIssue("critical", name, f"Required field '{name}' is missing"))
            elif isinstance(value, str) and not value.strip():
                issues.append(ValidationIssue("critical", name, f"Required field '{name}' is empty or whitespace"))

    def _check_paths(
        self,
        call: ToolCall,
        args: Mapping[str, Any],
        issues: List[ValidationIssue],
        suggestions: List[str],
    ) -> None:
        spec = call.spec
        if spec is None:
            return

        if spec.path_field:
            path = args.get(spec.path_field)
            if not isinstance(path, str) or not path.strip():
                return
            if not self.backend.path_exists(path):
                issues.append(ValidationIssue("critical", spec.path_field, f"Path doesn't exist: {path}"))
                for similar in self.find_similar_paths(path):
                    suggestions.append(f"Did you mean: {similar}")
            return

        if spec.parent_field:
            value = args.get(spec.parent_field)
            if not isinstance(value, str) or not value.strip():
                return
            # create_script names the new path; its parent is everything before the last segment
            parent = value if spec.parent_field == "parent" else value.rpartition(".")[0]
            if parent and not self.backend.path_exists(parent):
                issues.append(ValidationIssue("critical", "parent", f"Parent path doesn't exist: {parent}"))

    def _check_content(self, call: ToolCall, args: Mapping[str, Any], issues: List[ValidationIssue]) -> None:
        spec = call.spec
        if spec is None:
            return

        for name in spec.code_fields:
            content = args.get(name)
            if not isinstance(content, str):
                continue

            for rule in self.placeholder_rules:
                if rule.pattern.search(content):
                    issues.append(ValidationIssue(rule.severity, name, f"{rule.message} - code may be incomplete"))

            if name == "source" and len(content) < 10:
                issues.append(
                    ValidationIssue("warning", name, f"Script source is suspiciously short ({len(content)} chars)")
                )

            if EMPTY_FUNCTION.search(content):
                issues.append(ValidationIssue("warning", name, "Contains empty function body"))

    def _check_syntax(self, call: ToolCall, args: Mapping[str, Any], issues: List[ValidationIssue]) -> None:
        spec = call.spec
        if spec is None or not spec.code_fields:
            return

        content = next((args[name] for name in spec.code_fields if isinstance(args.get(name), str)), None)
        if content is None:
            return

        opened, closed = content.count("("), content.count(")")
        if opened != closed:
            issues.append(
                ValidationIssue("critical", "content", f"Unbalanced parentheses: {opened} open, {closed} close")
            )

        # String patterns like [^%s] make square brackets noisy; allow some slack
        opened, closed = content.count("["), content.count("]")
        if abs(opened - closed) > 2:
            issues.append(
                ValidationIssue("warning", "content", f"Possibly unbalanced brackets: {opened} open, {closed} close")
            )

        opened, closed = content.count("{"), content.count("}")
        if opened != closed:
            issues.append(ValidationIssue("critical", "content", f"Unbalanced braces: {opened} open, {closed} close"))

        for typo, correct in COMMON_TYPOS:
            if re.search(rf"\b{typo}\b", content):
                issues.append(
                    ValidationIssue("warning", "content", f"Possible typo: '{typo}' (did you mean '{correct}'?)")
                )

    def _check_tool_specific(self, call: ToolCall, args: Mapping[str, Any], issues: List[ValidationIssue]) -> None:
        kind = call.kind
        if kind == ToolKind.PATCH_SCRIPT:
            search, replace = args.get("search_content"), args.get("replace_content")
            if search and replace and search == replace:
                issues.append(
                    ValidationIssue(
                        "warning",
                        "replace_content",
                        "search_content and replace_content are identical - no change will occur",
                    )
                )
        elif kind == ToolKind.CREATE_INSTANCE:
            class_name = args.get("class_name")
            if isinstance(class_name, str) and class_name and not class_name[0].isupper():
                issues.append(
                    ValidationIssue("warning", "class_name", f"ClassName should start with capital letter: {class_name}")
                )
        elif kind == ToolKind.SET_INSTANCE_PROPERTIES:
            properties = args.get("properties")
            if properties is not None and not isinstance(properties, Mapping):
                issues.append(
                    ValidationIssue(
                        "critical",
                        "properties",
                        f"properties must be a table, got {type(properties).__name__}",
                    )
                )

    # ========== Similarity ==========

    def find_similar_paths(self, target: str) -> List[str]:
        """Existing paths that look like a hallucinated one, best first."""
        parts = [part.lower() for part in target.split(".") if part]
        if not parts:
            return []
        last = parts[-1]

        scored: List[Tuple[int, str]] = []
        for path in self.backend.list_paths():
            lowered = path.lower()
            name = lowered.rsplit(".", 1)[-1]
            score = 0
            if last in lowered:
                score += 50
            if last in name:
                score += 30
            score += sum(10 for part in parts if part in lowered)
            if score > 0:
                scored.append((score, path))

        scored.sort(key=lambda item: item[0], reverse=True)
        return [path for _, path in scored[: self.settings.max_suggestions]]


def format_for_llm(result: ValidationResult) -> Optional[str]:
    """Render validation issues as feedback for the model; None when clean."""
    if result.valid and not result.issues:
        return None

    parts = ["TOOL CALL VALIDATION ISSUES:"]
    if result.critical:
        parts.append("\nCRITICAL (must fix):")
        parts.extend(f"  - [{issue.field}] {issue.message}" for issue in result.critical)
    if result.warnings:
        parts.append("\nWARNINGS:")
        parts.extend(f"  - [{issue.field}] {issue.message}" for issue in result.warnings)
    if result.suggestions:
        parts.append("\nSuggestions:")
        parts.extend(f"  > {suggestion}" for suggestion in result.suggestions)
    return "\n".join(parts)
