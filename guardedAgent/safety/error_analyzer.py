"""Failure classification, recovery guidance and error-loop detection.

The resilience layer decides whether an error is worth retrying. The
analyzer works one level up: it sorts every failure that reaches the agent
into a category, attaches recovery suggestions, and notices when the agent
keeps failing the same way within one task. Recovery strategies the agent
has already followed are not recommended again; once every strategy of a
category is exhausted the analyzer escalates to the user.
"""

from __future__ import annotations

import logging
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Tuple

from guardedAgent.config.settings import ErrorAnalysisSettings

LOGGER = logging.getLogger(__name__)

Severity = Literal["low", "medium", "high"]


@dataclass(frozen=True)
class ErrorPattern:
    category: str
    severity: Severity
    patterns: Tuple[str, ...]  # regular expressions, matched case-insensitively
    suggestions: Tuple[str, ...]


# First match wins, so narrower categories come before "missing_resource"
ERROR_PATTERNS: Tuple[ErrorPattern, ...] = (
    ErrorPattern(
        "ambiguous_match",
        "medium",
        ("ambiguous match", "found multiple", "not unique"),
        (
            "Re-read the file with get_script to see exact content",
            "Include more context lines in your search_content",
            "Use more unique identifiers in the search pattern",
        ),
    ),
    ErrorPattern(
        "search_failed",
        "medium",
        ("search content not found", "could not find", "no match"),
        (
            "Re-read the file - content may have changed",
            "Check for whitespace differences (indentation matters)",
            "The code might have been modified by a previous operation",
            "Copy search_content exactly from get_script output",
        ),
    ),
    ErrorPattern(
        "parent_error",
        "medium",
        ("parent not found", "invalid parent", "cannot parent"),
        (
            "Create the parent container first",
            "Use list_children to verify the parent path exists",
            "Check if the parent allows this type of child",
        ),
    ),
    ErrorPattern(
        "already_exists",
        "low",
        ("already exists", "duplicate", "name collision"),
        (
            "Use get_instance to check the existing state",
            "Consider modifying the existing resource instead of creating a new one",
            "Use a different name or delete the existing one first",
        ),
    ),
    ErrorPattern(
        "invalid_class",
        "medium",
        ("invalid classname", "invalid script_type", "cannot create", "unknown class"),
        (
            "Verify the class name is spelled correctly (case-sensitive)",
            "Check the API reference for the correct class name",
            "Some classes cannot be created directly",
        ),
    ),
    ErrorPattern(
        "property_error",
        "medium",
        ("cannot set", "read-only", "invalid property", "not a valid member"),
        (
            "Use get_instance to see what properties actually exist",
            "Check if the property name is spelled correctly",
            "Some properties require specific value types (Color3, UDim2, etc.)",
            "Verify the instance class supports this property",
        ),
    ),
    ErrorPattern(
        "type_error",
        "medium",
        ("cannot convert", "invalid value", "type mismatch", r"expected \w+, got"),
        (
            "Check the expected value format (e.g., UDim2: '0,100,0,50')",
            "For Color3, use '255,128,0' or '#FF8000' format",
            "For Vector3, use 'X,Y,Z' format",
            "Use get_instance to see what type the property expects",
        ),
    ),
    ErrorPattern(
        "syntax_error",
        "high",
        ("syntax error", "unexpected symbol", "'end' expected", "'then' expected", "malformed"),
        (
            "Re-read the script using get_script to see current state",
            "Check for missing 'end', 'then', 'do', or closing brackets",
            "Verify string quotes are properly closed",
        ),
    ),
    ErrorPattern(
        "missing_resource",
        "medium",
        ("not found", "does not exist", "nil value", "attempt to index nil"),
        (
            "Verify the path exists using get_instance or list_children",
            "Check for typos in the path",
            "The parent container might not exist - create it first",
        ),
    ),
    ErrorPattern(
        "rate_limited",
        "low",
        ("timeout", "timed out", "rate limit", "too many requests", "try again"),
        (
            "Wait a moment before retrying",
            "Consider batching operations",
            "Reduce the frequency of tool calls",
        ),
    ),
)


@dataclass(frozen=True)
class RecoveryStrategy:
    strategy: str
    tool: Optional[str]
    message: str


# Priority order per category; untried strategies are offered first
RECOVERY_STRATEGIES: Dict[str, Tuple[RecoveryStrategy, ...]] = {
    "missing_resource": (
        RecoveryStrategy("verify_path", "get_instance", "Verify the path exists"),
        RecoveryStrategy("list_parent", "list_children", "List parent contents to find the correct name"),
        RecoveryStrategy("search_project", "search_scripts", "Search for the resource in the project"),
        RecoveryStrategy("create_resource", "create_instance", "Create the missing resource"),
    ),
    "syntax_error": (
        RecoveryStrategy("reread_source", "get_script", "Re-read the script to see current state"),
        RecoveryStrategy("smaller_change", "patch_script", "Make a smaller, targeted change"),
        RecoveryStrategy("full_rewrite", "edit_script", "Rewrite the problematic section entirely"),
    ),
    "search_failed": (
        RecoveryStrategy("reread_source", "get_script", "Re-read the file - content may have changed"),
        RecoveryStrategy("partial_match", "search_scripts", "Search for a unique part of the content"),
        RecoveryStrategy("full_replace", "edit_script", "Replace the entire script instead of patching"),
    ),
    "ambiguous_match": (
        RecoveryStrategy("add_context", "get_script", "Include more context lines"),
        RecoveryStrategy("unique_anchor", "search_scripts", "Find a unique string nearby as anchor"),
    ),
    "parent_error": (
        RecoveryStrategy("verify_parent", "list_children", "Verify parent path structure"),
        RecoveryStrategy("create_parent", "create_instance", "Create the parent container first"),
    ),
    "already_exists": (
        RecoveryStrategy("inspect_existing", "get_instance", "Inspect the existing resource"),
        RecoveryStrategy("use_existing", "set_instance_properties", "Modify the existing resource"),
        RecoveryStrategy("delete_first", "delete_instance", "Delete the existing one first"),
    ),
    "property_error": (
        RecoveryStrategy("inspect_instance", "get_instance", "Inspect the instance properties"),
        RecoveryStrategy("try_alternative", "set_instance_properties", "Try an alternative property format"),
    ),
    "type_error": (
        RecoveryStrategy("check_format", "get_instance", "Check the expected value format"),
        RecoveryStrategy("try_string", "set_instance_properties", "Try passing the value as a string"),
    ),
}


@dataclass
class ErrorAnalysis:
    """One classified failure."""

    tool: str
    error: str
    category: str = "unknown"
    severity: Severity = "medium"
    suggestions: List[str] = field(default_factory=list)
    contextual: List[str] = field(default_factory=list)
    timestamp: float = 0.0

    def enhanced_message(self, max_suggestions: int = 3) -> str:
        parts = [f"[{self.category.upper().replace('_', ' ')}] {self.error}"]
        if self.suggestions:
            parts.append("")
            parts.append("Recovery suggestions:")
            parts.extend(f"  {i}. {s}" for i, s in enumerate(self.suggestions[:max_suggestions], start=1))
        if self.contextual:
            parts.append("")
            parts.append("For this specific case:")
            parts.extend(f"  - {s}" for s in self.contextual)
        return "\n".join(parts)


@dataclass
class LoopDetection:
    kind: Literal["category", "tool"]
    subject: str
    count: int
    message: str


@dataclass
class RecoveryOption:
    strategy: str
    tool: Optional[str]
    message: str
    attempts: int = 0


@dataclass
class RecoveryPlan:
    escalated: bool
    message: str
    options: List[RecoveryOption] = field(default_factory=list)
    requires_user_input: bool = False

    @property
    def recommended(self) -> Optional[RecoveryOption]:
        return self.options[0] if self.options else None


@dataclass
class _ErrorRecord:
    category: str
    tool: str
    timestamp: float
    task_id: Optional[str]


def match_category(error: str) -> Tuple[str, Severity, Tuple[str, ...]]:
    lowered = error.lower()
    for pattern in ERROR_PATTERNS:
        if any(re.search(p, lowered) for p in pattern.patterns):
            return pattern.category, pattern.severity, pattern.suggestions
    return "unknown", "medium", ()


def contextual_suggestions(tool: str, args: Mapping[str, Any], category: str) -> List[str]:
    path = args.get("path")
    if tool == "patch_script" and category in ("search_failed", "ambiguous_match"):
        return [f"For {path or 'this script'}, use get_script first to see the exact current content"]

    if tool in ("create_script", "create_instance"):
        if category == "parent_error":
            parent = args.get("parent") or (path.rsplit(".", 1)[0] if isinstance(path, str) and "." in path else None)
            if parent:
                return [f"First verify {parent} exists using list_children on its parent"]
        elif category == "already_exists":
            target = path or f"{args.get('parent', '')}.{args.get('name', '')}"
            return [f"Use get_instance('{target}') to inspect the existing item"]

    if tool == "set_instance_properties" and category in ("property_error", "type_error"):
        return [f"Use get_instance('{path or 'target'}') to see all available properties and their current values"]
    return []


class ErrorAnalyzer:
    """Classifies tool failures and tracks them per task."""

    def __init__(
        self,
        settings: Optional[ErrorAnalysisSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or ErrorAnalysisSettings()
        self._clock = clock
        self.task_id: Optional[str] = None
        self.history: List[_ErrorRecord] = []
        self.recovery_attempts: Dict[str, Counter] = {}
        self._offered: Optional[Tuple[str, RecoveryOption]] = None

    # ========== Task boundaries ==========

    def on_new_task(self, task_id: Optional[str]) -> None:
        self.task_id = task_id
        self.prune_stale_errors()
        self.reset_recovery_attempts()

    def clear_history(self) -> None:
        self.history = []
        self.reset_recovery_attempts()

    def reset_recovery_attempts(self) -> None:
        self.recovery_attempts = {}
        self._offered = None

    def prune_stale_errors(self) -> None:
        now = self._clock()
        self.history = [r for r in self.history if now - r.timestamp <= self.settings.max_error_age_seconds]

    # ========== Classification ==========

    def classify(self, tool: str, args: Mapping[str, Any], error: str) -> ErrorAnalysis:
        """Categorize one failure and record it for loop detection."""
        category, severity, suggestions = match_category(error or "")
        analysis = ErrorAnalysis(
            tool=tool,
            error=error or "",
            category=category,
            severity=severity,
            suggestions=list(suggestions),
            contextual=contextual_suggestions(tool, args, category),
            timestamp=self._clock(),
        )
        self.history.append(_ErrorRecord(category, tool, analysis.timestamp, self.task_id))
        if len(self.history) > self.settings.history_size:
            self.history = self.history[-self.settings.history_size:]

        LOGGER.debug(f"Classified {tool} error as {category} ({severity}): {analysis.error[:80]}")
        return analysis

    def record_tool_use(self, tool: str) -> None:
        """Count an offered recovery strategy as attempted once the agent uses its tool."""
        if self._offered is None:
            return
        category, option = self._offered
        if option.tool == tool:
            self.record_recovery_attempt(category, option.strategy)
            self._offered = None

    def record_recovery_attempt(self, category: str, strategy: str) -> None:
        self.recovery_attempts.setdefault(category, Counter())[strategy] += 1

    # ========== Pattern detection ==========

    def detect_error_loop(self) -> Optional[LoopDetection]:
        """Same category or same tool failing repeatedly in the current task."""
        now = self._clock()
        relevant = [
            r
            for r in self.history
            if (self.task_id is None or r.task_id == self.task_id)
            and now - r.timestamp <= self.settings.max_error_age_seconds
        ]
        threshold = self.settings.loop_threshold
        if len(relevant) < threshold:
            return None

        window = relevant[-self.settings.loop_window:]
        category, count = Counter(r.category for r in window).most_common(1)[0]
        if count >= threshold:
            return LoopDetection(
                kind="category",
                subject=category,
                count=count,
                message=(
                    f"ERROR LOOP DETECTED: {count} '{category}' errors in a row. "
                    "The current approach is not working. Consider: 1) Re-reading the target first, "
                    "2) Trying a completely different approach, 3) Asking the user for clarification."
                ),
            )

        tool, count = Counter(r.tool for r in window).most_common(1)[0]
        if count >= threshold:
            return LoopDetection(
                kind="tool",
                subject=tool,
                count=count,
                message=(
                    f"TOOL LOOP DETECTED: {tool} has failed {count} times recently. "
                    "Stop using this tool and try an alternative approach."
                ),
            )
        return None

    def adaptive_recovery(self, analysis: ErrorAnalysis) -> RecoveryPlan:
        """Recovery options for this failure, skipping strategies already exhausted."""
        loop = self.detect_error_loop()
        if loop is not None:
            return RecoveryPlan(escalated=True, message=loop.message, requires_user_input=True)

        strategies = RECOVERY_STRATEGIES.get(analysis.category, ())
        attempts = self.recovery_attempts.get(analysis.category, Counter())
        options = [
            RecoveryOption(s.strategy, s.tool, s.message, attempts[s.strategy])
            for s in strategies
            if attempts[s.strategy] < self.settings.max_strategy_attempts
        ]

        if strategies and not options:
            return RecoveryPlan(
                escalated=True,
                message=(
                    f"ESCALATION: All {len(strategies)} recovery strategies for '{analysis.category}' "
                    "have been attempted.\nConsider:\n"
                    "  1. Ask the user for clarification\n"
                    "  2. Try a completely different approach\n"
                    "  3. Skip this step and continue with other tasks"
                ),
                requires_user_input=True,
            )

        # Stable sort keeps declaration order among equally tried options
        options.sort(key=lambda o: o.attempts)
        return RecoveryPlan(
            escalated=False,
            message=f"Recovery options ({len(options)}/{len(strategies)} available)",
            options=options,
        )

    # ========== Formatting ==========

    def format_for_llm(self, analysis: ErrorAnalysis) -> str:
        """Enhanced error text plus the loop warning or the next recommended step."""
        parts = [analysis.enhanced_message(self.settings.max_suggestions)]

        recovery = self.adaptive_recovery(analysis)
        if recovery.escalated:
            LOGGER.warning(f"Recovery escalated for {analysis.tool}: {recovery.message.splitlines()[0]}")
            parts.append(recovery.message)
            self._offered = None
        elif recovery.recommended is not None and recovery.recommended.tool:
            parts.append(f"Recommended: Use {recovery.recommended.tool} before retrying")
            self._offered = (analysis.category, recovery.recommended)

        return "\n\n".join(parts)

    def analyze(self, tool: str, args: Mapping[str, Any], error: str) -> str:
        return self.format_for_llm(self.classify(tool, args, error))

    def format_for_prompt(self) -> Optional[str]:
        loop = self.detect_error_loop()
        return loop.message if loop else None

    def get_statistics(self) -> Dict[str, Any]:
        by_category = Counter(r.category for r in self.history)
        by_tool = Counter(r.tool for r in self.history)

        trend = "stable"
        if len(self.history) >= 10:
            now = self._clock()
            window = self.settings.max_error_age_seconds
            recent = sum(1 for r in self.history if now - r.timestamp <= window)
            earlier = sum(1 for r in self.history if window < now - r.timestamp <= 2 * window)
            if recent > earlier * 1.5:
                trend = "worsening"
            elif recent < earlier * 0.5:
                trend = "improving"

        return {
            "total_errors": len(self.history),
            "by_category": dict(by_category),
            "by_tool": dict(by_tool),
            "trend": trend,
        }
