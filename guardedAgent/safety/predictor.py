"""Pre-flight risk assessment.

Unlike the validator, the predictor never blocks: it looks at what the agent
has read and modified this session and warns about calls that are likely to
fail (patching a script it never read, reusing a stale read, repeating a
call that just failed).
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional

from guardedAgent.config.settings import PredictorSettings
from guardedAgent.tools.backend import ToolBackend
from guardedAgent.tools.schema import ToolCall, ToolKind

LOGGER = logging.getLogger(__name__)

RiskLevel = Literal["low", "medium", "high"]


@dataclass
class Risk:
    level: RiskLevel
    reason: str
    mitigation: str = ""
    field: str = "general"


@dataclass
class RiskAssessment:
    risks: List[Risk] = field(default_factory=list)

    @property
    def overall(self) -> RiskLevel:
        if any(risk.level == "high" for risk in self.risks):
            return "high"
        return "medium" if self.risks else "low"

    @property
    def should_warn(self) -> bool:
        return bool(self.risks)


@dataclass
class _Failure:
    tool: str
    path: Optional[str]
    error: str
    timestamp: float


class ErrorPredictor:
    """Tracks read/modify times per path and predicts likely failures."""

    def __init__(
        self,
        backend: Optional[ToolBackend] = None,
        settings: Optional[PredictorSettings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.settings = settings or PredictorSettings()
        self._clock = clock
        self.read_times: Dict[str, float] = {}
        self.modify_times: Dict[str, float] = {}
        self.recent_failures: List[_Failure] = []

    # ========== Tracking ==========

    def record_read(self, path: str) -> None:
        self.read_times[path] = self._clock()

    def record_modified(self, path: str) -> None:
        now = self._clock()
        self.modify_times[path] = now
        # The agent wrote it, so it knows the content
        self.read_times[path] = now

    def record_external_modification(self, path: str) -> None:
        """A change the agent did not make itself (e.g. the user edited the script)."""
        self.modify_times[path] = self._clock()

    def record_failure(self, tool_name: str, args: Mapping[str, Any], error: str) -> None:
        now = self._clock()
        path = args.get("path")
        self.recent_failures.append(
            _Failure(tool=tool_name, path=path if isinstance(path, str) else None, error=error or "", timestamp=now)
        )
        cutoff = now - self.settings.failure_window_seconds
        self.recent_failures = [failure for failure in self.recent_failures if failure.timestamp > cutoff]

    def mark_all_stale(self) -> None:
        """Age every read past the freshness threshold (called on a new task)."""
        stale_time = self._clock() - self.settings.freshness_threshold_seconds - 60
        for path in self.read_times:
            self.read_times[path] = stale_time

    def reset(self) -> None:
        self.read_times = {}
        self.modify_times = {}
        self.recent_failures = []

    # ========== Assessment ==========

    def assess(self, call: ToolCall) -> RiskAssessment:
        assessment = RiskAssessment()
        args = call.args
        kind = call.kind

        if kind == ToolKind.PATCH_SCRIPT:
            self._assess_patch(args, assessment.risks)
        elif kind == ToolKind.EDIT_SCRIPT:
            self._assess_edit(args, assessment.risks)
        elif kind in (ToolKind.CREATE_SCRIPT, ToolKind.CREATE_INSTANCE):
            self._assess_create(kind, args, assessment.risks)
        elif kind == ToolKind.SET_INSTANCE_PROPERTIES:
            path = args.get("path")
            if isinstance(path, str) and path not in self.read_times:
                assessment.risks.append(
                    Risk(
                        "medium",
                        "Instance not inspected - property names may be incorrect",
                        "Use get_instance to see available properties",
                        "properties",
                    )
                )
        elif kind == ToolKind.DELETE_INSTANCE:
            assessment.risks.append(
                Risk("high", "Delete operations cannot be undone", "Ensure this is the correct instance", "path")
            )

        self._check_failure_patterns(call, assessment.risks)
        return assessment

    def format_warnings(self, assessment: RiskAssessment) -> Optional[str]:
        if not assessment.should_warn:
            return None

        parts = ["PRE-FLIGHT RISK ASSESSMENT:"]
        high = [risk for risk in assessment.risks if risk.level == "high"]
        medium = [risk for risk in assessment.risks if risk.level != "high"]
        if high:
            parts.append("HIGH RISKS:")
            for risk in high:
                parts.append(f"  - {risk.reason}")
                if risk.mitigation:
                    parts.append(f"    > {risk.mitigation}")
        if medium:
            parts.append("MEDIUM RISKS:")
            parts.extend(f"  - {risk.reason}" for risk in medium)
        return "\n".join(parts)

    def _assess_patch(self, args: Mapping[str, Any], risks: List[Risk]) -> None:
        path = args.get("path")
        if not isinstance(path, str):
            return

        now = self._clock()
        last_read = self.read_times.get(path)
        if last_read is None:
            risks.append(
                Risk(
                    "high",
                    "Script not read in this session - content unknown",
                    "Use get_script first to see current content",
                    "path",
                )
            )
        elif now - last_read > self.settings.freshness_threshold_seconds:
            risks.append(
                Risk(
                    "medium",
                    f"Script read {now - last_read:.0f} seconds ago - content may have changed",
                    "Consider re-reading with get_script to verify content",
                    "path",
                )
            )

        last_modified = self.modify_times.get(path)
        if last_modified is not None and last_read is not None and last_modified > last_read:
            risks.append(
                Risk(
                    "high",
                    "Script was modified after you last read it",
                    "Re-read the script - your search_content may be outdated",
                    "search_content",
                )
            )

        search = args.get("search_content")
        if isinstance(search, str) and search:
            if len(search) < self.settings.min_search_length:
                risks.append(
                    Risk(
                        "medium",
                        "search_content is very short - may match multiple locations",
                        "Include more context lines to make the match unique",
                        "search_content",
                    )
                )
            if search != search.strip():
                risks.append(
                    Risk(
                        "medium",
                        "search_content has leading/trailing whitespace - may cause match failure",
                        "Trim whitespace or ensure it exactly matches the script",
                        "search_content",
                    )
                )

    def _assess_edit(self, args: Mapping[str, Any], risks: List[Risk]) -> None:
        path = args.get("path")
        if not isinstance(path, str):
            return

        if path not in self.read_times:
            risks.append(
                Risk(
                    "high",
                    "Replacing entire script without reading it first",
                    "Use get_script to understand current content before replacing",
                    "path",
                )
            )
        else:
            last_modified = self.modify_times.get(path)
            if last_modified is not None and last_modified > self.read_times[path]:
                risks.append(
                    Risk("high", "Script was modified after you last read it", "Re-read it with get_script", "path")
                )

        source = args.get("new_source")
        if isinstance(source, str) and len(source) < 50:
            risks.append(
                Risk(
                    "medium",
                    "New script content is very short - may be incomplete",
                    "Verify this is the complete intended script",
                    "new_source",
                )
            )

    def _assess_create(self, kind: ToolKind, args: Mapping[str, Any], risks: List[Risk]) -> None:
        if self.backend is None:
            return

        if kind == ToolKind.CREATE_SCRIPT:
            target = args.get("path")
        else:
            parent, name = args.get("parent"), args.get("name")
            target = f"{parent}.{name}" if isinstance(parent, str) and isinstance(name, str) else None

        if isinstance(target, str) and self.backend.path_exists(target):
            risks.append(
                Risk(
                    "medium",
                    f"Something already exists at {target}",
                    "Use a different name or modify the existing object",
                    "path" if kind == ToolKind.CREATE_SCRIPT else "name",
                )
            )

    def _check_failure_patterns(self, call: ToolCall, risks: List[Risk]) -> None:
        path = call.args.get("path")
        if not isinstance(path, str):
            return

        cutoff = self._clock() - self.settings.failure_window_seconds
        similar = [
            failure
            for failure in self.recent_failures
            if failure.tool == call.name and failure.path == path and failure.timestamp > cutoff
        ]
        if len(similar) >= self.settings.similar_failure_count:
            last_error = similar[-1].error or "unknown"
            risks.append(
                Risk(
                    "high",
                    f"Similar {call.name} operation failed {len(similar)} times recently",
                    f"Try a different approach. Last error: {last_error[:80]}",
                )
            )
