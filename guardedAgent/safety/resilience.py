"""Self-healing wrapper around Tool Backend calls.

Sits between the loop and the backend:
1. Retries transient failures (timeouts, connection drops, rate limits) with backoff
2. Detects stale state and tells the agent to re-read instead of retrying blindly
3. Tracks health over a rolling window (success rate per tool)
4. Sanitizes tool output (size limits, null bytes)
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from guardedAgent.config.settings import ResilienceSettings
from guardedAgent.context.selector import Freshness
from guardedAgent.tools.backend import ToolBackend
from guardedAgent.tools.schema import ToolKind, ToolResult

LOGGER = logging.getLogger(__name__)

RETRYABLE_PATTERNS = (
    "timeout",
    "timed out",
    "connection",
    "temporarily unavailable",
    "rate limit",
    "try again",
)

STALE_SUGGESTION = (
    "This script/instance may have changed. Re-read with get_script or get_instance before retrying."
)


@dataclass
class ErrorClassification:
    retryable: bool
    reason: str
    strategy: Optional[str] = None  # simple_retry | refresh_and_retry | suggest_fix


def classify_error(error: Optional[str]) -> ErrorClassification:
    """Decide whether a tool error is worth retrying."""
    if not error:
        return ErrorClassification(retryable=False, reason="unknown")

    lowered = error.lower()
    for pattern in RETRYABLE_PATTERNS:
        if pattern in lowered:
            return ErrorClassification(retryable=True, reason=pattern, strategy="simple_retry")

    # Deterministic state errors: surfaced with a hint, the agent re-reads first
    if "script not found" in lowered or "instance not found" in lowered:
        return ErrorClassification(retryable=False, reason="path_not_found", strategy="refresh_and_retry")
    if "search content not found" in lowered or "exact match" in lowered:
        return ErrorClassification(retryable=False, reason="stale_content", strategy="refresh_and_retry")
    if "property" in lowered and "cannot" in lowered:
        return ErrorClassification(retryable=False, reason="property_error", strategy="suggest_fix")

    return ErrorClassification(retryable=False, reason="unknown")


STRATEGY_HINTS = {
    "refresh_and_retry": "The target may not match what you expect. Re-read it (get_script / list_children) before retrying.",
    "suggest_fix": "Check the property name and value type for this class before retrying.",
}


@dataclass
class ToolStats:
    total: int = 0
    successful: int = 0
    failed: int = 0
    recovered: int = 0


@dataclass
class HealthReport:
    healthy: bool
    error_rate: float
    warnings: List[str] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)


@dataclass
class _Outcome:
    tool: str
    success: bool
    recovered: bool
    timestamp: float


class ToolResilience:
    """Retry, stale detection and health tracking for one session."""

    def __init__(
        self,
        backend: ToolBackend,
        settings: Optional[ResilienceSettings] = None,
        freshness_lookup: Optional[Callable[[str], Freshness]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.settings = settings or ResilienceSettings()
        self.freshness_lookup = freshness_lookup
        self._sleep = sleep
        self._clock = clock
        self.stale_paths: Dict[str, float] = {}
        self.reset_metrics()

    # ========== Execution ==========

    async def execute_resilient(self, tool_name: str, args: Dict[str, Any]) -> ToolResult:
        """Execute one tool with retry; never raises for tool failures."""
        start = self._clock()
        attempts = 0
        last_error: Optional[str] = None
        result: Optional[ToolResult] = None
        max_attempts = self.settings.max_retries + 1

        for attempt in range(1, max_attempts + 1):
            attempts = attempt
            try:
                raw = await asyncio.wait_for(
                    self.backend.execute(tool_name, dict(args)),
                    timeout=self.settings.tool_timeout_seconds,
                )
            except asyncio.TimeoutError:
                last_error = f"Tool timeout after {self.settings.tool_timeout_seconds:.0f}s"
                LOGGER.warning(f"{tool_name} attempt {attempt}/{max_attempts}: {last_error}")
                result = None
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                LOGGER.warning(f"{tool_name} attempt {attempt}/{max_attempts} raised {last_error}")
                result = None
            else:
                result = ToolResult.from_backend(raw)
                if result.status != "error":
                    break
                last_error = result.error

                classification = classify_error(last_error)
                if classification.strategy == "refresh_and_retry":
                    stale_hint = self._detect_stale_state(args)
                    if stale_hint:
                        self.stale_paths.pop(args.get("path"), None)
                        result.error = f"{result.error}\n\n{stale_hint}"
                        result.metadata["suggestion"] = stale_hint
                        break
                if not classification.retryable:
                    hint = STRATEGY_HINTS.get(classification.strategy or "")
                    if hint:
                        result.metadata["suggestion"] = hint
                    break

            if attempt < max_attempts:
                await self._sleep(self._backoff_seconds(attempt))

        if result is None:
            result = ToolResult.failure(last_error or "Tool execution failed after retries")

        duration = self._clock() - start
        recovered = attempts > 1 and result.status != "error"
        if attempts > 1:
            self.metrics["retried"] += 1

        if result.status == "ok":
            result = self._validate_output(tool_name, result)

        self._record(tool_name, result.status != "error", recovered)

        if recovered:
            result.metadata["resilience"] = {"recovered": True, "attempts": attempts, "duration": round(duration, 3)}
            LOGGER.info(f"{tool_name} recovered after {attempts} attempts")

        if result.status == "error":
            health = self.check_health()
            if not health.healthy and health.warnings:
                result.metadata["health_warning"] = health.warnings[0]

        LOGGER.debug(
            f"{tool_name} completed in {duration:.2f}s (attempts: {attempts}, status: {result.status})"
        )
        return result

    def _backoff_seconds(self, attempt: int) -> float:
        schedule = self.settings.backoff_ms or [1000]
        return schedule[min(attempt - 1, len(schedule) - 1)] / 1000.0

    # ========== Stale state ==========

    def mark_stale(self, path: str) -> None:
        self.stale_paths[path] = self._clock()

    def clear_stale(self) -> None:
        self.stale_paths = {}

    def _detect_stale_state(self, args: Dict[str, Any]) -> Optional[str]:
        path = args.get("path")
        if not isinstance(path, str):
            return None

        flagged_at = self.stale_paths.get(path)
        if flagged_at is not None and self._clock() - flagged_at < self.settings.stale_window_seconds:
            return STALE_SUGGESTION

        if self.freshness_lookup is not None:
            freshness = self.freshness_lookup(path)
            if freshness.modified_after_read:
                self.stale_paths[path] = self._clock()
                return (
                    f"Script was modified after last read ({freshness.seconds_since_read or 0:.0f} seconds ago). "
                    "Use get_script to refresh."
                )
        return None

    # ========== Output validation ==========

    def _validate_output(self, tool_name: str, result: ToolResult) -> ToolResult:
        data = {k: (v.replace("\x00", "") if isinstance(v, str) else v) for k, v in result.data.items()}

        size = len(json.dumps(data, default=str, ensure_ascii=False))
        if size > self.settings.max_output_size:
            LOGGER.warning(f"{tool_name} output too large ({size} chars), truncating")
            for key in ("source", "content"):
                value = data.get(key)
                if isinstance(value, str) and len(value) > self.settings.max_field_size:
                    data[key] = value[: self.settings.max_field_size] + "\n... [truncated]"
                    data["truncated"] = True

        kind = ToolKind.parse(tool_name)
        if kind == ToolKind.GET_SCRIPT and data.get("source") is None:
            return ToolResult.failure("Script source is empty or missing")
        if kind == ToolKind.GET_INSTANCE and data.get("properties") is None:
            return ToolResult.failure("Instance properties missing")

        result.data = data
        return result

    # ========== Health ==========

    def reset_metrics(self) -> None:
        self.metrics: Dict[str, int] = {
            "total": 0,
            "successful": 0,
            "failed": 0,
            "retried": 0,
            "auto_recovered": 0,
        }
        self._recent: Deque[_Outcome] = deque(maxlen=self.settings.health_window)
        self.tool_stats: Dict[str, ToolStats] = {}

    def _record(self, tool_name: str, success: bool, recovered: bool) -> None:
        self.metrics["total"] += 1
        self.metrics["successful" if success else "failed"] += 1
        if recovered:
            self.metrics["auto_recovered"] += 1

        self._recent.append(_Outcome(tool=tool_name, success=success, recovered=recovered, timestamp=self._clock()))

        stats = self.tool_stats.setdefault(tool_name, ToolStats())
        stats.total += 1
        if success:
            stats.successful += 1
        else:
            stats.failed += 1
        if recovered:
            stats.recovered += 1

    def check_health(self) -> HealthReport:
        warnings: List[str] = []
        recent = list(self._recent)
        recent_errors = sum(1 for outcome in recent if not outcome.success)
        error_rate = recent_errors / len(recent) if recent else 0.0

        healthy = error_rate <= self.settings.unhealthy_error_rate
        if not healthy:
            warnings.append(
                f"High error rate: {error_rate * 100:.1f}% ({recent_errors}/{len(recent)} recent calls failed)"
            )

        for name, stats in self.tool_stats.items():
            if stats.total >= self.settings.tool_min_calls:
                tool_error_rate = stats.failed / stats.total
                if tool_error_rate > self.settings.tool_failure_rate:
                    warnings.append(
                        f"Tool '{name}' has high failure rate: {tool_error_rate * 100:.1f}% "
                        f"({stats.failed}/{stats.total})"
                    )

        return HealthReport(healthy=healthy, error_rate=error_rate, warnings=warnings, metrics=self.health_summary())

    def health_summary(self) -> Dict[str, Any]:
        """Success-rate signal for observability and UI, independent of the circuit."""
        total = self.metrics["total"]
        failed = self.metrics["failed"]
        recent = list(self._recent)
        recent_ok = sum(1 for outcome in recent if outcome.success)
        per_tool: Dict[str, float] = {}
        for name, stats in self.tool_stats.items():
            per_tool[name] = round(100.0 * stats.successful / stats.total, 1) if stats.total else 100.0
        return {
            **self.metrics,
            "success_rate": round(100.0 * self.metrics["successful"] / total, 1) if total else 100.0,
            "recent_success_rate": round(100.0 * recent_ok / len(recent), 1) if recent else 100.0,
            "recovery_rate": round(100.0 * self.metrics["auto_recovered"] / failed, 1) if failed else 0.0,
            "per_tool_success_rate": per_tool,
        }
