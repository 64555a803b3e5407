"""Circuit breaker: hard safety boundary against failure spirals.

- closed: normal operation, consecutive failures counted
- open: tool execution blocked after failure_threshold consecutive failures
- half_open: after the cooldown exactly one trial call is let through;
  its success closes the circuit, its failure opens it again
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Literal, Optional, Tuple

from guardedAgent.config.settings import CircuitBreakerSettings

LOGGER = logging.getLogger(__name__)

CircuitMode = Literal["closed", "open", "half_open"]


@dataclass
class FailureInfo:
    tool: str
    error: str
    timestamp: float


@dataclass
class CircuitState:
    mode: CircuitMode = "closed"
    consecutive_failures: int = 0
    opened_at: Optional[float] = None
    total_trips: int = 0
    last_failure: Optional[FailureInfo] = None
    trial_in_flight: bool = False


@dataclass
class FailureOutcome:
    """What record_failure tells the caller."""

    halt: bool
    message: Optional[str] = None
    warning: Optional[str] = None


@dataclass
class _ToolCircuit:
    failures: int = 0
    last_error: str = ""


class CircuitBreaker:
    """Session-wide circuit breaker with optional per-tool counters."""

    def __init__(self, settings: Optional[CircuitBreakerSettings] = None, clock: Callable[[], float] = time.monotonic):
        self.settings = settings or CircuitBreakerSettings()
        self._clock = clock
        self.state = CircuitState()
        self._tool_circuits: Dict[str, _ToolCircuit] = {}

    @property
    def mode(self) -> CircuitMode:
        return self.state.mode

    def record_failure(self, tool_name: str, error: str) -> FailureOutcome:
        state = self.state
        state.consecutive_failures += 1
        state.last_failure = FailureInfo(tool=tool_name, error=error or "unknown", timestamp=self._clock())

        if self.settings.track_per_tool:
            circuit = self._tool_circuits.setdefault(tool_name, _ToolCircuit())
            circuit.failures += 1
            circuit.last_error = error or ""

        if state.mode == "half_open":
            self._open()
            LOGGER.warning(f"Circuit re-opened: trial call {tool_name} failed")
            return FailureOutcome(halt=True, message=self._halt_message())

        if state.mode == "closed" and state.consecutive_failures >= self.settings.failure_threshold:
            self._open()
            LOGGER.warning(
                f"Circuit OPENED after {state.consecutive_failures} failures (trip #{state.total_trips})"
            )
            return FailureOutcome(halt=True, message=self._halt_message())

        if state.mode == "open":
            return FailureOutcome(halt=True, message=self._halt_message())

        if state.consecutive_failures == self.settings.warning_threshold:
            return FailureOutcome(
                halt=False,
                warning=(
                    f"Warning: {state.consecutive_failures} failures so far. "
                    f"Circuit breaker will activate at {self.settings.failure_threshold} failures."
                ),
            )

        return FailureOutcome(halt=False)

    def record_success(self) -> None:
        state = self.state
        if self.settings.reset_on_success:
            state.consecutive_failures = 0

        if state.mode == "half_open":
            state.mode = "closed"
            state.opened_at = None
            state.trial_in_flight = False
            state.consecutive_failures = 0
            LOGGER.info("Circuit CLOSED - recovery successful")

        if self.settings.track_per_tool:
            self._tool_circuits = {}

    def release_trial(self) -> None:
        """The half-open trial ended without a verdict (e.g. queued for approval)."""
        if self.state.mode == "half_open":
            self.state.trial_in_flight = False

    def can_proceed(self) -> Tuple[bool, Optional[str]]:
        """Gate one tool call; returns (allowed, warning-or-reason)."""
        state = self.state

        if state.mode == "closed":
            if state.consecutive_failures >= self.settings.warning_threshold:
                return True, (
                    f"Circuit breaker: {state.consecutive_failures}/{self.settings.failure_threshold} "
                    "failures. Consider changing approach."
                )
            return True, None

        if state.mode == "open":
            elapsed = self._clock() - (state.opened_at or 0.0)
            if elapsed >= self.settings.cooldown_seconds:
                state.mode = "half_open"
                state.trial_in_flight = True
                LOGGER.info("Circuit HALF-OPEN after cooldown")
                return True, "Circuit half-open: testing with next operation"
            return False, (
                f"Circuit open. Waiting {self.settings.cooldown_seconds - elapsed:.0f} more seconds "
                "or provide input to continue."
            )

        # half_open: only the single trial call may run
        if state.trial_in_flight:
            return False, "Circuit half-open: trial operation already in progress"
        state.trial_in_flight = True
        return True, "Circuit half-open: this is a test operation"

    def can_tool_proceed(self, tool_name: str) -> Tuple[bool, Optional[str]]:
        """Per-tool gate; falls back to the global circuit when tracking is off."""
        if not self.settings.track_per_tool:
            return self.can_proceed()

        allowed, message = self.can_proceed()
        if not allowed:
            return allowed, message

        circuit = self._tool_circuits.get(tool_name)
        if circuit and circuit.failures >= self.settings.failure_threshold:
            return False, (
                f"Tool '{tool_name}' circuit is open after {circuit.failures} failures. "
                "Try a different approach."
            )
        return True, message

    def force_reset(self) -> None:
        was_open = self.state.mode != "closed"
        total_trips = self.state.total_trips
        self.state = CircuitState(total_trips=total_trips)
        self._tool_circuits = {}
        if was_open:
            LOGGER.info("Circuit force reset")

    def get_status(self) -> Dict[str, Any]:
        state = self.state
        time_until_half_open = None
        if state.mode == "open":
            time_until_half_open = max(0.0, self.settings.cooldown_seconds - (self._clock() - (state.opened_at or 0.0)))
        return {
            "mode": state.mode,
            "failures": state.consecutive_failures,
            "failure_threshold": self.settings.failure_threshold,
            "last_failure": state.last_failure,
            "total_trips": state.total_trips,
            "is_open": state.mode == "open",
            "is_half_open": state.mode == "half_open",
            "time_until_half_open": time_until_half_open,
        }

    def format_for_prompt(self) -> Optional[str]:
        state = self.state
        if state.mode == "closed" and state.consecutive_failures == 0:
            return None

        if state.mode == "open":
            parts = ["CIRCUIT BREAKER IS OPEN", f"  Failures: {state.consecutive_failures}"]
            if state.last_failure:
                parts.append(f"  Last error: {state.last_failure.error[:80]}")
            parts.append("  STOP and wait for user guidance before proceeding.")
            return "\n".join(parts)

        if state.mode == "half_open":
            return "CIRCUIT BREAKER HALF-OPEN\n  Next operation is a test. Be extra careful."

        return (
            f"Circuit breaker: {state.consecutive_failures}/{self.settings.failure_threshold} "
            "failures. Consider changing approach."
        )

    def _open(self) -> None:
        self.state.mode = "open"
        self.state.opened_at = self._clock()
        self.state.total_trips += 1
        self.state.trial_in_flight = False

    def _halt_message(self) -> str:
        last_error = self.state.last_failure.error[:150] if self.state.last_failure else "unknown"
        return (
            f"CIRCUIT BREAKER OPEN: {self.state.consecutive_failures} consecutive failures.\n"
            f"Last error: {last_error}\n"
            "The system is pausing for user input to prevent further issues.\n"
            "You can:\n"
            "  1. Provide guidance on what to try differently\n"
            "  2. Ask me to skip this step and continue\n"
            "  3. Reset the conversation to start fresh"
        )
