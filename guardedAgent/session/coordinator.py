"""Session coordinator - owns every per-session component and the task scope.

The loop never reaches into the safety or context modules directly. It calls
the lifecycle hooks here (conversation start/end, new task, task complete)
and the two tool hooks around each call. All mutable session state hangs off
one SessionCoordinator instance; there are no module-level singletons.
"""

from __future__ import annotations

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from langchain_core.messages import BaseMessage

from guardedAgent.config.settings import Settings
from guardedAgent.context.selector import ContextSelector
from guardedAgent.context.working_memory import WorkingMemory
from guardedAgent.memory.decision_memory import DecisionMemory
from guardedAgent.memory.project_knowledge import ProjectKnowledge
from guardedAgent.memory.store import DocumentStore
from guardedAgent.safety.circuit_breaker import CircuitBreaker, FailureOutcome
from guardedAgent.safety.error_analyzer import ErrorAnalyzer
from guardedAgent.safety.predictor import ErrorPredictor
from guardedAgent.safety.resilience import ToolResilience
from guardedAgent.safety.validator import OutputValidator, ValidationResult, format_for_llm
from guardedAgent.tools.backend import ToolBackend
from guardedAgent.tools.schema import ToolCall, ToolKind, ToolResult
from guardedAgent.utils.logging_utils import log_blocked

from .task_analysis import TaskAnalysis, analyze_task
from .task_planner import REFLECTION_PROMPT, TaskPlanner

LOGGER = logging.getLogger(__name__)

USER_DENIED = "User denied this operation"
MODIFYING_TOOLS = frozenset({ToolKind.PATCH_SCRIPT, ToolKind.EDIT_SCRIPT, ToolKind.CREATE_SCRIPT})
INSPECTING_TOOLS = frozenset({ToolKind.GET_INSTANCE, ToolKind.LIST_CHILDREN})


@dataclass
class SessionState:
    """Conversation-scoped state; reset on every conversation start."""

    session_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    task_id: Optional[str] = None
    task_count: int = 0
    current_task: Optional[str] = None
    analysis: Optional[TaskAnalysis] = None
    messages: List[BaseMessage] = field(default_factory=list)
    paused: Optional[Any] = None  # runtime.outcomes.PausedState
    started_at: float = field(default_factory=time.time)


@dataclass
class PreflightDecision:
    """Verdict of before_tool_execution for one call."""

    allowed: bool
    blocked_reason: Optional[str] = None
    blocked_by: Optional[str] = None  # "validation" | "circuit"
    warnings: List[str] = field(default_factory=list)
    validation: Optional[ValidationResult] = None


class SessionCoordinator:
    """Wires the safety, context and memory components for one session.

    Args:
        backend: Tool backend shared by every component that inspects the workspace
        settings: Root application settings
        store: Document store for persisted knowledge (in-memory when omitted)
        clock: Monotonic clock shared by the in-session components
    """

    def __init__(
        self,
        backend: ToolBackend,
        settings: Optional[Settings] = None,
        store: Optional[DocumentStore] = None,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ):
        self.backend = backend
        self.settings = settings or Settings()
        self.store = store if store is not None else DocumentStore(":memory:")
        self._wall_clock = wall_clock

        self.circuit = CircuitBreaker(self.settings.circuit, clock=clock)
        self.validator = OutputValidator(backend, self.settings.validation)
        self.predictor = ErrorPredictor(backend, self.settings.predictor, clock=clock)
        self.errors = ErrorAnalyzer(self.settings.errors, clock=clock)
        self.planner = TaskPlanner(self.settings.planning, clock=clock)
        self.selector = ContextSelector(backend, self.settings.selection, clock=clock)
        self.working_memory = WorkingMemory(self.settings.memory, clock=clock)
        self.resilience = ToolResilience(
            backend,
            self.settings.resilience,
            freshness_lookup=self.selector.get_freshness,
            clock=clock,
        )
        self.knowledge = ProjectKnowledge(backend, self.store, self.settings.persistence, clock=wall_clock)
        self.decisions = DecisionMemory(self.store, self.settings.persistence, clock=wall_clock)

        self.state = SessionState()

        # Optional backend capability: edits made outside the agent's tools
        add_listener = getattr(backend, "add_change_listener", None)
        if add_listener is not None:
            add_listener(self.on_external_modification)

    @property
    def task_id(self) -> Optional[str]:
        return self.state.task_id

    # ========== Lifecycle ==========

    def on_conversation_start(self) -> Dict[str, Any]:
        self.state = SessionState()
        self.selector.clear_cache()
        self.working_memory.clear()
        self.circuit.force_reset()
        self.predictor.reset()
        self.errors.clear_history()
        self.planner.reset_session()
        self.resilience.clear_stale()

        self.knowledge.load()
        validation = self.knowledge.validate_all()
        self.decisions.load()
        self.decisions.decay_old_patterns()

        LOGGER.info(
            f"Conversation started (session={self.state.session_id[:8]}, "
            f"knowledge valid={validation['valid']}, stale={validation['stale']})"
        )
        return {"session_id": self.state.session_id, "knowledge": validation}

    def on_new_task(self, message: str) -> TaskAnalysis:
        state = self.state
        state.task_count += 1
        state.task_id = f"{int(self._wall_clock())}_{state.task_count}"
        state.current_task = message
        state.paused = None

        self.circuit.force_reset()
        self.predictor.mark_all_stale()
        self.errors.on_new_task(state.task_id)
        self.selector.reset()
        self.resilience.clear_stale()

        self.working_memory.archive_current_goal()
        analysis = analyze_task(message)
        state.analysis = analysis
        self.working_memory.set_goal(message, analysis.to_dict())
        self.decisions.start_sequence(message, analysis.complexity, analysis.capabilities)
        self.planner.on_new_task(message, analysis)

        LOGGER.info(
            f"New task {state.task_id}: complexity={analysis.complexity}, "
            f"capabilities={analysis.capabilities or '-'}"
        )
        return analysis

    def on_task_complete(self, success: bool, summary: str = "") -> None:
        self.decisions.end_sequence(success, summary)
        self.planner.on_task_complete(success, summary, self.state.current_task)
        status = "completed" if success else "failed"
        self.working_memory.add("decision", f"Task {status}: {summary[:100]}")
        # task_id is kept so a late resume can still be recognized as stale
        LOGGER.info(f"Task {self.state.task_id} {status}")

    def on_conversation_end(self) -> None:
        self.knowledge.save()
        self.decisions.save()
        self.working_memory.clear()
        self.predictor.reset()
        self.state.paused = None
        LOGGER.info(f"Conversation ended (session={self.state.session_id[:8]}, tasks={self.state.task_count})")

    def on_external_modification(self, path: str) -> None:
        """A script changed outside the agent's tools; earlier reads of it are stale."""
        self.selector.record_modified(path, by_agent=False)
        self.predictor.record_external_modification(path)
        self.resilience.mark_stale(path)
        invalidated = self.knowledge.cascade_invalidation(path)
        LOGGER.info(f"External modification of {path} ({invalidated} knowledge entries invalidated)")

    # ========== Tool hooks ==========

    def before_tool_execution(self, call: ToolCall) -> PreflightDecision:
        """Validate, gate and risk-assess one call before it reaches the backend."""
        validation = self.validator.validate(call)
        if not validation.valid:
            log_blocked(LOGGER, call.name, "validation", f"{len(validation.critical)} critical issue(s)")
            self.decisions.record_tool(call.name, False, "validation failed")
            return PreflightDecision(
                allowed=False,
                blocked_reason=format_for_llm(validation),
                blocked_by="validation",
                validation=validation,
            )

        allowed, circuit_message = self.circuit.can_tool_proceed(call.name)
        if not allowed:
            log_blocked(LOGGER, call.name, "circuit breaker", circuit_message or "")
            return PreflightDecision(
                allowed=False,
                blocked_reason=circuit_message or "Circuit breaker activated - too many consecutive failures",
                blocked_by="circuit",
                validation=validation,
            )

        warnings: List[str] = []
        if circuit_message:
            warnings.append(circuit_message)
        if validation.warnings:
            warnings.extend(f"{issue.field}: {issue.message}" for issue in validation.warnings)

        assessment = self.predictor.assess(call)
        if assessment.should_warn:
            risk_text = self.predictor.format_warnings(assessment)
            if risk_text:
                warnings.append(risk_text)

        return PreflightDecision(allowed=True, warnings=warnings, validation=validation)

    def after_tool_execution(self, call: ToolCall, result: ToolResult) -> Optional[FailureOutcome]:
        """Fold one tool outcome into every tracker; returns the circuit verdict on failure."""
        outcome: Optional[FailureOutcome] = None
        kind = call.kind
        path = call.target_path

        if result.status == "pending":
            # Verdict comes later, from the approved operation
            self.circuit.release_trial()
            return None

        blocked = bool(result.metadata.get("blocked"))
        if not blocked:
            self.errors.record_tool_use(call.name)
        self.planner.record_tool_call(call.name, result.status != "error")

        if result.status in ("ok", "feedback"):
            self.circuit.record_success()
        elif not blocked and result.error != USER_DENIED:
            outcome = self.circuit.record_failure(call.name, result.error or "")
            self.predictor.record_failure(call.name, call.args, result.error or "")
            notice = outcome.message if outcome.halt else outcome.warning
            if notice:
                result.metadata.setdefault("warnings", []).append(notice)
            result.metadata["recovery"] = self.errors.analyze(call.name, call.args, result.error or "")

        if not result.metadata.get("validation_failed"):
            self.decisions.record_tool(call.name, result.status != "error", self._summarize(result))

        mark = "✗" if result.status == "error" else "✓"
        self.working_memory.add(
            "tool_result",
            f"{mark} {call.name}: {path or ''}".rstrip(),
            metadata={"status": result.status},
        )

        if result.status != "ok" or path is None:
            return outcome

        if kind in MODIFYING_TOOLS:
            self.selector.record_modified(path)
            self.predictor.record_modified(path)
            invalidated = self.knowledge.cascade_invalidation(path)
            if invalidated:
                LOGGER.info(f"{invalidated} knowledge entries invalidated by change to {path}")
        elif kind == ToolKind.GET_SCRIPT:
            self.selector.record_read(path)
            self.predictor.record_read(path)
            line_count = result.data.get("line_count", 0)
            self.working_memory.add("script_read", f"Read {path} ({line_count} lines)", metadata={"path": path})
        elif kind in INSPECTING_TOOLS:
            self.predictor.record_read(path)

        return outcome

    @staticmethod
    def _summarize(result: ToolResult) -> str:
        if result.status == "error":
            return (result.error or "")[:100]
        if result.status == "feedback":
            return "awaiting feedback"
        return str(result.data.get("path", ""))[:100]

    # ========== Prompt ==========

    def build_context_prompt(self) -> str:
        """Dynamic context block appended to the system prompt each iteration."""
        sections: List[str] = []

        knowledge = self.knowledge.format_for_prompt()
        if knowledge:
            sections.append(knowledge)

        if self.state.current_task:
            capabilities = self.state.analysis.capabilities if self.state.analysis else []
            experience = self.decisions.format_for_prompt(self.state.current_task, capabilities)
            if experience:
                sections.append(experience)

            selection = self.selector.select(self.state.current_task, capabilities)
            relevant = self.selector.format_for_prompt(selection)
            if relevant:
                sections.append(relevant)

        plan = self.planner.format_plan()
        if plan:
            sections.append(plan)
        history = self.planner.format_session_history()
        if history:
            sections.append(history)

        memory = self.working_memory.format_for_prompt()
        if memory:
            sections.append(memory)

        error_loop = self.errors.format_for_prompt()
        if error_loop:
            sections.append(error_loop)

        circuit = self.circuit.format_for_prompt()
        if circuit:
            sections.append(circuit)

        health = self.resilience.check_health()
        if not health.healthy and health.warnings:
            sections.append("TOOL HEALTH:\n" + "\n".join(f"  {warning}" for warning in health.warnings))

        if self.planner.is_reflection_due():
            sections.append(REFLECTION_PROMPT)

        return "\n\n".join(sections)

    def get_status(self) -> Dict[str, Any]:
        """Snapshot for the CLI /status command."""
        state = self.state
        return {
            "session_id": state.session_id,
            "task_id": state.task_id,
            "task_count": state.task_count,
            "message_count": len(state.messages),
            "paused": state.paused is not None,
            "complexity": state.analysis.complexity if state.analysis else None,
            "circuit": self.circuit.get_status(),
            "planning": self.planner.get_status(),
            "errors": self.errors.get_statistics(),
            "health": self.resilience.health_summary(),
            "memory": self.working_memory.get_statistics(),
            "knowledge": self.knowledge.get_session_info(),
            "patterns": self.decisions.get_statistics(),
        }
