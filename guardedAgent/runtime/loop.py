"""Agentic loop: plan -> call tools -> observe, until the model is done.

Each iteration asks the model for its next step. Tool calls of one response
form a batch and run strictly in order; every call passes the session
coordinator's pre-flight checks and the resilience layer. A dangerous
operation queued for approval, or a feedback request, suspends the batch
into a PausedState; resume_approval / resume_feedback finish the batch and
continue the loop. An approved operation that applied is read back and
verified before its result is recorded. ToolMessages of a batch are
appended together once the whole batch has a result.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, Dict, List, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from guardedAgent.config.settings import Settings
from guardedAgent.context.compressor import CompressionFallback
from guardedAgent.context.token_tracker import TokenTracker
from guardedAgent.models.provider import ModelProvider
from guardedAgent.session.coordinator import USER_DENIED, SessionCoordinator
from guardedAgent.tools.schema import (
    DANGEROUS_OPERATIONS,
    FEEDBACK_OPERATIONS,
    ToolCall,
    ToolResult,
    tool_schemas,
)
from guardedAgent.utils.error_handler import with_error_boundary
from guardedAgent.utils.logging_utils import (
    log_agent_response,
    log_iteration,
    log_pause,
    log_prompt,
    log_resume,
    log_tool_call,
    log_tool_result,
    log_user_message,
)
from guardedAgent.utils.message_utils import clean_message_history, sanitize_payload, stringify_content

from .outcomes import AwaitingApproval, AwaitingFeedback, Done, Failed, LoopOutcome, PausedState
from .prompts import build_system_prompt
from .verification import OperationVerifier

LOGGER = logging.getLogger(__name__)

NO_PAUSED_OPERATION = "No paused operation to resume"
STALE_OPERATION = "Operation expired - it was from a different task. Please try again."

FEEDBACK_INTERPRETATIONS = {
    True: "User confirmed everything looks correct. You can proceed.",
    False: "User reported a problem. Investigate and fix before proceeding.",
    None: "User provided detailed feedback. Read and respond appropriately.",
}


class AgenticLoop:
    """Drives one session's tasks through the model and the tool backend.

    Args:
        coordinator: Session coordinator owning history and every safety component
        provider: Model provider used for tool-calling and summaries
        settings: Root settings (defaults to the coordinator's)
        token_tracker: Optional token accounting for model responses
    """

    def __init__(
        self,
        coordinator: SessionCoordinator,
        provider: ModelProvider,
        settings: Optional[Settings] = None,
        token_tracker: Optional[TokenTracker] = None,
    ):
        self.coordinator = coordinator
        self.provider = provider
        self.settings = settings or coordinator.settings
        self.token_tracker = token_tracker or TokenTracker(self.settings.provider.model)
        self.compressor = CompressionFallback(self.settings.compression, summarizer=provider.generate_summary)
        self.verifier = OperationVerifier(coordinator.backend, self.settings.verification)
        self.iteration = 0

    @property
    def messages(self) -> List[BaseMessage]:
        return self.coordinator.state.messages

    @property
    def max_iterations(self) -> int:
        return self.settings.governance.max_iterations

    # ========== Entry points ==========

    async def start_task(self, message: str) -> LoopOutcome:
        """Begin a new task with the user's message and run until a terminal or paused outcome."""
        state = self.coordinator.state
        if state.paused is not None:
            LOGGER.info(f"Abandoning paused {state.paused.kind} from task {state.paused.task_id}")

        self.coordinator.on_new_task(message)
        log_user_message(LOGGER, message)

        # A batch abandoned mid-pause leaves tool calls without results
        state.messages = clean_message_history(state.messages)
        state.messages.append(HumanMessage(content=message))
        self.iteration = 0
        return await self.run_iteration()

    async def run_iteration(self) -> LoopOutcome:
        """Iterate until Done, Failed or a pause."""
        return self._finish(await self._run())

    async def resume_approval(self, paused: Optional[PausedState], operation_id: Optional[int], approved: bool) -> LoopOutcome:
        """Answer an AwaitingApproval outcome exactly once."""
        rejection = self._check_resumable(paused, "approval", operation_id)
        if rejection is not None:
            return rejection
        self.coordinator.state.paused = None
        log_resume(LOGGER, "approval", f"operation #{operation_id} {'approved' if approved else 'denied'}")
        return self._finish(await self._resume_approval(paused, approved))

    async def resume_feedback(self, paused: Optional[PausedState], feedback: str, positive: Optional[bool] = None) -> LoopOutcome:
        """Answer an AwaitingFeedback outcome exactly once.

        Args:
            paused: The PausedState carried by the outcome
            feedback: The user's answer as text
            positive: True for "looks right", False for "something is wrong", None for free text
        """
        rejection = self._check_resumable(paused, "feedback", None)
        if rejection is not None:
            return rejection
        self.coordinator.state.paused = None
        log_resume(LOGGER, "feedback", feedback)
        return self._finish(await self._resume_feedback(paused, feedback, positive))

    # ========== Iteration ==========

    @with_error_boundary("agentic_loop", Failed)
    async def _run(self) -> LoopOutcome:
        while True:
            self.iteration += 1
            if self.iteration > self.max_iterations:
                LOGGER.error(f"Iteration cap reached ({self.max_iterations})")
                return Failed(f"Agent exceeded maximum iterations ({self.max_iterations})", fatal=True)

            log_iteration(LOGGER, self.coordinator.task_id, self.iteration, self.max_iterations, len(self.messages))
            await self._compress_if_needed()

            response = await self.provider.invoke(self._prompt_messages(), tool_schemas())
            self.token_tracker.record(response)
            self.messages.append(response)

            if not response.tool_calls:
                text = stringify_content(response.content)
                log_agent_response(LOGGER, text)
                return Done(text)

            calls = [ToolCall.from_langchain(tool_call) for tool_call in response.tool_calls]
            LOGGER.info(f"Model requested {len(calls)} tool call(s): {', '.join(c.name for c in calls)}")
            paused = await self._run_batch(uuid.uuid4().hex, calls, [], 0)
            if paused is not None:
                return paused

    async def _run_batch(
        self,
        batch_id: str,
        calls: List[ToolCall],
        results: List[Dict[str, Any]],
        start: int,
    ) -> Optional[LoopOutcome]:
        """Run calls[start:]; returns a pause outcome or None once every call has a result."""
        for index in range(start, len(calls)):
            call = calls[index]
            result = await self._execute_call(call)
            results.append(self._render(result))

            if result.is_pending and call.kind in DANGEROUS_OPERATIONS:
                paused = self._pause("approval", batch_id, calls, results, index, result)
                log_pause(LOGGER, "approval", f"{call.name} (operation #{result.operation_id})")
                return AwaitingApproval(
                    operation_id=result.operation_id,
                    description=str(result.data.get("description") or call.args.get("explanation") or call.name),
                    payload=dict(call.args),
                    paused=paused,
                    tool_name=call.name,
                )

            if result.awaiting_feedback and call.kind in FEEDBACK_OPERATIONS:
                request = result.feedback_request or {}
                paused = self._pause("feedback", batch_id, calls, results, index, result)
                log_pause(LOGGER, "feedback", str(request.get("question", "")))
                return AwaitingFeedback(
                    question=str(request.get("question", "")),
                    context=str(request.get("context", "")),
                    verification_type=str(request.get("verification_type", "general")),
                    suggestions=list(request.get("suggestions") or []),
                    paused=paused,
                )

        self._append_tool_messages(calls, results)
        return None

    async def _execute_call(self, call: ToolCall) -> ToolResult:
        log_tool_call(LOGGER, call.name, dict(call.args))
        decision = self.coordinator.before_tool_execution(call)

        if not decision.allowed:
            metadata: Dict[str, Any] = {"blocked": True}
            if decision.blocked_by == "validation" and decision.validation is not None:
                metadata["validation_failed"] = True
                if decision.validation.suggestions:
                    metadata["suggestions"] = list(decision.validation.suggestions)
            result = ToolResult.failure(decision.blocked_reason or "Tool call blocked", **metadata)
        else:
            result = await self.coordinator.resilience.execute_resilient(call.name, dict(call.args))
            if decision.warnings:
                result.metadata["warnings"] = [*decision.warnings, *result.metadata.get("warnings", [])]

        self.coordinator.after_tool_execution(call, result)
        log_tool_result(LOGGER, call.name, result.to_payload(), success=result.status != "error")
        return result

    # ========== Resume ==========

    def _check_resumable(self, paused: Optional[PausedState], kind: str, operation_id: Optional[int]) -> Optional[Failed]:
        state = self.coordinator.state
        if paused is not None and paused.task_id != self.coordinator.task_id:
            LOGGER.warning(f"Stale resume: paused task {paused.task_id}, active task {self.coordinator.task_id}")
            if state.paused is not None and state.paused.batch_id == paused.batch_id:
                state.paused = None
            return Failed(STALE_OPERATION)

        current = state.paused
        if (
            paused is None
            or current is None
            or current.batch_id != paused.batch_id
            or current.kind != kind
            or (kind == "approval" and operation_id != current.operation_id)
        ):
            LOGGER.warning(f"Resume ({kind}) rejected: no matching paused operation")
            return Failed(NO_PAUSED_OPERATION)
        return None

    @with_error_boundary("resume_approval", Failed)
    async def _resume_approval(self, paused: PausedState, approved: bool) -> LoopOutcome:
        calls = [ToolCall(**record) for record in paused.tool_calls]
        call = calls[paused.resume_index]
        backend = self.coordinator.backend
        operation_id = paused.operation_id

        if approved:
            timeout = self.settings.resilience.tool_timeout_seconds
            try:
                raw = await asyncio.wait_for(backend.apply_operation(operation_id), timeout=timeout)
            except asyncio.TimeoutError:
                raw = {"error": f"timed out after {timeout:.0f}s"}
            result = ToolResult.from_backend(raw)
            if result.status == "error":
                result = ToolResult.failure(f"Failed to apply: {result.error}")
            LOGGER.info(f"Operation #{operation_id} {'applied' if result.success else 'failed to apply'}")
            if result.success:
                self._attach_verification(call, result)
        else:
            await backend.reject_operation(operation_id)
            result = ToolResult.failure(USER_DENIED)
            LOGGER.info(f"Operation #{operation_id} denied by user")

        self.coordinator.after_tool_execution(call, result)
        return await self._continue_after_resume(paused, calls, self._render(result))

    @with_error_boundary("resume_feedback", Failed)
    async def _resume_feedback(self, paused: PausedState, feedback: str, positive: Optional[bool]) -> LoopOutcome:
        calls = [ToolCall(**record) for record in paused.tool_calls]
        request = paused.feedback_request or {}
        result = ToolResult.ok(
            {
                "user_feedback": feedback,
                "positive": positive,
                "verification_type": request.get("verification_type", "general"),
                "original_question": request.get("question", ""),
                "interpretation": FEEDBACK_INTERPRETATIONS[positive],
            }
        )
        self.coordinator.working_memory.add("key_finding", f"User feedback: {feedback[:150]}")
        return await self._continue_after_resume(paused, calls, self._render(result))

    async def _continue_after_resume(
        self,
        paused: PausedState,
        calls: List[ToolCall],
        resolved: Dict[str, Any],
    ) -> LoopOutcome:
        results = list(paused.results)
        results[paused.resume_index] = resolved
        self.iteration = paused.iteration

        pause = await self._run_batch(paused.batch_id, calls, results, paused.resume_index + 1)
        if pause is not None:
            return pause
        return await self._run()

    # ========== Helpers ==========

    def _pause(
        self,
        kind: str,
        batch_id: str,
        calls: List[ToolCall],
        results: List[Dict[str, Any]],
        index: int,
        result: ToolResult,
    ) -> PausedState:
        paused = PausedState(
            kind=kind,
            batch_id=batch_id,
            task_id=self.coordinator.task_id,
            iteration=self.iteration,
            resume_index=index,
            tool_calls=[call.to_record() for call in calls],
            results=list(results),
            operation_id=result.operation_id,
            feedback_request=result.feedback_request,
        )
        self.coordinator.state.paused = paused
        return paused

    def _attach_verification(self, call: ToolCall, result: ToolResult) -> None:
        """Read the workspace back after an applied operation; a mismatch becomes a warning."""
        verification = self.verifier.verify(call)
        if verification.skipped:
            return
        result.metadata["verification"] = verification.to_dict()
        if not verification.verified:
            result.metadata.setdefault("warnings", []).append(verification.format_report())
            self.coordinator.working_memory.add(
                "key_finding",
                f"Verification failed for {call.name} {verification.path or ''}: {'; '.join(verification.issues)}",
            )

    def _render(self, result: ToolResult) -> Dict[str, Any]:
        return sanitize_payload(result.to_payload(), self.settings.resilience.max_field_size)

    def _append_tool_messages(self, calls: List[ToolCall], results: List[Dict[str, Any]]) -> None:
        for call, payload in zip(calls, results):
            self.messages.append(
                ToolMessage(
                    content=json.dumps(payload, ensure_ascii=False, default=str),
                    tool_call_id=call.id,
                    name=call.name,
                )
            )

    def _prompt_messages(self) -> List[BaseMessage]:
        state = self.coordinator.state
        planner = self.coordinator.planner
        reflecting = planner.is_reflection_due()
        prompt = build_system_prompt(
            analysis=state.analysis,
            recent_failures=self.coordinator.circuit.state.consecutive_failures,
            context_block=self.coordinator.build_context_prompt(),
        )
        if reflecting:
            # The checkpoint went out with this prompt
            planner.reflection_completed()
        log_prompt(LOGGER, f"iteration {self.iteration}", prompt, self.settings.observability.log_prompt_max_length)
        history = [m for m in self.messages if not isinstance(m, SystemMessage)]
        return [SystemMessage(content=prompt), *history]

    async def _compress_if_needed(self) -> None:
        if not self.compressor.needs_compression(self.messages):
            return
        report = await self.compressor.compress(self.messages)
        if report.strategy != "none":
            self.coordinator.state.messages = report.messages
            self.coordinator.working_memory.add(
                "general",
                f"History compressed ({report.strategy}): {report.before_count} -> {report.after_count} messages",
            )

    def _finish(self, outcome: LoopOutcome) -> LoopOutcome:
        """Fire the task-complete hook for terminal outcomes."""
        if isinstance(outcome, Done):
            self.coordinator.on_task_complete(True, outcome.text[:100])
        elif isinstance(outcome, Failed):
            self.coordinator.on_task_complete(False, outcome.reason[:100])
        return outcome
