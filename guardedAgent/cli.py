"""GuardedAgent CLI implementation using shared framework."""

from __future__ import annotations

import json
import logging
from typing import Any, Dict

from shared.cli.base_cli import NO_ANSWERS, YES_ANSWERS, BaseCLI
from guardedAgent.runtime import AgenticLoop, AwaitingApproval, AwaitingFeedback, Done, Failed, LoopOutcome
from guardedAgent.utils import log_error

LOGGER = logging.getLogger(__name__)


class GuardedAgentCLI(BaseCLI):
    """CLI interface for the guarded agent loop.

    Extends BaseCLI with:
    - Approval prompts for dangerous operations
    - Feedback prompts for verification requests
    - Session reset and status backed by the SessionCoordinator
    """

    def __init__(self, loop: AgenticLoop):
        """Initialize GuardedAgent CLI.

        Args:
            loop: Agentic loop whose coordinator has already started a conversation
        """
        super().__init__()
        self.loop = loop
        self.coordinator = loop.coordinator

    def print_welcome(self):
        state = self.coordinator.state
        print("GuardedAgent CLI ready.")
        print(f"Session ID: {state.session_id[:8]}...")
        print(f"Model: {self.loop.settings.provider.model}")
        print("Type /help to list commands.\n")

    async def get_input(self) -> str:
        return await self.prompt("You> ")

    async def handle_user_message(self, message: str):
        """Run one task and answer every pause until it settles."""
        try:
            outcome = await self.loop.start_task(message)
            while True:
                if isinstance(outcome, AwaitingApproval):
                    approved = await self._handle_tool_approval(outcome)
                    outcome = await self.loop.resume_approval(outcome.paused, outcome.operation_id, approved)
                elif isinstance(outcome, AwaitingFeedback):
                    feedback, positive = await self._handle_feedback_request(outcome)
                    outcome = await self.loop.resume_feedback(outcome.paused, feedback, positive)
                else:
                    break
            self._print_outcome(outcome)
        except Exception as e:
            log_error(LOGGER, e, "handle_user_message")
            print(f"❌ Error: {e}")

    def reset_session(self) -> str:
        self.coordinator.on_conversation_end()
        info = self.coordinator.on_conversation_start()
        LOGGER.info(f"Session reset via /reset: {info['session_id'][:8]}")
        return info["session_id"]

    def get_status_info(self) -> Dict[str, Any]:
        status = self.coordinator.get_status()
        circuit = status["circuit"]
        health = status["health"]
        memory = status["memory"]
        tokens = self.loop.token_tracker.summary()
        return {
            "session": status["session_id"][:8],
            "task": status["task_id"] or "-",
            "tasks run": status["task_count"],
            "messages": status["message_count"],
            "paused": status["paused"],
            "circuit": f"{circuit['mode']} (failures={circuit['failures']}/{circuit['failure_threshold']})",
            "tool success rate": f"{health['success_rate']}% (recent {health['recent_success_rate']}%)",
            "working memory": (
                f"{memory['critical_count']} critical, {memory['working_count']} working, "
                f"{memory['background_count']} background"
            ),
            "tokens": f"{tokens['total_tokens']} ({tokens['context_usage'] * 100:.1f}% of context)",
        }

    async def on_shutdown(self):
        self.coordinator.on_conversation_end()
        await super().on_shutdown()

    # ========== Pause handlers ==========

    async def _handle_tool_approval(self, outcome: AwaitingApproval) -> bool:
        """Ask the user to approve one queued operation.

        Returns:
            True when approved, False when rejected
        """
        print()
        print(f"🛡️  Approval required: {outcome.tool_name or 'operation'} #{outcome.operation_id}")
        print(f"   {outcome.description}")
        print(f"   Args: {self._format_args(outcome.payload, max_length=60)}")

        approved = await self.ask_yes_no("   Approve? [y/n] > ")
        print("✓ Approved" if approved else "✗ Rejected")
        return approved

    async def _handle_feedback_request(self, outcome: AwaitingFeedback) -> tuple[str, Any]:
        """Collect the user's verification answer.

        Returns:
            (feedback text, positive) where positive is True for y, False for n,
            None for free text
        """
        print()
        if outcome.context:
            print(f"💡 {outcome.context}")
        print(f"💬 {outcome.question}")
        for suggestion in outcome.suggestions:
            print(f"   - {suggestion}")

        while True:
            answer = await self.prompt("   [y = looks right / n = problem / or describe] > ")
            if not answer:
                print("   Please answer the question")
                continue
            lowered = answer.lower()
            if lowered in YES_ANSWERS:
                return "Looks correct", True
            if lowered in NO_ANSWERS:
                return "Something is wrong", False
            return answer, None

    # ========== Helper Methods ==========

    def _print_outcome(self, outcome: LoopOutcome) -> None:
        if isinstance(outcome, Done):
            print(f"Agent> {outcome.text}")
        elif isinstance(outcome, Failed):
            prefix = "❌ Fatal" if outcome.fatal else "⚠️  Failed"
            print(f"{prefix}: {outcome.reason}")

    @staticmethod
    def _format_args(args: Dict[str, Any], max_length: int = 60) -> str:
        parts = []
        for key, value in args.items():
            text = value if isinstance(value, str) else json.dumps(value, ensure_ascii=False, default=str)
            if len(text) > max_length:
                text = text[:max_length] + "..."
            parts.append(f"{key}={text}")
        return ", ".join(parts)
