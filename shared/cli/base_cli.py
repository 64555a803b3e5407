"""Base CLI framework for agent interfaces.

Owns the read-dispatch loop, slash commands and the small prompt helpers
(yes/no questions, non-blocking input). Agent CLIs subclass it and only
decide what a plain message does and what /reset and /status report.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence

LOGGER = logging.getLogger(__name__)

CommandHandler = Callable[[Optional[str]], Awaitable[bool]]

YES_ANSWERS = ("y", "yes")
NO_ANSWERS = ("n", "no")


class BaseCLI(ABC):
    """Base CLI class handling common command-line interaction patterns.

    Subclasses implement:
    - print_welcome / get_input
    - handle_user_message for anything that is not a slash command
    - reset_session and get_status_info behind /reset and /status
    - Custom commands by extending _build_command_handlers and commands
    """

    BASE_COMMANDS: Dict[str, str] = {
        "/help": "Show this help",
        "/status": "Show session, circuit breaker and tool health",
        "/reset": "Start a new conversation",
        "/quit": "Exit the program (also /exit)",
    }

    def __init__(self):
        self._command_handlers: Dict[str, CommandHandler] = self._build_command_handlers()
        self._running = False
        LOGGER.info(f"{self.__class__.__name__} initialized ({len(self._command_handlers)} commands)")

    def _build_command_handlers(self) -> Dict[str, CommandHandler]:
        return {
            "/quit": self._handle_quit,
            "/exit": self._handle_quit,
            "/help": self._handle_help,
            "/reset": self._handle_reset,
            "/status": self._handle_status,
        }

    @property
    def commands(self) -> Dict[str, str]:
        """Command -> description, as listed by /help."""
        return self.BASE_COMMANDS

    # ========== Main Loop ==========

    async def run(self):
        """Read input until /quit, EOF or Ctrl-C, then run on_shutdown."""
        self._running = True
        self.print_welcome()

        while self._running:
            try:
                user_input = (await self.get_input()).strip()
            except (KeyboardInterrupt, EOFError):
                print("\nGoodbye!")
                LOGGER.info("Session interrupted by user")
                break

            if not user_input:
                continue

            try:
                if not await self.dispatch(user_input):
                    break
            except KeyboardInterrupt:
                print("\n⚠️  Interrupted")
                LOGGER.info("Current request interrupted by user")
            except Exception as e:
                LOGGER.error(f"Unexpected error in main loop: {e}", exc_info=True)
                print(f"❌ Error: {e}")

        self._running = False
        await self.on_shutdown()

    async def dispatch(self, user_input: str) -> bool:
        """Route one line; returns False when the loop should stop."""
        if self.is_command(user_input):
            return await self.handle_command(user_input)
        await self.handle_user_message(user_input)
        return True

    async def on_shutdown(self):
        """Cleanup before exit; subclasses extend and call super()."""
        LOGGER.info("CLI shutting down")

    # ========== Command Handling ==========

    def is_command(self, text: str) -> bool:
        return text.startswith("/")

    async def handle_command(self, cmd: str) -> bool:
        """Run a slash command.

        Args:
            cmd: Command string with optional argument (e.g., "/status")

        Returns:
            True to continue main loop, False to exit
        """
        name, _, arg = cmd.partition(" ")
        handler = self._command_handlers.get(name.lower())
        if handler is None:
            print(f"❌ Unknown command: {name}")
            print("   Type /help to list commands")
            return True
        return await handler(arg.strip() or None)

    async def _handle_quit(self, arg: Optional[str]) -> bool:
        print("Session ended.")
        LOGGER.info("Exit requested by /quit command")
        return False

    async def _handle_help(self, arg: Optional[str]) -> bool:
        width = max(len(cmd) for cmd in self.commands) + 2
        print("\nCommands:")
        for cmd, desc in self.commands.items():
            print(f"  {cmd:<{width}}{desc}")
        print()
        return True

    async def _handle_reset(self, arg: Optional[str]) -> bool:
        session_id = self.reset_session()
        print(f"✅ State reset. New session ID: {session_id[:8]}...\n")
        return True

    async def _handle_status(self, arg: Optional[str]) -> bool:
        info = self.get_status_info()
        width = max((len(key) for key in info), default=0) + 1
        print("\nSession status:")
        for key, value in info.items():
            print(f"  {key + ':':<{width}} {value}")
        print()
        return True

    # ========== Abstract Methods (Subclass Implementation) ==========

    @abstractmethod
    def print_welcome(self):
        """Print welcome message (agent-specific)."""

    @abstractmethod
    async def get_input(self) -> str:
        """Get one line of user input."""

    @abstractmethod
    async def handle_user_message(self, message: str):
        """Handle a non-command message.

        Args:
            message: User input text
        """

    @abstractmethod
    def reset_session(self) -> str:
        """Start a fresh session and return its id."""

    @abstractmethod
    def get_status_info(self) -> Dict[str, Any]:
        """Flat key/value status shown by /status."""

    # ========== Prompt Helpers ==========

    async def prompt(self, text: str) -> str:
        """Read one line without blocking the event loop."""
        loop = asyncio.get_running_loop()
        return (await loop.run_in_executor(None, input, text)).strip()

    async def ask_yes_no(
        self,
        question: str,
        yes: Sequence[str] = YES_ANSWERS,
        no: Sequence[str] = NO_ANSWERS,
    ) -> bool:
        """Ask until the answer is one of yes/no (case-insensitive)."""
        while True:
            choice = (await self.prompt(question)).lower()
            if choice in yes:
                return True
            if choice in no:
                return False
            print("   Please answer y or n")


__all__ = ["BaseCLI", "NO_ANSWERS", "YES_ANSWERS"]
