"""Logging utilities for guardedAgent.

One package logger ("guardedAgent") with two handlers: a timestamped file
that receives everything at DEBUG, and a terse console handler that only
shows warnings and above so it does not interleave with the CLI prompts.
Module loggers (logging.getLogger(__name__)) propagate into it.

The log_* helpers keep the wording of loop events consistent so a session
can be followed by grepping the file for "Tool call:", "Paused", "Blocked".
"""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

ROOT_LOGGER_NAME = "guardedAgent"
FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"
PREVIEW_LENGTH = 100
RESULT_PREVIEW_LENGTH = 500


def _preview(text: str, limit: int = PREVIEW_LENGTH) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


def setup_logging(level: int = logging.INFO, log_dir: str = "logs") -> logging.Logger:
    """Attach file and console handlers to the package logger.

    Args:
        level: Console logging level is max(level, WARNING); the file always gets DEBUG
        log_dir: Directory for timestamped log files (created if missing)

    Returns:
        The package logger
    """
    logs_path = Path(log_dir)
    logs_path.mkdir(parents=True, exist_ok=True)
    log_file = logs_path / f"guardedagent_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # setup_logging may run again after /reset or in tests
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(max(level, logging.WARNING))
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))

    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    logger.info(f"Logging to {log_file} (console level {logging.getLevelName(console_handler.level)})")
    return logger


# ========== Loop events ==========

def log_iteration(logger: logging.Logger, task_id: Optional[str], iteration: int, max_iterations: int, message_count: int) -> None:
    """Log the start of a loop iteration.

    Args:
        logger: Logger instance
        task_id: Active task identifier
        iteration: Current iteration (1-based)
        max_iterations: Configured iteration cap
        message_count: Messages currently in history
    """
    logger.info(f"Iteration {iteration}/{max_iterations} (task={task_id}, messages={message_count})")


def log_tool_call(logger: logging.Logger, tool_name: str, args: Dict[str, Any]) -> None:
    logger.info(f"Tool call: {tool_name}")
    logger.debug(f"  Arguments: {json.dumps(args, ensure_ascii=False, indent=2, default=str)}")


def log_tool_result(logger: logging.Logger, tool_name: str, payload: Dict[str, Any], success: bool = True) -> None:
    """Log one tool outcome; failures also log the error text at INFO."""
    if success:
        logger.info(f"Tool result: {tool_name} - ✓ Success")
    else:
        logger.info(f"Tool result: {tool_name} - ✗ Failed: {_preview(str(payload.get('error', '')))}")
    logger.debug(f"  Result: {_preview(json.dumps(payload, ensure_ascii=False, default=str), RESULT_PREVIEW_LENGTH)}")


def log_blocked(logger: logging.Logger, tool_name: str, layer: str, reason: str) -> None:
    """Log a call stopped before reaching the backend (validation or circuit breaker)."""
    logger.warning(f"Blocked {tool_name} by {layer}: {_preview(reason.splitlines()[0] if reason else '')}")


def log_pause(logger: logging.Logger, kind: str, detail: str) -> None:
    logger.info(f"Paused for {kind}: {_preview(detail, 80)}")


def log_resume(logger: logging.Logger, kind: str, answer: str) -> None:
    logger.info(f"Resumed {kind}: {_preview(answer, 80)}")


def log_error(logger: logging.Logger, error: Exception, context: str = "") -> None:
    """Log error with context.

    Args:
        logger: Logger instance
        error: Exception instance
        context: Where the error occurred
    """
    where = f" in {context}" if context else ""
    logger.error(f"{type(error).__name__}{where}: {error}")
    logger.debug("Full traceback:", exc_info=error)


# ========== Conversation ==========

def log_user_message(logger: logging.Logger, content: str) -> None:
    logger.info(f"User input: {_preview(content)}")


def log_agent_response(logger: logging.Logger, content: str) -> None:
    logger.info(f"Agent response: {_preview(content)}")


def log_prompt(logger: logging.Logger, phase: str, prompt: str, max_length: int = 500) -> None:
    """Log the system prompt being used (truncated to max_length)."""
    shown = prompt if len(prompt) <= max_length else prompt[:max_length] + "... (truncated)"
    logger.debug(f"System prompt for {phase} ({len(prompt)} chars):\n{shown}")
