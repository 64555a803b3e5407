"""Utilities for guardedAgent."""

from .logging_utils import (
    log_blocked,
    log_agent_response,
    log_error,
    log_iteration,
    log_pause,
    log_prompt,
    log_resume,
    log_tool_call,
    log_tool_result,
    log_user_message,
    setup_logging,
)
from .message_utils import clean_message_history, sanitize_payload, stringify_content
from .error_handler import (
    with_error_boundary,
    safe_tool_call,
    handle_model_error,
    describe_error,
    GuardedAgentError,
    ToolExecutionError,
    ModelInvocationError,
    FatalModelError,
    TimeoutError,
    RateLimitError,
)

__all__ = [
    "log_blocked",
    "setup_logging",
    "log_iteration",
    "log_tool_call",
    "log_tool_result",
    "log_error",
    "log_user_message",
    "log_agent_response",
    "log_prompt",
    "log_pause",
    "log_resume",
    "clean_message_history",
    "sanitize_payload",
    "stringify_content",
    "with_error_boundary",
    "safe_tool_call",
    "handle_model_error",
    "describe_error",
    "GuardedAgentError",
    "ToolExecutionError",
    "ModelInvocationError",
    "FatalModelError",
    "TimeoutError",
    "RateLimitError",
]
