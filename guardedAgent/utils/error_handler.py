"""Unified error handling for the loop, the provider and tool handlers."""

from __future__ import annotations

import asyncio
import functools
import logging
from typing import Any, Callable, Dict, Optional

LOGGER = logging.getLogger(__name__)


class GuardedAgentError(Exception):
    """Base exception for guardedAgent errors."""

    def __init__(self, message: str, user_message: str = None):
        super().__init__(message)
        self.user_message = user_message or message


class ToolExecutionError(GuardedAgentError):
    """Error during tool execution."""
    pass


class ModelInvocationError(GuardedAgentError):
    """Error during model invocation."""

    def __init__(self, message: str, user_message: str = None, status_code: Optional[int] = None):
        super().__init__(message, user_message)
        self.status_code = status_code


class FatalModelError(ModelInvocationError):
    """Credential or billing failure; never retried and ends the task."""
    pass


class TimeoutError(GuardedAgentError):
    """Operation timeout error."""
    pass


class RateLimitError(ModelInvocationError):
    """Provider kept answering 429 after every retry."""
    pass


def describe_error(error: Exception) -> tuple[str, bool]:
    """Return (user message, fatal) for an exception escaping a boundary."""
    if isinstance(error, FatalModelError):
        return error.user_message, True
    if isinstance(error, TimeoutError):
        return f"Timed out: {error.user_message}", False
    if isinstance(error, RateLimitError):
        return "Too many requests, please wait a minute and try again.", False
    if isinstance(error, ModelInvocationError):
        return f"Model call failed: {error.user_message}", False
    if isinstance(error, GuardedAgentError):
        return error.user_message, False
    # Don't expose internal error details to users
    return "Unexpected internal error. Check the log file for details.", False


def with_error_boundary(name: str, fallback: Callable[[str, bool], Any]):
    """Decorator that turns escaping exceptions into a fallback value.

    Args:
        name: Name of the boundary for logging
        fallback: Called with (user_message, fatal) to build the return value

    Example:
        @with_error_boundary("agentic_loop", Failed)
        async def run_iteration(self) -> LoopOutcome:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def sync_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return func(*args, **kwargs)
            except GuardedAgentError as e:
                LOGGER.error(f"{name} error: {e}")
                return fallback(*describe_error(e))
            except Exception as e:
                LOGGER.exception(f"{name} unexpected error", exc_info=e)
                return fallback(*describe_error(e))

        @functools.wraps(func)
        async def async_wrapper(*args: Any, **kwargs: Any) -> Any:
            try:
                return await func(*args, **kwargs)
            except GuardedAgentError as e:
                LOGGER.error(f"{name} error: {e}")
                return fallback(*describe_error(e))
            except Exception as e:
                LOGGER.exception(f"{name} unexpected error", exc_info=e)
                return fallback(*describe_error(e))

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        return sync_wrapper

    return decorator


def safe_tool_call(tool_name: str):
    """Decorator for tool handlers: exceptions become backend error dicts.

    Example:
        @safe_tool_call("get_script")
        async def _get_script(self, args: dict) -> dict:
            ...
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Dict[str, Any]:
            try:
                return await func(*args, **kwargs)
            except ToolExecutionError as e:
                LOGGER.warning(f"Tool {tool_name} failed: {e}")
                return {"error": e.user_message}
            except (KeyError, TypeError, ValueError) as e:
                LOGGER.exception(f"Tool {tool_name} failed", exc_info=e)
                return {"error": f"Tool execution failed: {e}"}
        return wrapper
    return decorator


def handle_model_error(error: Exception) -> str:
    """Convert model invocation errors to user-friendly messages.

    Args:
        error: Exception raised during model invocation

    Returns:
        User-friendly error message
    """
    error_str = str(error).lower()

    if "rate_limit" in error_str or "rate limit" in error_str or "429" in error_str:
        return "Rate limited by the model provider, please try again shortly"

    if "timeout" in error_str or "timed out" in error_str:
        return "The model took too long to respond, please retry"

    if "context_length" in error_str or "maximum context" in error_str:
        return "Conversation is too long for the model, start a new conversation"

    if "invalid_api_key" in error_str or "authentication" in error_str or "401" in error_str:
        return "Invalid API key"

    if "quota" in error_str or "insufficient" in error_str or "402" in error_str:
        return "Insufficient credits"

    return f"Model service temporarily unavailable: {str(error)}"
