"""Message formatting and sanitizing utilities."""

from __future__ import annotations

from typing import Any, List, Set

from langchain_core.messages import AIMessage, BaseMessage, ToolMessage

TRUNCATION_MARKER = "... [truncated]"


def stringify_content(content: Any) -> str:
    """Convert message content to string.

    Handles:
    - List content (multimodal messages)
    - Dict content with "text" field
    - Simple string content
    """
    if isinstance(content, list):
        pieces: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                pieces.append(str(item["text"]))
            else:
                pieces.append(str(item))
        return "\n".join(pieces)
    return str(content)


def sanitize_payload(value: Any, max_string: int = 10_000) -> Any:
    """Make a tool payload safe for JSON encoding.

    Strings lose null bytes and are cut at max_string characters, nested
    containers are sanitized recursively, anything that is not a JSON
    scalar is stringified.
    """
    if isinstance(value, str):
        cleaned = value.replace("\x00", "")
        if len(cleaned) > max_string:
            cleaned = cleaned[:max_string] + TRUNCATION_MARKER
        return cleaned
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, dict):
        return {str(k): sanitize_payload(v, max_string) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [sanitize_payload(v, max_string) for v in value]
    return str(value)


def clean_message_history(messages: List[BaseMessage]) -> List[BaseMessage]:
    """Remove AI messages whose tool_calls were never answered.

    OpenAI-compatible APIs reject an assistant message with tool_calls that
    is not followed by a ToolMessage for each call. This happens when a task
    is abandoned while suspended for approval.
    """
    answered_call_ids: Set[str] = set()
    for msg in messages:
        if isinstance(msg, ToolMessage):
            call_id = getattr(msg, "tool_call_id", None)
            if call_id:
                answered_call_ids.add(call_id)

    cleaned: List[BaseMessage] = []
    for msg in messages:
        if isinstance(msg, AIMessage) and msg.tool_calls:
            if any(tc.get("id") not in answered_call_ids for tc in msg.tool_calls):
                continue
        cleaned.append(msg)

    return cleaned


__all__ = ["stringify_content", "sanitize_payload", "clean_message_history", "TRUNCATION_MARKER"]
