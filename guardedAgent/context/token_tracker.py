"""Token usage tracking.

1. Extract exact usage from model responses when the provider reports it
2. Accumulate per-session totals
3. Estimate tokens for history when no usage is available
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from langchain_core.messages import AIMessage, BaseMessage

from .compressor import estimate_tokens

LOGGER = logging.getLogger(__name__)


@dataclass
class TokenUsage:
    """Token usage of one model call."""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    model_name: str


MODEL_CONTEXT_WINDOWS: Dict[str, int] = {
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4.1": 1_000_000,
    "anthropic/claude": 200_000,
    "google/gemini": 1_000_000,
    "deepseek": 128_000,
    "default": 128_000,
}


def get_context_window(model_id: str) -> int:
    """Exact match first, then prefix (e.g. "openai/gpt-4o-mini" contains "gpt-4o-mini")."""
    if model_id in MODEL_CONTEXT_WINDOWS:
        return MODEL_CONTEXT_WINDOWS[model_id]
    for key, window in sorted(MODEL_CONTEXT_WINDOWS.items(), key=lambda item: -len(item[0])):
        if key != "default" and (model_id.startswith(key) or key in model_id):
            return window
    return MODEL_CONTEXT_WINDOWS["default"]


def extract_token_usage(response: AIMessage) -> Optional[TokenUsage]:
    metadata = response.response_metadata or {}
    usage = metadata.get("token_usage") or metadata.get("usage")
    if usage:
        return TokenUsage(
            prompt_tokens=usage.get("prompt_tokens", 0) or 0,
            completion_tokens=usage.get("completion_tokens", 0) or 0,
            total_tokens=usage.get("total_tokens", 0) or 0,
            model_name=metadata.get("model_name", "unknown"),
        )

    usage_metadata = getattr(response, "usage_metadata", None)
    if usage_metadata:
        return TokenUsage(
            prompt_tokens=usage_metadata.get("input_tokens", 0),
            completion_tokens=usage_metadata.get("output_tokens", 0),
            total_tokens=usage_metadata.get("total_tokens", 0),
            model_name=metadata.get("model_name", "unknown"),
        )

    LOGGER.debug("No token usage found in response metadata")
    return None


class TokenTracker:
    """Per-session token accounting."""

    def __init__(self, model_id: str = "default"):
        self.model_id = model_id
        self.context_window = get_context_window(model_id)
        self.reset()

    def reset(self) -> None:
        self.calls = 0
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.last_prompt_tokens = 0

    def record(self, response: AIMessage) -> Optional[TokenUsage]:
        usage = extract_token_usage(response)
        if usage is None:
            return None
        self.calls += 1
        self.prompt_tokens += usage.prompt_tokens
        self.completion_tokens += usage.completion_tokens
        self.last_prompt_tokens = usage.prompt_tokens
        return usage

    def estimate(self, messages: List[BaseMessage]) -> int:
        return estimate_tokens(messages)

    @property
    def usage_ratio(self) -> float:
        return self.last_prompt_tokens / self.context_window if self.context_window else 0.0

    def summary(self) -> Dict[str, float]:
        return {
            "calls": self.calls,
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.prompt_tokens + self.completion_tokens,
            "context_usage": round(self.usage_ratio, 3),
        }
