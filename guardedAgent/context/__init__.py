"""Context management: relevance selection, working memory, compression, token tracking."""

from .selector import ContextSelector, Freshness, Selection, extract_keywords
from .working_memory import MemoryItem, WorkingMemory
from .compressor import (
    CompressionFallback,
    CompressionResult,
    estimate_tokens,
    format_messages_for_summary,
    smart_sample,
    structured_extraction,
)
from .token_tracker import TokenTracker, TokenUsage, extract_token_usage

__all__ = [
    "ContextSelector",
    "Freshness",
    "Selection",
    "extract_keywords",
    "MemoryItem",
    "WorkingMemory",
    "CompressionFallback",
    "CompressionResult",
    "estimate_tokens",
    "format_messages_for_summary",
    "smart_sample",
    "structured_extraction",
    "TokenTracker",
    "TokenUsage",
    "extract_token_usage",
]
