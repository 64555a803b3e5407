"""History compression with a fallback hierarchy.

Responsibilities:
1. Split history into the part to compress and the newest messages to keep verbatim
2. Try an AI summary of the older part
3. Fall back to structured extraction, which never needs the model
4. Smart sampling and plain truncation as last resorts
5. Produce a compression report
"""

from __future__ import annotations

import json
import logging
import math
from collections import Counter
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Literal, Optional

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from guardedAgent.config.settings import CompressionSettings
from guardedAgent.utils.message_utils import stringify_content

LOGGER = logging.getLogger(__name__)

CompressionStrategy = Literal["none", "ai_summary", "structured_extraction", "smart_sampling", "truncation"]

Summarizer = Callable[[List[BaseMessage]], Awaitable[str]]

COMPRESSED_MARKER = "[COMPRESSED HISTORY"
ACKNOWLEDGEMENT = "Understood. Continuing with this context."
ACTION_WORDS = ("create", "add", "build")


@dataclass
class CompressionResult:
    messages: List[BaseMessage]
    before_count: int
    after_count: int
    before_tokens: int
    after_tokens: int
    strategy: CompressionStrategy
    compression_ratio: float
    summary: Optional[str] = None


def estimate_message_chars(message: BaseMessage) -> int:
    chars = len(stringify_content(message.content))
    if isinstance(message, AIMessage) and message.tool_calls:
        chars += len(json.dumps(message.tool_calls, default=str))
    return chars


def estimate_tokens(messages: List[BaseMessage]) -> int:
    """Rough estimate: 4 chars per token."""
    return math.ceil(sum(estimate_message_chars(m) for m in messages) / 4)


def _tool_names_by_call_id(messages: List[BaseMessage]) -> Dict[str, str]:
    names: Dict[str, str] = {}
    for message in messages:
        if isinstance(message, AIMessage):
            for call in message.tool_calls or []:
                if call.get("id"):
                    names[call["id"]] = call.get("name", "unknown")
    return names


def _tool_error(message: ToolMessage) -> Optional[str]:
    content = stringify_content(message.content)
    try:
        payload = json.loads(content)
    except (TypeError, ValueError):
        return None
    if isinstance(payload, dict) and payload.get("error"):
        return str(payload["error"])
    return None


def structured_extraction(messages: List[BaseMessage], max_chars: int = 4000) -> str:
    """Summarize history without a model: requests, actions, tools, errors.

    Always returns a non-empty string no longer than max_chars.
    """
    requests: List[str] = []
    actions: List[str] = []
    tools: Counter = Counter()
    errors: List[str] = []
    names = _tool_names_by_call_id(messages)

    for message in messages:
        if isinstance(message, HumanMessage):
            text = stringify_content(message.content)
            if COMPRESSED_MARKER not in text and "SYSTEM:" not in text and len(text) > 10:
                requests.append(text[:200])
        elif isinstance(message, AIMessage):
            text = stringify_content(message.content)
            if text and any(word in text.lower() for word in ACTION_WORDS):
                actions.append(text[:150])
            for call in message.tool_calls or []:
                tools[call.get("name", "unknown")] += 1
        elif isinstance(message, ToolMessage):
            error = _tool_error(message)
            if error:
                name = message.name or names.get(message.tool_call_id, "tool")
                errors.append(f"{name}: {error[:100]}")

    lines = ["[COMPRESSED HISTORY - Structured Summary]", ""]

    if requests:
        lines.append("User Requests:")
        lines.extend(f"  - {text}" for text in requests[:5])
        if len(requests) > 5:
            lines.append(f"  ... and {len(requests) - 5} more requests")
        lines.append("")

    if actions:
        lines.append("Agent Actions Taken:")
        lines.extend(f"  - {text}" for text in actions[:5])
        if len(actions) > 5:
            lines.append(f"  ... and {len(actions) - 5} more actions")
        lines.append("")

    if tools:
        lines.append("Tools Used: " + ", ".join(f"{name} ({count}x)" for name, count in tools.most_common()))
        lines.append("")

    if errors:
        lines.append("Errors Encountered:")
        lines.extend(f"  - {text}" for text in errors[:3])
        if len(errors) > 3:
            lines.append(f"  ... and {len(errors) - 3} more errors")
        lines.append("")

    lines.append(f"Total Messages Compressed: {len(messages)}")
    summary = "\n".join(lines)
    if len(summary) > max_chars:
        summary = summary[: max_chars - 15] + "\n[truncated]"
    return summary


def smart_sample(messages: List[BaseMessage], target_count: int) -> List[BaseMessage]:
    """Keep the first few, the last few and an even sample of the middle.

    Only plain conversation messages are sampled so no tool call loses its result.
    """
    plain = [
        m for m in messages
        if isinstance(m, HumanMessage) or (isinstance(m, AIMessage) and not m.tool_calls)
    ]
    if len(plain) <= target_count:
        return plain

    keep_first = min(3, int(target_count * 0.2))
    keep_last = min(3, int(target_count * 0.3))
    keep_middle = target_count - keep_first - keep_last

    sampled = list(plain[:keep_first])
    middle = plain[keep_first : len(plain) - keep_last]
    if keep_middle > 0 and middle:
        step = max(1, len(middle) // keep_middle)
        sampled.extend(middle[::step][:keep_middle])
    if keep_last:
        sampled.extend(plain[-keep_last:])
    return sampled


class CompressionFallback:
    """Compress history when it grows past the token threshold."""

    def __init__(self, settings: Optional[CompressionSettings] = None, summarizer: Optional[Summarizer] = None):
        self.settings = settings or CompressionSettings()
        self.summarizer = summarizer

    def needs_compression(self, messages: List[BaseMessage]) -> bool:
        return (
            estimate_tokens(messages) > self.settings.threshold_tokens
            and len(messages) > self.settings.preserve_count + 2
        )

    def split(self, messages: List[BaseMessage]) -> tuple[List[BaseMessage], List[BaseMessage], List[BaseMessage]]:
        """(system, to_compress, preserved).

        The boundary moves back past leading ToolMessages so their AIMessage is
        preserved with them; the preserved tail is never shorter than preserve_count.
        """
        system = [m for m in messages if isinstance(m, SystemMessage)]
        rest = [m for m in messages if not isinstance(m, SystemMessage)]

        boundary = max(0, len(rest) - self.settings.preserve_count)
        while boundary > 0 and isinstance(rest[boundary], ToolMessage):
            boundary -= 1
        return system, rest[:boundary], rest[boundary:]

    async def compress(self, messages: List[BaseMessage]) -> CompressionResult:
        before_count = len(messages)
        before_tokens = estimate_tokens(messages)

        if len(messages) <= self.settings.preserve_count + 2:
            return self._report(messages, messages, before_tokens, "none")

        system, to_compress, preserved = self.split(messages)
        if not to_compress:
            return self._report(messages, messages, before_tokens, "none")

        LOGGER.info(f"Compressing {len(to_compress)} messages, preserving {len(preserved)}")

        # 1. AI summary
        if self.summarizer is not None:
            try:
                summary = await self.summarizer(to_compress)
            except Exception as e:
                LOGGER.warning(f"AI summary failed, falling back to structured extraction: {e}")
                summary = None
            if isinstance(summary, str) and len(summary.strip()) > self.settings.min_summary_length:
                text = (
                    f"{COMPRESSED_MARKER} - AI Summary]\n\n{summary.strip()[: self.settings.max_summary_chars]}\n\n"
                    f"(Original: {len(to_compress)} messages, Preserved: {len(preserved)} recent messages)"
                )
                return self._report(
                    messages,
                    [*system, HumanMessage(content=text), AIMessage(content=ACKNOWLEDGEMENT), *preserved],
                    before_tokens,
                    "ai_summary",
                    summary=text,
                )
            LOGGER.warning("AI summary too short or empty, falling back to structured extraction")

        # 2. Structured extraction
        try:
            text = structured_extraction(to_compress, self.settings.max_summary_chars)
        except (TypeError, ValueError, AttributeError) as e:
            LOGGER.error(f"Structured extraction failed: {e}")
        else:
            return self._report(
                messages,
                [*system, HumanMessage(content=text), AIMessage(content=ACKNOWLEDGEMENT), *preserved],
                before_tokens,
                "structured_extraction",
                summary=text,
            )

        # 3. Smart sampling
        sampled = smart_sample(to_compress, self.settings.preserve_count)
        if sampled:
            marker = HumanMessage(
                content=f"{COMPRESSED_MARKER} - Sampled]\n{len(to_compress) - len(sampled)} older messages omitted."
            )
            return self._report(messages, [*system, marker, *sampled, *preserved], before_tokens, "smart_sampling")

        # 4. Truncation
        marker = HumanMessage(content=f"{COMPRESSED_MARKER} - Truncated]\n{len(to_compress)} older messages dropped.")
        return self._report(
            messages,
            [*system, marker, AIMessage(content=ACKNOWLEDGEMENT), *preserved],
            before_tokens,
            "truncation",
        )

    def _report(
        self,
        original: List[BaseMessage],
        compressed: List[BaseMessage],
        before_tokens: int,
        strategy: CompressionStrategy,
        summary: Optional[str] = None,
    ) -> CompressionResult:
        after_tokens = estimate_tokens(compressed)
        ratio = after_tokens / before_tokens if before_tokens > 0 else 1.0
        if strategy != "none":
            LOGGER.info(
                f"Compression ({strategy}) complete: {len(original)} -> {len(compressed)} messages, "
                f"~{before_tokens} -> ~{after_tokens} tokens ({ratio:.1%})"
            )
        return CompressionResult(
            messages=compressed,
            before_count=len(original),
            after_count=len(compressed),
            before_tokens=before_tokens,
            after_tokens=after_tokens,
            strategy=strategy,
            compression_ratio=ratio,
            summary=summary,
        )


def format_messages_for_summary(messages: List[BaseMessage]) -> str:
    """Render history as plain text for the summarization prompt."""
    names = _tool_names_by_call_id(messages)
    formatted = []
    for message in messages:
        role = message.__class__.__name__.replace("Message", "")
        content = stringify_content(message.content)[:2000]
        if isinstance(message, AIMessage) and message.tool_calls:
            calls = ", ".join(call.get("name", "unknown") for call in message.tool_calls)
            formatted.append(f"[{role}] {content[:300]} (called tools: {calls})".strip())
        elif isinstance(message, ToolMessage):
            name = message.name or names.get(message.tool_call_id, "tool")
            formatted.append(f"[Tool:{name}] {content[:500]}")
        else:
            formatted.append(f"[{role}] {content}")
    return "\n\n".join(formatted)
