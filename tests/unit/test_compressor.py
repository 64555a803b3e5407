"""Unit tests for CompressionFallback.

Tests history splitting, the AI summary path and every fallback below it.
"""

import json

import pytest
from unittest.mock import AsyncMock

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage

from guardedAgent.config.settings import CompressionSettings
from guardedAgent.context.compressor import (
    ACKNOWLEDGEMENT,
    CompressionFallback,
    estimate_tokens,
    smart_sample,
    structured_extraction,
)


@pytest.fixture
def compression_settings():
    return CompressionSettings(threshold_tokens=1000, preserve_count=4, min_summary_length=50)


def tool_round(index, error=None):
    """One AIMessage with a tool call plus its ToolMessage."""
    call_id = f"call_{index}"
    ai = AIMessage(
        content=f"I will create the part {index}",
        tool_calls=[{"name": "get_script", "args": {"path": f"S.Script{index}"}, "id": call_id}],
    )
    payload = {"success": False, "error": f"Script not found: S.Script{index}"} if error else {"success": True}
    return [ai, ToolMessage(content=json.dumps(payload), tool_call_id=call_id, name="get_script")]


@pytest.fixture
def history():
    messages = [SystemMessage(content="system prompt")]
    for i in range(6):
        messages.append(HumanMessage(content=f"Please update the leaderboard script number {i}" + " x" * 400))
        messages.extend(tool_round(i, error=(i == 2)))
        messages.append(AIMessage(content=f"Done with step {i}"))
    return messages


class TestSplit:
    def test_boundary_never_orphans_tool_message(self):
        messages = [HumanMessage(content="start")]
        for i in range(4):
            messages.extend(tool_round(i))
        compressor = CompressionFallback(CompressionSettings(threshold_tokens=1000, preserve_count=3))

        system, to_compress, preserved = compressor.split(messages)

        assert system == []
        assert not isinstance(preserved[0], ToolMessage)
        assert isinstance(preserved[0], AIMessage)
        assert len(preserved) == 4
        assert to_compress + preserved == messages

    def test_needs_compression(self, compression_settings, history):
        compressor = CompressionFallback(compression_settings)

        assert estimate_tokens(history) > 1000
        assert compressor.needs_compression(history) is True
        assert compressor.needs_compression(history[:3]) is False


class TestStrategies:
    @pytest.mark.asyncio
    async def test_ai_summary(self, compression_settings, history):
        summarizer = AsyncMock(return_value="The user asked for leaderboard updates; scripts 0-5 were inspected. " * 2)
        compressor = CompressionFallback(compression_settings, summarizer=summarizer)

        result = await compressor.compress(history)

        assert result.strategy == "ai_summary"
        assert isinstance(result.messages[0], SystemMessage)
        assert "[COMPRESSED HISTORY - AI Summary]" in result.messages[1].content
        assert result.messages[2].content == ACKNOWLEDGEMENT
        assert result.messages[-4:] == history[-4:]
        assert result.after_count < result.before_count
        summarizer.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_summarizer_failure_falls_back_to_extraction(self, compression_settings, history):
        summarizer = AsyncMock(side_effect=RuntimeError("model down"))
        compressor = CompressionFallback(compression_settings, summarizer=summarizer)

        result = await compressor.compress(history)

        assert result.strategy == "structured_extraction"
        assert "Structured Summary" in result.messages[1].content
        assert result.messages[-4:] == history[-4:]

    @pytest.mark.asyncio
    async def test_short_summary_falls_back_to_extraction(self, compression_settings, history):
        compressor = CompressionFallback(compression_settings, summarizer=AsyncMock(return_value="ok"))

        result = await compressor.compress(history)

        assert result.strategy == "structured_extraction"

    @pytest.mark.asyncio
    async def test_nothing_to_compress(self, compression_settings):
        compressor = CompressionFallback(compression_settings)
        messages = [HumanMessage(content="hi"), AIMessage(content="hello")]

        result = await compressor.compress(messages)

        assert result.strategy == "none"
        assert result.messages == messages


class TestStructuredExtraction:
    def test_extracts_requests_tools_and_errors(self, history):
        summary = structured_extraction(history[1:])

        assert summary.startswith("[COMPRESSED HISTORY - Structured Summary]")
        assert "User Requests:" in summary
        assert "Tools Used: get_script (6x)" in summary
        assert "get_script: Script not found: S.Script2" in summary
        assert "Agent Actions Taken:" in summary
        assert f"Total Messages Compressed: {len(history) - 1}" in summary

    def test_respects_max_chars(self, history):
        summary = structured_extraction(history, max_chars=300)

        assert len(summary) <= 300
        assert summary.endswith("[truncated]")

    def test_never_empty(self):
        assert structured_extraction([]).startswith("[COMPRESSED HISTORY")


class TestSmartSample:
    def test_skips_tool_messages(self, history):
        sampled = smart_sample(history, 6)

        assert len(sampled) <= 6
        assert not any(isinstance(m, ToolMessage) for m in sampled)
        assert not any(isinstance(m, AIMessage) and m.tool_calls for m in sampled)
