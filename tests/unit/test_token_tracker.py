"""
TokenTracker unit tests
"""

import pytest
from langchain_core.messages import AIMessage

from guardedAgent.context.token_tracker import TokenTracker, extract_token_usage, get_context_window


@pytest.fixture
def tracker():
    return TokenTracker("anthropic/claude-sonnet-4")


class TestTokenUsageExtraction:
    def test_extract_from_standard_response(self):
        response = AIMessage(
            content="Test response",
            response_metadata={
                "token_usage": {"prompt_tokens": 100, "completion_tokens": 50, "total_tokens": 150},
                "model_name": "deepseek-chat",
            },
        )

        usage = extract_token_usage(response)

        assert usage.prompt_tokens == 100
        assert usage.completion_tokens == 50
        assert usage.model_name == "deepseek-chat"

    def test_extract_from_usage_metadata(self):
        response = AIMessage(
            content="Test",
            usage_metadata={"input_tokens": 200, "output_tokens": 80, "total_tokens": 280},
        )

        usage = extract_token_usage(response)

        assert (usage.prompt_tokens, usage.completion_tokens, usage.total_tokens) == (200, 80, 280)

    def test_no_usage(self):
        assert extract_token_usage(AIMessage(content="Test")) is None


class TestAccumulation:
    def test_record_accumulates(self, tracker):
        for prompt in (1000, 3000):
            tracker.record(
                AIMessage(
                    content="x",
                    response_metadata={"token_usage": {"prompt_tokens": prompt, "completion_tokens": 10}},
                )
            )

        summary = tracker.summary()

        assert summary["calls"] == 2
        assert summary["total_tokens"] == 4020
        assert tracker.last_prompt_tokens == 3000
        assert tracker.usage_ratio == pytest.approx(3000 / 200_000)

    def test_reset(self, tracker):
        tracker.record(AIMessage(content="x", response_metadata={"token_usage": {"prompt_tokens": 5}}))

        tracker.reset()

        assert tracker.summary()["calls"] == 0


@pytest.mark.parametrize(
    "model_id, window",
    [
        ("gpt-4o", 128_000),
        ("openai/gpt-4.1-mini", 1_000_000),
        ("anthropic/claude-sonnet-4", 200_000),
        ("some-unknown-model", 128_000),
    ],
)
def test_context_window(model_id, window):
    assert get_context_window(model_id) == window
