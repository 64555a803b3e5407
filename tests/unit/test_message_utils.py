"""Unit tests for message and payload helpers."""

from langchain_core.messages import AIMessage, HumanMessage, ToolMessage

from guardedAgent.utils.message_utils import TRUNCATION_MARKER, clean_message_history, sanitize_payload


class TestSanitizePayload:
    def test_keeps_none_values(self):
        payload = {"pending": True, "operation_id": None, "nested": {"positive": None}}

        assert sanitize_payload(payload) == payload

    def test_strips_null_bytes_and_truncates(self):
        result = sanitize_payload({"source": "ab\x00c" * 10, "lines": ("x", 3)}, max_string=12)

        assert result["source"] == "abcabcabcabc" + TRUNCATION_MARKER
        assert result["lines"] == ["x", 3]

    def test_stringifies_unknown_objects(self):
        class Marker:
            def __str__(self):
                return "marker"

        assert sanitize_payload({"value": Marker()}) == {"value": "marker"}


def test_clean_history_drops_unanswered_tool_calls():
    answered = AIMessage(content="", tool_calls=[{"name": "get_script", "args": {}, "id": "call_1"}])
    abandoned = AIMessage(content="", tool_calls=[{"name": "edit_script", "args": {}, "id": "call_2"}])
    messages = [
        HumanMessage(content="fix shop"),
        answered,
        ToolMessage(content="{}", tool_call_id="call_1"),
        abandoned,
    ]

    assert clean_message_history(messages) == messages[:3]
