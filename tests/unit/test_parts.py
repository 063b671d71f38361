"""Tests for message part normalization."""
import json

import pytest

from papertrail.chat.parts import (
    TextPart,
    ToolInvocation,
    message_parts,
    message_query_text,
    message_text,
    normalize_part,
    to_model_messages,
)


class TestNormalizePart:
    def test_static_tool_part(self):
        part = normalize_part({
            "type": "tool-webSearch",
            "toolCallId": "c1",
            "state": "output-available",
            "input": {"query": "kelp"},
            "output": {"results": []},
        })
        assert part == ToolInvocation(
            tool_call_id="c1",
            name="webSearch",
            input={"query": "kelp"},
            state="output-available",
            output={"results": []},
        )

    def test_unknown_state_is_not_finished(self):
        part = normalize_part({
            "type": "tool-webSearch",
            "toolCallId": "c1",
            "state": "approval-requested",
            "input": {"query": "kelp"},
        })
        assert part.state == "input-available"
        assert part.finished is False

    def test_dynamic_tool_part(self):
        part = normalize_part({
            "type": "dynamic-tool",
            "toolName": "readWebPage",
            "toolCallId": "c2",
            "state": "output-error",
            "input": {"url": "https://example.org"},
            "errorText": "timeout",
        })
        assert (part.name, part.state, part.error_text) == ("readWebPage", "output-error", "timeout")

    @pytest.mark.parametrize("legacy, state", [
        ("partial-call", "input-streaming"),
        ("call", "input-available"),
        ("result", "output-available"),
    ])
    def test_legacy_invocation_part(self, legacy, state):
        part = normalize_part({
            "type": "tool-invocation",
            "toolInvocation": {
                "toolCallId": "c3",
                "toolName": "addToSources",
                "state": legacy,
                "args": {"url": "https://example.org"},
                "result": {"success": True},
            },
        })
        assert part.name == "addToSources"
        assert part.state == state
        assert part.input == {"url": "https://example.org"}

    def test_all_shapes_serialize_the_same_way(self):
        static = normalize_part({
            "type": "tool-webSearch", "toolCallId": "c1",
            "state": "output-available", "input": {"query": "q"}, "output": {"n": 1},
        })
        dynamic = normalize_part({
            "type": "dynamic-tool", "toolName": "webSearch", "toolCallId": "c1",
            "state": "output-available", "input": {"query": "q"}, "output": {"n": 1},
        })
        assert static.to_dict() == dynamic.to_dict() == {
            "type": "tool-webSearch",
            "toolCallId": "c1",
            "state": "output-available",
            "input": {"query": "q"},
            "output": {"n": 1},
        }

    def test_unknown_parts_are_dropped(self):
        assert normalize_part({"type": "step-start"}) is None
        assert normalize_part({"type": "reasoning", "text": "hmm"}) is None


class TestMessages:
    def test_text_joins_text_parts(self):
        message = {"role": "user", "parts": [
            {"type": "text", "text": "Hello "},
            {"type": "step-start"},
            {"type": "text", "text": "there"},
        ]}
        assert message_text(message) == "Hello there"

    def test_query_text_separates_parts(self):
        message = {"role": "user", "parts": [
            {"type": "text", "text": "Hello"},
            {"type": "step-start"},
            {"type": "text", "text": "there "},
            {"type": "text", "text": "  "},
        ]}
        assert message_text(message) == "Hellothere   "
        assert message_query_text(message) == "Hello there"

    def test_plain_content_is_one_text_part(self):
        assert message_parts({"role": "user", "content": "Hi"}) == [TextPart(text="Hi")]
        assert message_parts({"role": "user", "content": ""}) == []

    def test_model_messages_pair_tool_calls_with_results(self):
        messages = [
            {"role": "user", "content": "Find kelp articles"},
            {"role": "assistant", "parts": [
                {"type": "text", "text": "Searching."},
                {
                    "type": "tool-webSearch", "toolCallId": "c1",
                    "state": "output-available", "input": {"query": "kelp"},
                    "output": {"result_count": 0},
                },
                {
                    "type": "tool-readWebPage", "toolCallId": "c2",
                    "state": "input-available", "input": {"url": "https://example.org"},
                },
                {"type": "text", "text": "Nothing found."},
            ]},
        ]

        converted = to_model_messages(messages)

        assert converted[0] == {"role": "user", "content": "Find kelp articles"}
        assert converted[1]["content"] == "Searching."
        assert converted[1]["tool_calls"][0]["function"] == {
            "name": "webSearch",
            "arguments": json.dumps({"query": "kelp"}),
        }
        assert converted[2] == {
            "role": "tool",
            "tool_call_id": "c1",
            "content": json.dumps({"result_count": 0}),
        }
        # The unfinished call has no result and is dropped
        assert converted[3] == {"role": "assistant", "content": "Nothing found."}
        assert len(converted) == 4

    def test_failed_tool_result_is_reported_to_model(self):
        converted = to_model_messages([{"role": "assistant", "parts": [{
            "type": "tool-webSearch", "toolCallId": "c1",
            "state": "output-error", "input": {"query": "q"}, "errorText": "timeout",
        }]}])

        assert json.loads(converted[1]["content"]) == {"success": False, "error": "timeout"}
