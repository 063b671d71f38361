"""Tests for the streaming chat tool loop."""
import json
from unittest.mock import MagicMock

from pydantic import BaseModel

from papertrail.chat.loop import STEP_LIMIT_NOTICE, ChatLoop, run_chat_turn
from papertrail.chat.parts import TextPart, ToolInvocation
from papertrail.errors import StoreWriteError
from papertrail.memory import ConversationManager
from papertrail.models import RetrievedChunk
from papertrail.prompts import NO_SOURCES_CONTEXT
from papertrail.tools.registry import Tool, ToolRegistry
from tests.fakes import FakeModel, text_step, tool_step


class EchoInput(BaseModel):
    text: str


class EchoOutput(BaseModel):
    echo: str


def _registry(calls=None, fail=False):
    calls = calls if calls is not None else []

    async def handler(input_data: EchoInput) -> EchoOutput:
        calls.append(input_data.text)
        if fail:
            raise RuntimeError("upstream unavailable")
        return EchoOutput(echo=input_data.text.upper())

    registry = ToolRegistry()
    registry.register(Tool(
        name="echo",
        description="Echo text back",
        input_model=EchoInput,
        output_model=EchoOutput,
        handler=handler,
    ))
    return registry


async def _collect(events):
    return [event async for event in events]


USER_MESSAGES = [{"role": "user", "parts": [{"type": "text", "text": "What do reefs need?"}]}]


class TestChatLoop:
    async def test_plain_answer(self):
        model = FakeModel([text_step("Warm ", "water.")])
        loop = ChatLoop(model, _registry())

        events = await _collect(loop.run([{"role": "user", "content": "hi"}]))

        assert [e["type"] for e in events] == ["text-delta", "text-delta", "finish-step"]
        assert loop.parts == [TextPart(text="Warm water.")]
        assert loop.model_calls == 1
        assert model.stream_calls[0]["tools"][0]["function"]["name"] == "echo"

    async def test_tool_call_then_answer(self):
        calls = []
        model = FakeModel([tool_step("echo", '{"text": "coral"}', call_id="c1"), text_step("Done.")])
        loop = ChatLoop(model, _registry(calls))

        events = await _collect(loop.run([{"role": "user", "content": "hi"}]))

        assert calls == ["coral"]
        assert events[0] == {
            "type": "tool-input-available",
            "toolCallId": "c1",
            "toolName": "echo",
            "input": {"text": "coral"},
        }
        assert events[1] == {
            "type": "tool-output-available",
            "toolCallId": "c1",
            "output": {"echo": "CORAL"},
        }
        assert loop.parts == [
            ToolInvocation(
                tool_call_id="c1",
                name="echo",
                input={"text": "coral"},
                state="output-available",
                output={"echo": "CORAL"},
            ),
            TextPart(text="Done."),
        ]

        second_call = model.stream_calls[1]["messages"]
        assert second_call[-2]["tool_calls"][0]["function"]["arguments"] == '{"text": "coral"}'
        assert second_call[-1] == {
            "role": "tool",
            "tool_call_id": "c1",
            "content": json.dumps({"echo": "CORAL"}),
        }

    async def test_terminates_after_five_tool_round_trips(self):
        calls = []
        model = FakeModel([tool_step("echo", '{"text": "again"}')])
        loop = ChatLoop(model, _registry(calls), max_steps=5)

        events = await _collect(loop.run([{"role": "user", "content": "loop forever"}]))

        assert len(calls) == 5
        assert loop.tool_round_trips == 5
        assert loop.model_calls == 6
        assert model.stream_calls[-1]["tools"] is None
        assert loop.parts[-1] == TextPart(text=STEP_LIMIT_NOTICE)
        assert events[-1] == {"type": "finish-step"}
        assert sum(1 for e in events if e["type"] == "finish-step") == 6

    async def test_final_answer_after_cap_uses_model_text(self):
        steps = [tool_step("echo", '{"text": "x"}')] * 2 + [text_step("Summary.")]
        loop = ChatLoop(FakeModel(steps), _registry(), max_steps=2)

        await _collect(loop.run([{"role": "user", "content": "go"}]))

        assert loop.parts[-1] == TextPart(text="Summary.")

    async def test_tool_failure_is_structured_output(self):
        model = FakeModel([tool_step("echo", '{"text": "x"}', call_id="c9"), text_step("Sorry.")])
        loop = ChatLoop(model, _registry(fail=True))

        events = await _collect(loop.run([{"role": "user", "content": "go"}]))

        error_event = next(e for e in events if e["type"] == "tool-output-error")
        assert error_event["toolCallId"] == "c9"
        assert "upstream unavailable" in error_event["errorText"]
        tool_message = model.stream_calls[1]["messages"][-1]
        assert json.loads(tool_message["content"])["success"] is False
        assert loop.parts[-1] == TextPart(text="Sorry.")

    async def test_invalid_arguments_do_not_reach_the_tool(self):
        calls = []
        model = FakeModel([tool_step("echo", "{not json"), text_step("ok")])
        loop = ChatLoop(model, _registry(calls))

        events = await _collect(loop.run([{"role": "user", "content": "go"}]))

        assert calls == []
        error_event = next(e for e in events if e["type"] == "tool-output-error")
        assert error_event["errorText"].startswith("Invalid tool arguments")

    async def test_unknown_tool(self):
        model = FakeModel([tool_step("missing", "{}"), text_step("ok")])
        loop = ChatLoop(model, _registry())

        events = await _collect(loop.run([{"role": "user", "content": "go"}]))

        error_event = next(e for e in events if e["type"] == "tool-output-error")
        assert error_event["errorText"] == "Tool 'missing' not found"

    async def test_model_error_ends_stream(self):
        loop = ChatLoop(FakeModel(error=RuntimeError("rate limited")), _registry())

        events = await _collect(loop.run([{"role": "user", "content": "go"}]))

        assert events == [{"type": "error", "errorText": "rate limited"}]
        assert loop.error == "rate limited"


class FakeRetriever:
    def __init__(self, chunks):
        self.chunks = chunks
        self.queries = []

    async def retrieve(self, query, project_id, user_id, match_count=None, match_threshold=None):
        self.queries.append(query)
        return self.chunks


class TestRunChatTurn:
    async def test_without_retriever_uses_no_sources_prompt(self):
        model = FakeModel([text_step("Hi.")])

        events = await _collect(run_chat_turn(USER_MESSAGES, "p1", "u1", model))

        assert events[0]["type"] == "start"
        assert events[0]["messageMetadata"] == {"sourcesUsed": []}
        assert events[-1] == {"type": "finish"}
        system_prompt = model.stream_calls[0]["messages"][0]["content"]
        assert NO_SOURCES_CONTEXT in system_prompt
        assert model.stream_calls[0]["tools"] is None

    async def test_retrieved_context_and_sources_used(self):
        chunk = RetrievedChunk(
            id="c1", source_id="s1", content="Reefs need light.",
            chunk_index=0, similarity=0.9, source_title="Reef Biology",
        )
        retriever = FakeRetriever([chunk])
        model = FakeModel([text_step("They need light [Source 1].")])

        events = await _collect(run_chat_turn(
            USER_MESSAGES, "p1", "u1", model, retriever=retriever
        ))

        assert retriever.queries == ["What do reefs need?"]
        assert events[0]["messageMetadata"]["sourcesUsed"] == [{"id": "s1", "title": "Reef Biology"}]
        system_prompt = model.stream_calls[0]["messages"][0]["content"]
        assert "[Source 1: Reef Biology]\nReefs need light." in system_prompt

    async def test_multi_part_question_is_space_joined(self, temp_db):
        retriever = FakeRetriever([])
        manager = ConversationManager()
        session = manager.create_session("p1", "u1")
        messages = [{"role": "user", "parts": [
            {"type": "text", "text": "Coral reefs"},
            {"type": "text", "text": "need what?"},
        ]}]

        await _collect(run_chat_turn(
            messages, "p1", "u1", FakeModel(), retriever=retriever,
            manager=manager, session_id=session.id,
        ))

        assert retriever.queries == ["Coral reefs need what?"]
        user, _ = manager.get_messages(session.id)
        assert user.content == "Coral reefs need what?"

    async def test_persists_exchange_with_parts(self, temp_db):
        manager = ConversationManager()
        session = manager.create_session("p1", "u1")
        model = FakeModel([tool_step("echo", '{"text": "reef"}', call_id="c1"), text_step("Answer.")])

        events = await _collect(run_chat_turn(
            USER_MESSAGES, "p1", "u1", model,
            registry=_registry(), manager=manager, session_id=session.id,
        ))

        assert events[-1] == {"type": "finish"}
        user, assistant = manager.get_messages(session.id)
        assert (user.role, user.content) == ("user", "What do reefs need?")
        assert assistant.content == "Answer."
        assert assistant.metadata["sourcesUsed"] == []
        assert [p["type"] for p in assistant.metadata["parts"]] == ["tool-echo", "text"]
        assert manager.get_session(session.id).title == "What do reefs need?"

    async def test_persistence_failure_does_not_reach_client(self):
        manager = MagicMock()
        manager.save_exchange.side_effect = StoreWriteError("database is locked")

        events = await _collect(run_chat_turn(
            USER_MESSAGES, "p1", "u1", FakeModel(), manager=manager, session_id="s1",
        ))

        manager.save_exchange.assert_called_once()
        assert events[-1] == {"type": "finish"}

    async def test_nothing_persisted_without_chat_id(self):
        manager = MagicMock()

        await _collect(run_chat_turn(USER_MESSAGES, "p1", "u1", FakeModel(), manager=manager))

        manager.save_exchange.assert_not_called()

    async def test_model_error_is_terminal_and_not_persisted(self):
        manager = MagicMock()

        events = await _collect(run_chat_turn(
            USER_MESSAGES, "p1", "u1", FakeModel(error=RuntimeError("invalid api key")),
            manager=manager, session_id="s1",
        ))

        assert [e["type"] for e in events] == ["start", "error"]
        manager.save_exchange.assert_not_called()
