"""Streaming research chat with bounded tool calling.

A turn retrieves source context, then alternates model generation and tool
execution until the model answers without tools or the step cap is hit.
Every step is surfaced as a stream event dict; the HTTP layer encodes them
as NDJSON.
"""
import json
import uuid
from typing import List, Dict, Any, Optional, AsyncIterator
import structlog

from papertrail import config
from papertrail.chat.parts import Part, TextPart, ToolInvocation, message_query_text, to_model_messages
from papertrail.llm_client import ModelHandle
from papertrail.memory.manager import ConversationManager
from papertrail.prompts import NO_SOURCES_CONTEXT, build_context_prompt
from papertrail.rag.retriever import Retriever, format_context, sources_summary
from papertrail.tools.registry import ToolRegistry, ToolResult

logger = structlog.get_logger()

STEP_LIMIT_NOTICE = (
    "I reached the limit of research steps for one message. "
    "Ask me to continue if you want me to keep going."
)


def _new_tool_call_id() -> str:
    return f"call_{uuid.uuid4().hex[:24]}"


class ChatLoop:
    """Model/tool alternation for one assistant message.

    After the stream ends, ``parts`` holds the assistant's text and tool
    invocations in order, and ``error`` is set if the model call failed.
    """

    def __init__(
        self,
        model: ModelHandle,
        registry: ToolRegistry,
        max_steps: Optional[int] = None,
    ):
        self.model = model
        self.registry = registry
        self.max_steps = max_steps or config.MAX_TOOL_STEPS
        self.parts: List[Part] = []
        self.model_calls = 0
        self.tool_round_trips = 0
        self.error: Optional[str] = None

    async def run(self, messages: List[Dict[str, Any]]) -> AsyncIterator[Dict[str, Any]]:
        """Drive the loop over OpenAI-style model messages.

        Args:
            messages: System prompt plus history, in model format

        Yields:
            Stream event dicts
        """
        messages = list(messages)
        schemas = self.registry.schemas() or None

        while True:
            tools_allowed = self.tool_round_trips < self.max_steps
            text = ""
            fragments: Dict[int, Dict[str, str]] = {}

            try:
                async for delta in self.model.stream(
                    messages, tools=schemas if tools_allowed else None
                ):
                    if delta.text:
                        text += delta.text
                        yield {"type": "text-delta", "delta": delta.text}
                    for fragment in delta.tool_calls:
                        call = fragments.setdefault(
                            fragment.index, {"id": "", "name": "", "arguments": ""}
                        )
                        if fragment.id:
                            call["id"] = fragment.id
                        if fragment.name:
                            call["name"] = fragment.name
                        call["arguments"] += fragment.arguments
            except Exception as e:
                self.error = str(e) or type(e).__name__
                logger.exception(
                    "chat_model_call_failed",
                    provider=self.model.provider,
                    model=self.model.model,
                    error=self.error,
                )
                if text:
                    self.parts.append(TextPart(text=text))
                yield {"type": "error", "errorText": self.error}
                return

            self.model_calls += 1

            if not tools_allowed or not fragments:
                if not text and not tools_allowed:
                    logger.warning("chat_step_limit_reached", steps=self.tool_round_trips)
                    text = STEP_LIMIT_NOTICE
                    yield {"type": "text-delta", "delta": text}
                if text:
                    self.parts.append(TextPart(text=text))
                yield {"type": "finish-step"}
                return

            if text:
                self.parts.append(TextPart(text=text))

            calls = [fragments[index] for index in sorted(fragments)]
            for call in calls:
                call["id"] = call["id"] or _new_tool_call_id()

            messages.append({
                "role": "assistant",
                "content": text or None,
                "tool_calls": [
                    {
                        "id": call["id"],
                        "type": "function",
                        "function": {"name": call["name"], "arguments": call["arguments"] or "{}"},
                    }
                    for call in calls
                ],
            })

            for call in calls:
                invocation = await self._invoke(call)
                self.parts.append(invocation)
                yield {
                    "type": "tool-input-available",
                    "toolCallId": invocation.tool_call_id,
                    "toolName": invocation.name,
                    "input": invocation.input,
                }
                if invocation.state == "output-available":
                    yield {
                        "type": "tool-output-available",
                        "toolCallId": invocation.tool_call_id,
                        "output": invocation.output,
                    }
                    result_payload = invocation.output
                else:
                    yield {
                        "type": "tool-output-error",
                        "toolCallId": invocation.tool_call_id,
                        "errorText": invocation.error_text,
                    }
                    result_payload = {"success": False, "error": invocation.error_text}

                messages.append({
                    "role": "tool",
                    "tool_call_id": invocation.tool_call_id,
                    "content": json.dumps(result_payload),
                })

            self.tool_round_trips += 1
            yield {"type": "finish-step"}

    async def _invoke(self, call: Dict[str, str]) -> ToolInvocation:
        """Execute one accumulated tool call into a finished invocation."""
        try:
            args = json.loads(call["arguments"] or "{}")
            if not isinstance(args, dict):
                raise ValueError("tool arguments must be a JSON object")
        except ValueError as e:
            logger.warning("tool_arguments_invalid", tool_name=call["name"], error=str(e))
            args = {}
            result = ToolResult(success=False, error=f"Invalid tool arguments: {e}")
        else:
            result = await self.registry.execute_tool(call["name"], args)

        if result.success:
            return ToolInvocation(
                tool_call_id=call["id"],
                name=call["name"],
                input=args,
                state="output-available",
                output=result.to_output(),
            )
        return ToolInvocation(
            tool_call_id=call["id"],
            name=call["name"],
            input=args,
            state="output-error",
            error_text=result.error,
        )


async def run_chat_turn(
    messages: List[Dict[str, Any]],
    project_id: str,
    user_id: str,
    model: ModelHandle,
    registry: Optional[ToolRegistry] = None,
    retriever: Optional[Retriever] = None,
    manager: Optional[ConversationManager] = None,
    session_id: Optional[str] = None,
    max_steps: Optional[int] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """Stream one research chat turn.

    Args:
        messages: Full client message history, newest last
        project_id: Project scope for retrieval and tools
        user_id: Owner scope
        model: Model handle for generation
        registry: Tools for this turn (none if not provided)
        retriever: Retriever for source context; without one the prompt
            says no sources are available
        manager: Conversation manager used to persist the exchange
        session_id: Existing chat session; nothing is persisted without one
        max_steps: Tool round-trip cap (default from config)

    Yields:
        Stream event dicts, starting with ``start`` and ending with
        ``finish`` or ``error``
    """
    user_messages = [m for m in messages if m.get("role") == "user"]
    user_text = message_query_text(user_messages[-1]) if user_messages else ""

    chunks = []
    if retriever is not None and user_text:
        chunks = await retriever.retrieve(user_text, project_id, user_id)
        context = format_context(chunks)
    else:
        context = NO_SOURCES_CONTEXT
    sources_used = sources_summary(chunks)

    logger.info(
        "chat_turn_started",
        project_id=project_id,
        session_id=session_id,
        message_count=len(messages),
        context_chunks=len(chunks),
    )

    model_messages = [{"role": "system", "content": build_context_prompt(context)}]
    model_messages.extend(to_model_messages(messages))

    yield {
        "type": "start",
        "messageId": str(uuid.uuid4()),
        "messageMetadata": {"sourcesUsed": sources_used},
    }

    loop = ChatLoop(model, registry or ToolRegistry(), max_steps)
    async for event in loop.run(model_messages):
        yield event

    if loop.error is not None:
        return

    logger.info(
        "chat_turn_completed",
        session_id=session_id,
        model_calls=loop.model_calls,
        tool_round_trips=loop.tool_round_trips,
    )

    if session_id and manager is not None:
        try:
            manager.save_exchange(
                session_id,
                project_id,
                user_id,
                user_text,
                loop.parts,
                sources_used,
            )
        except Exception as e:
            logger.exception("chat_persist_failed", session_id=session_id, error=str(e))

    yield {"type": "finish"}
