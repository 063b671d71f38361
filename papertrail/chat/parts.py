"""Message parts: text spans and tool invocations.

Clients send tool parts in several wire shapes (static ``tool-<name>``,
``dynamic-tool``, and the older ``tool-invocation`` wrapper). Everything is
normalized here into ``TextPart`` / ``ToolInvocation`` so the chat loop and
the store never branch on wire format.
"""
import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

TOOL_STATES = ("input-streaming", "input-available", "output-available", "output-error")

# Older clients report call/result states instead
_LEGACY_STATES = {
    "partial-call": "input-streaming",
    "call": "input-available",
    "result": "output-available",
}


@dataclass
class TextPart:
    text: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "text", "text": self.text}


@dataclass
class ToolInvocation:
    """One tool call and, once it ran, its output."""

    tool_call_id: str
    name: str
    input: Dict[str, Any] = field(default_factory=dict)
    state: str = "input-available"
    output: Any = None
    error_text: Optional[str] = None

    @property
    def finished(self) -> bool:
        return self.state in ("output-available", "output-error")

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": f"tool-{self.name}",
            "toolCallId": self.tool_call_id,
            "state": self.state,
            "input": self.input,
        }
        if self.state == "output-available":
            data["output"] = self.output
        if self.state == "output-error":
            data["errorText"] = self.error_text
        return data


Part = Union[TextPart, ToolInvocation]


def _tool_state(value: Any) -> str:
    """Known tool states pass through; anything else counts as not yet run."""
    return value if value in TOOL_STATES else "input-available"


def normalize_part(raw: Dict[str, Any]) -> Optional[Part]:
    """Map one wire-format part to a Part, or None for parts we don't keep."""
    part_type = raw.get("type", "")

    if part_type == "text":
        return TextPart(text=raw.get("text", ""))

    if part_type == "dynamic-tool":
        return ToolInvocation(
            tool_call_id=raw.get("toolCallId", ""),
            name=raw.get("toolName", ""),
            input=raw.get("input") or {},
            state=_tool_state(raw.get("state")),
            output=raw.get("output"),
            error_text=raw.get("errorText"),
        )

    if part_type == "tool-invocation":
        invocation = raw.get("toolInvocation") or {}
        return ToolInvocation(
            tool_call_id=invocation.get("toolCallId", ""),
            name=invocation.get("toolName", ""),
            input=invocation.get("args") or {},
            state=_LEGACY_STATES.get(invocation.get("state"), "input-available"),
            output=invocation.get("result"),
        )

    if part_type.startswith("tool-"):
        return ToolInvocation(
            tool_call_id=raw.get("toolCallId", ""),
            name=part_type[len("tool-"):],
            input=raw.get("input") or {},
            state=_tool_state(raw.get("state")),
            output=raw.get("output"),
            error_text=raw.get("errorText"),
        )

    return None


def message_parts(message: Dict[str, Any]) -> List[Part]:
    """Normalized parts of a client message; plain ``content`` becomes one text part."""
    raw_parts = message.get("parts")
    if raw_parts is None:
        content = message.get("content")
        return [TextPart(text=content)] if isinstance(content, str) and content else []

    parts = []
    for raw in raw_parts:
        part = normalize_part(raw)
        if part is not None:
            parts.append(part)
    return parts


def parts_text(parts: List[Part]) -> str:
    return "".join(p.text for p in parts if isinstance(p, TextPart))


def message_text(message: Dict[str, Any]) -> str:
    return parts_text(message_parts(message))


def message_query_text(message: Dict[str, Any]) -> str:
    """Text of a user message for search and storage, one space between parts."""
    spans = (p.text.strip() for p in message_parts(message) if isinstance(p, TextPart))
    return " ".join(span for span in spans if span)


def to_model_messages(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Convert client messages to OpenAI-style model messages.

    Finished tool invocations become an assistant ``tool_calls`` message plus
    a ``tool`` result message; unfinished ones are dropped since they have no
    result to pair with.
    """
    model_messages: List[Dict[str, Any]] = []

    for message in messages:
        role = message.get("role")
        parts = message_parts(message)

        if role in ("user", "system"):
            text = parts_text(parts)
            if text:
                model_messages.append({"role": role, "content": text})
            continue

        if role != "assistant":
            continue

        buffer = ""
        for part in parts:
            if isinstance(part, TextPart):
                buffer += part.text
                continue
            if not part.finished:
                continue

            model_messages.append({
                "role": "assistant",
                "content": buffer or None,
                "tool_calls": [{
                    "id": part.tool_call_id,
                    "type": "function",
                    "function": {"name": part.name, "arguments": json.dumps(part.input)},
                }],
            })
            result = part.output if part.state == "output-available" else {
                "success": False,
                "error": part.error_text,
            }
            model_messages.append({
                "role": "tool",
                "tool_call_id": part.tool_call_id,
                "content": json.dumps(result),
            })
            buffer = ""

        if buffer:
            model_messages.append({"role": "assistant", "content": buffer})

    return model_messages
