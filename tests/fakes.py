"""Fake providers for tests: scripted model handles and embedding clients."""
from typing import List, Dict, Any, Optional

from papertrail.llm_client import ModelDelta, ToolCallFragment


class FakeEmbeddingClient:
    """Embeds texts by looking up fixed vectors; unknown texts get ``default``."""

    def __init__(self, vectors: Optional[Dict[str, List[float]]] = None, default=None):
        self.vectors = vectors or {}
        self.default = default or [1.0, 0.0, 0.0, 0.0]
        self.batches: List[List[str]] = []
        self.queries: List[str] = []

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        self.batches.append(list(texts))
        return [self.vectors.get(text, self.default) for text in texts]

    async def embed_query(self, text: str) -> List[float]:
        self.queries.append(text)
        return self.vectors.get(text, self.default)


def text_step(*pieces: str) -> List[ModelDelta]:
    """A scripted model step that streams text."""
    return [ModelDelta(text=piece) for piece in pieces]


def tool_step(name: str, arguments: str, call_id: str = "call_1") -> List[ModelDelta]:
    """A scripted model step requesting one tool call, arguments split in two."""
    middle = len(arguments) // 2
    return [
        ModelDelta(tool_calls=[
            ToolCallFragment(index=0, id=call_id, name=name, arguments=arguments[:middle])
        ]),
        ModelDelta(tool_calls=[ToolCallFragment(index=0, arguments=arguments[middle:])]),
    ]


class FakeModel:
    """Model handle replaying scripted steps and recording every call.

    ``steps`` holds one delta list per model call; once exhausted the last
    step repeats. ``completion`` is what ``complete`` returns.
    """

    provider = "openai"
    model = "fake-model"

    def __init__(self, steps=None, completion: str = "", error: Optional[Exception] = None):
        self.steps = steps or [text_step("Hello")]
        self.completion = completion
        self.error = error
        self.stream_calls: List[Dict[str, Any]] = []
        self.complete_calls: List[Dict[str, Any]] = []

    async def complete(self, messages, max_tokens=None, temperature=None) -> str:
        self.complete_calls.append({"messages": messages, "max_tokens": max_tokens})
        if self.error:
            raise self.error
        return self.completion

    async def stream(self, messages, tools=None):
        self.stream_calls.append({"messages": list(messages), "tools": tools})
        if self.error:
            raise self.error
        step = self.steps[min(len(self.stream_calls) - 1, len(self.steps) - 1)]
        for delta in step:
            yield delta
