"""Language-model access through LiteLLM.

``get_model`` builds an independent handle per call from explicit
(provider, model, api_key); no client is cached at module level. Handles
support one-shot completion and streaming tool-calling generation.
"""
from dataclasses import dataclass, field
from typing import List, Dict, Any, Optional, AsyncIterator
import litellm
import structlog

logger = structlog.get_logger()

# Disable LiteLLM verbose logging
litellm.suppress_debug_info = True

# Provider name -> LiteLLM model prefix
_PROVIDER_PREFIX = {
    "openai": "openai",
    "anthropic": "anthropic",
    "google": "gemini",
    "openrouter": "openrouter",
}


@dataclass
class ToolCallFragment:
    """A piece of a streamed tool call; arguments arrive in fragments."""

    index: int
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""


@dataclass
class ModelDelta:
    """One streamed increment from the model."""

    text: str = ""
    tool_calls: List[ToolCallFragment] = field(default_factory=list)


@dataclass(frozen=True)
class ModelHandle:
    """A provider/model/key triple that can generate text."""

    provider: str
    model: str
    api_key: str = field(repr=False)

    @property
    def litellm_model(self) -> str:
        return f"{_PROVIDER_PREFIX[self.provider]}/{self.model}"

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
    ) -> str:
        """One-shot generation.

        Args:
            messages: OpenAI-style message list
            max_tokens: Maximum output tokens
            temperature: Sampling temperature

        Returns:
            The text content of the first choice
        """
        kwargs: Dict[str, Any] = {}
        if max_tokens is not None:
            kwargs["max_tokens"] = max_tokens
        if temperature is not None:
            kwargs["temperature"] = temperature

        logger.info(
            "llm_completion_request",
            provider=self.provider,
            model=self.model,
            message_count=len(messages),
        )

        try:
            response = await litellm.acompletion(
                model=self.litellm_model,
                messages=messages,
                api_key=self.api_key,
                **kwargs,
            )
        except Exception as e:
            logger.error(
                "llm_completion_failed",
                provider=self.provider,
                model=self.model,
                error=str(e),
            )
            raise

        content = response.choices[0].message.content or ""
        logger.info(
            "llm_completion_response",
            provider=self.provider,
            model=self.model,
            response_length=len(content),
        )
        return content

    async def stream(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> AsyncIterator[ModelDelta]:
        """Streaming generation with an optional tool schema.

        Args:
            messages: OpenAI-style message list
            tools: OpenAI function-tool schemas, or None to disable tools

        Yields:
            ModelDelta increments of text and tool-call fragments
        """
        kwargs: Dict[str, Any] = {}
        if tools:
            kwargs["tools"] = tools

        logger.info(
            "llm_stream_request",
            provider=self.provider,
            model=self.model,
            message_count=len(messages),
            tool_count=len(tools or []),
        )

        response = await litellm.acompletion(
            model=self.litellm_model,
            messages=messages,
            api_key=self.api_key,
            stream=True,
            **kwargs,
        )

        async for chunk in response:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta

            fragments = []
            for position, call in enumerate(getattr(delta, "tool_calls", None) or []):
                function = getattr(call, "function", None)
                fragments.append(ToolCallFragment(
                    index=call.index if call.index is not None else position,
                    id=call.id,
                    name=getattr(function, "name", None),
                    arguments=getattr(function, "arguments", None) or "",
                ))

            text = getattr(delta, "content", None) or ""
            if text or fragments:
                yield ModelDelta(text=text, tool_calls=fragments)


def get_model(provider: str, model: str, api_key: str) -> ModelHandle:
    """Build a model handle from explicit parameters.

    Args:
        provider: One of openai, anthropic, google, openrouter
        model: Provider-specific model name
        api_key: Decrypted API key

    Returns:
        A new ModelHandle

    Raises:
        ValueError: For an unknown provider or a missing key
    """
    if provider not in _PROVIDER_PREFIX:
        raise ValueError(
            f"Unknown provider '{provider}'. "
            f"Supported: {', '.join(_PROVIDER_PREFIX)}"
        )
    if not api_key:
        raise ValueError(f"An API key is required for provider '{provider}'")

    return ModelHandle(provider=provider, model=model, api_key=api_key)
