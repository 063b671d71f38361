"""Research document and slide deck generation.

Builds a grounded prompt from a project's sources and recent chat history
and asks the preferred available model for HTML output.
"""
import re
from dataclasses import dataclass
from typing import Callable, List, Dict, Optional
import structlog

from papertrail import config, credentials, db
from papertrail.errors import StoreWriteError
from papertrail.llm_client import ModelHandle, get_model
from papertrail.memory.manager import ConversationManager
from papertrail.prompts import (
    NO_SOURCES_CONTEXT,
    build_generation_system_prompt,
    build_generation_user_prompt,
)
from papertrail.rag.retriever import Retriever, format_context
from papertrail.storage import ObjectStorage

logger = structlog.get_logger()

GENERATION_KINDS = ("document", "slides")
DEFAULT_TITLES = {"document": "Research Document", "slides": "Research Presentation"}
MAX_SLIDE_IMAGES = 10
MAX_GENERATION_TOKENS = 8000

_CODE_FENCE = re.compile(r"^```(?:html)?\s*|\s*```$", re.IGNORECASE)


@dataclass
class GeneratedDocument:
    html: str
    title: str

    def to_dict(self) -> Dict[str, str]:
        return {"html": self.html, "title": self.title}


def short_title(prompt: Optional[str], kind: str, max_length: int = 60) -> str:
    """Derive a short display title from the user's prompt."""
    prompt = " ".join((prompt or "").split())
    if not prompt:
        return DEFAULT_TITLES.get(kind, DEFAULT_TITLES["document"])
    if len(prompt) <= max_length:
        return prompt
    return prompt[:max_length].rsplit(" ", 1)[0] + "..."


def strip_code_fences(html: str) -> str:
    return _CODE_FENCE.sub("", html.strip()).strip()


class DocumentGenerator:
    """Generates HTML documents and slide decks from project sources."""

    def __init__(
        self,
        storage: Optional[ObjectStorage] = None,
        key_lookup: Optional[Callable[[str, str], Optional[str]]] = None,
        retriever: Optional[Retriever] = None,
        manager: Optional[ConversationManager] = None,
    ):
        """Initialize the generator.

        Args:
            storage: Object storage holding derived source text and images
            key_lookup: ``(user_id, provider) -> key`` credential lookup
            retriever: Retriever for prompt-focused context; without one the
                full text of every ready source is used
            manager: Conversation manager for recent chat context
        """
        self.storage = storage or ObjectStorage()
        self.key_lookup = key_lookup or credentials.get_api_key
        self.retriever = retriever
        self.manager = manager or ConversationManager()

    def select_model(self, user_id: str) -> ModelHandle:
        """Pick the first generation model the user has a key for.

        Raises:
            ValueError: If no generation provider key is configured
        """
        for provider, model_name in config.GENERATION_MODELS:
            api_key = self.key_lookup(user_id, provider)
            if api_key:
                return get_model(provider, model_name, api_key)
        raise ValueError(
            "No API key configured. Add an OpenAI, Anthropic or Google key to generate documents."
        )

    async def generate(
        self,
        project_id: str,
        user_id: str,
        kind: str = "document",
        prompt: Optional[str] = None,
        title: Optional[str] = None,
        model: Optional[ModelHandle] = None,
    ) -> GeneratedDocument:
        """Generate a document or slide deck.

        Args:
            project_id: Project whose sources ground the output
            user_id: Owner scope
            kind: "document" or "slides"
            prompt: Optional topic or instructions
            title: Optional explicit title
            model: Model to use (preferred available provider if not provided)

        Returns:
            GeneratedDocument with HTML and title

        Raises:
            ValueError: For an unknown kind or no configured provider
        """
        if kind not in GENERATION_KINDS:
            raise ValueError(f"Unknown generation type '{kind}'. Supported: {', '.join(GENERATION_KINDS)}")

        model = model or self.select_model(user_id)
        sources = db.list_sources(project_id, user_id, status="ready")

        context = await self._source_context(project_id, user_id, prompt, sources)
        chat_context = self.manager.format_chat_context(project_id, user_id)
        image_urls = self._image_urls(sources) if kind == "slides" else []

        title = title or short_title(prompt, kind)
        topic = prompt or title

        logger.info(
            "generation_started",
            project_id=project_id,
            kind=kind,
            provider=model.provider,
            source_count=len(sources),
            image_count=len(image_urls),
        )

        html = await model.complete(
            [
                {"role": "system", "content": build_generation_system_prompt(kind, len(image_urls))},
                {
                    "role": "user",
                    "content": build_generation_user_prompt(
                        kind, topic, context, chat_context, image_urls
                    ),
                },
            ],
            max_tokens=MAX_GENERATION_TOKENS,
        )
        html = strip_code_fences(html)

        logger.info("generation_completed", project_id=project_id, kind=kind, html_length=len(html))
        return GeneratedDocument(html=html, title=title)

    async def _source_context(self, project_id, user_id, prompt, sources) -> str:
        """Focused retrieval context when possible, else every ready source's text."""
        if prompt and self.retriever is not None:
            chunks = await self.retriever.retrieve(
                prompt,
                project_id,
                user_id,
                match_count=config.GENERATION_MATCH_COUNT,
                match_threshold=config.GENERATION_MATCH_THRESHOLD,
            )
            if chunks:
                return format_context(chunks)

        if not sources:
            return NO_SOURCES_CONTEXT

        sections = []
        for number, source in enumerate(sources, 1):
            text = self._source_text(source)
            if text:
                sections.append(f"[Source {number}: {source.title}]\n{text}")
        return "\n\n---\n\n".join(sections) or NO_SOURCES_CONTEXT

    def _source_text(self, source) -> str:
        if source.file_path:
            try:
                text = self.storage.download(source.file_path).decode("utf-8", errors="replace")
                return text[: config.STORED_TEXT_LIMIT]
            except (OSError, StoreWriteError) as e:
                logger.warning("source_text_unavailable", source_id=source.id, error=str(e))
        return source.content or ""

    def _image_urls(self, sources) -> List[str]:
        urls = []
        for source in sources:
            for path in source.metadata.get("image_paths", []):
                urls.append(self.storage.get_public_url(path))
        return urls[:MAX_SLIDE_IMAGES]
