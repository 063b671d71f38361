"""Ingest pipeline for turning sources into searchable chunks.

Orchestrates:
- Extraction by source type
- Derived text artifact upload
- Text chunking
- Embedding generation (non-fatal)
- Best-effort featured image download
- Atomic chunk replacement and the ``ready`` status flip
"""
import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Awaitable, Callable, List, Dict, Any, Optional, Tuple, Union
import httpx
import structlog

from papertrail import config, credentials, db
from papertrail.errors import (
    PapertrailError,
    ExtractionError,
    EmptyExtractionError,
    EmbeddingProviderError,
    SourceNotFoundError,
    StoreWriteError,
)
from papertrail.extract import (
    ScrapedPage,
    describe_image,
    extract_pdf,
    extract_text,
    fetch_transcript,
    scrape_url,
)
from papertrail.llm_client import get_model
from papertrail.models import Source, Chunk
from papertrail.rag.chunker import TextChunker
from papertrail.rag.embeddings import EmbeddingClient
from papertrail.storage import ObjectStorage, make_prefix

logger = structlog.get_logger()

EMPTY_EXTRACTION_MESSAGE = "No text could be extracted from this source"
CANCELLED_MESSAGE = "Processing was cancelled"
NO_EMBEDDING_KEY_ADVISORY = (
    "No OpenAI API key configured: content was stored without embeddings "
    "and will not appear in chat search."
)


# ---------------------------------------------------------------------------
# Best-effort reporting
# ---------------------------------------------------------------------------

@dataclass
class Succeeded:
    """A best-effort item that completed."""

    item: str
    value: Any = None


@dataclass
class Skipped:
    """A best-effort item that failed and was skipped."""

    item: str
    reason: str


@dataclass
class BestEffortReport:
    """Outcome of a sub-step whose individual failures don't fail the source."""

    step: str
    results: List[Union[Succeeded, Skipped]] = field(default_factory=list)

    def add(self, result: Union[Succeeded, Skipped]) -> None:
        self.results.append(result)

    @property
    def succeeded(self) -> List[Succeeded]:
        return [r for r in self.results if isinstance(r, Succeeded)]

    @property
    def skipped(self) -> List[Skipped]:
        return [r for r in self.results if isinstance(r, Skipped)]

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "step": self.step,
            "succeeded": self.succeeded_count,
            "skipped": self.skipped_count,
            "skipped_reasons": [f"{s.item}: {s.reason}" for s in self.skipped],
        }


# ---------------------------------------------------------------------------
# Pipeline records
# ---------------------------------------------------------------------------

@dataclass
class ExtractedContent:
    """Text in hand, ready to be stored, chunked and embedded.

    ``document`` is the body of the derived text artifact; when it is None
    the source's existing ``file_path`` already holds the full text.
    """

    text: str
    preview: str
    document: Optional[str] = None
    file_path: Optional[str] = None
    image_urls: List[str] = field(default_factory=list)
    image_paths: List[str] = field(default_factory=list)


@dataclass
class PersistedContent:
    """Artifacts written for one ingestion run, before the status flip."""

    file_path: Optional[str]
    chunks: List[Chunk]
    derived_paths: List[str]
    image_paths: List[str]
    advisory: Optional[str]
    image_report: BestEffortReport


@dataclass
class IngestResult:
    """Summary returned to callers of the pipeline."""

    source_id: str
    status: str
    chunk_count: int = 0
    embedded: bool = False
    advisory: Optional[str] = None
    reports: Dict[str, BestEffortReport] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source_id": self.source_id,
            "status": self.status,
            "chunk_count": self.chunk_count,
            "embedded": self.embedded,
            "advisory": self.advisory,
            "reports": {name: r.to_dict() for name, r in self.reports.items()},
        }


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _image_extension(content_type: str) -> str:
    content_type = content_type.lower()
    if "png" in content_type:
        return "png"
    if "gif" in content_type:
        return "gif"
    if "webp" in content_type:
        return "webp"
    return "jpg"


def render_page_document(page: ScrapedPage, url: str, title: str) -> str:
    """Markdown text artifact for a scraped web page."""
    parts = [f"# {title}", f"Source: {url}"]
    if page.description:
        parts.append(f"## Summary\n{page.description}")
    parts.append(f"## Content\n\n{page.content}")
    return "\n\n".join(parts)


class IngestPipeline:
    """Pipeline for ingesting sources into the RAG system."""

    def __init__(
        self,
        storage: Optional[ObjectStorage] = None,
        chunker: Optional[TextChunker] = None,
        key_lookup: Optional[Callable[[str, str], Optional[str]]] = None,
        embedding_client_factory: Optional[Callable[[str], EmbeddingClient]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            storage: Object storage for derived artifacts (default bucket if not provided)
            chunker: Text chunker (default config if not provided)
            key_lookup: ``(user_id, provider) -> key`` credential lookup
            embedding_client_factory: Builds an embedding client from an API key
            transport: Optional httpx transport for page and image fetches
        """
        self.storage = storage or ObjectStorage()
        self.chunker = chunker or TextChunker()
        self.key_lookup = key_lookup or credentials.get_api_key
        self.embedding_client_factory = embedding_client_factory or EmbeddingClient
        self.transport = transport

    # -- user-initiated ingestion -------------------------------------------

    async def ingest_source(self, source_id: str, user_id: str) -> IngestResult:
        """Run the full pipeline for an existing source.

        Re-running on a ``ready`` source replaces its chunks and artifacts.

        Args:
            source_id: Source to ingest
            user_id: Owner of the source

        Returns:
            IngestResult for the ``ready`` source

        Raises:
            SourceNotFoundError: If the source doesn't exist for this user
            PapertrailError: Any fatal failure; the source is marked ``error``
            asyncio.CancelledError: Re-raised after marking the source ``error``
        """
        source = db.get_source(source_id, user_id)
        if source is None:
            raise SourceNotFoundError(f"Source not found: {source_id}")

        logger.info("source_ingest_started", source_id=source_id, source_type=source.type)
        db.mark_source_processing(source_id)

        try:
            content = await self._extract(source)
            persisted = await self._persist(
                source.id, source.project_id, user_id, source.title, content
            )

            metadata = {
                key: value
                for key, value in source.metadata.items()
                if key not in ("advisory", "ingest_reports")
            }
            metadata.update({
                "image_paths": persisted.image_paths,
                "derived_paths": persisted.derived_paths,
                "processed_at": _now(),
            })
            if persisted.advisory:
                metadata["advisory"] = persisted.advisory
            if persisted.image_report.results:
                metadata["ingest_reports"] = [persisted.image_report.to_dict()]

            try:
                db.complete_ingestion(
                    source.id,
                    persisted.chunks,
                    file_path=persisted.file_path,
                    content=content.preview,
                    metadata=metadata,
                )
            except StoreWriteError:
                self.storage.remove(persisted.derived_paths)
                raise

        except asyncio.CancelledError:
            logger.warning("source_ingest_cancelled", source_id=source_id)
            db.mark_source_error(source_id, CANCELLED_MESSAGE)
            raise

        except Exception as e:
            message = str(e) or type(e).__name__
            logger.error(
                "source_ingest_failed",
                source_id=source_id,
                error=message,
                error_type=type(e).__name__,
            )
            db.mark_source_error(source_id, message)
            if isinstance(e, PapertrailError):
                raise
            raise ExtractionError(f"Processing failed: {message}") from e

        cleanup_report = self._remove_stale_artifacts(
            source.metadata.get("derived_paths", []), persisted.derived_paths
        )

        logger.info(
            "source_ingested",
            source_id=source_id,
            chunk_count=len(persisted.chunks),
            embedded=persisted.advisory is None,
            images_stored=persisted.image_report.succeeded_count,
            images_skipped=persisted.image_report.skipped_count,
        )

        return IngestResult(
            source_id=source_id,
            status="ready",
            chunk_count=len(persisted.chunks),
            embedded=persisted.advisory is None and bool(persisted.chunks),
            advisory=persisted.advisory,
            reports={"images": persisted.image_report, "cleanup": cleanup_report},
        )

    # -- re-entrant ingestion from the chat agent ---------------------------

    async def ingest_url(
        self,
        project_id: str,
        user_id: str,
        url: str,
        title: Optional[str] = None,
        page: Optional[ScrapedPage] = None,
    ) -> Tuple[Source, IngestResult]:
        """Create a ``ready`` web source in one step.

        Fetches the page when ``page`` is None, otherwise uses the content
        already in hand. The source row and its chunks are written in one
        transaction; if that fails every uploaded file is removed again.

        Args:
            project_id: Project to add the source to
            user_id: Owner
            url: Page URL
            title: Source title (defaults to the page title)
            page: Previously scraped page content

        Returns:
            Tuple of (created Source, IngestResult)

        Raises:
            ExtractionError: If the page can't be fetched or has no text
            StoreWriteError: If uploads or the record insert fail
        """
        if page is None:
            page = await scrape_url(url, transport=self.transport)
        if not page.content.strip():
            raise EmptyExtractionError(EMPTY_EXTRACTION_MESSAGE)

        title = title or page.title
        source_id = str(uuid.uuid4())
        content = ExtractedContent(
            text=page.content,
            preview=(page.description or page.content)[: config.PREVIEW_CHARS],
            document=render_page_document(page, url, title),
            image_urls=page.image_urls,
        )

        persisted = await self._persist(source_id, project_id, user_id, title, content)

        metadata: Dict[str, Any] = {
            "auto_added": True,
            "image_paths": persisted.image_paths,
            "derived_paths": persisted.derived_paths,
            "scraped_at": _now(),
        }
        if persisted.advisory:
            metadata["advisory"] = persisted.advisory

        source = Source(
            id=source_id,
            project_id=project_id,
            user_id=user_id,
            type="url",
            title=title,
            status="ready",
            original_url=url,
            file_path=persisted.file_path,
            content=content.preview,
            metadata=metadata,
        )

        try:
            db.create_source_with_chunks(source, persisted.chunks)
        except Exception as e:
            removed = self.storage.remove(persisted.derived_paths)
            logger.error(
                "web_source_rolled_back",
                url=url,
                removed_paths=len(removed),
                error=str(e),
            )
            if isinstance(e, StoreWriteError):
                raise
            raise StoreWriteError(f"Failed to create source: {e}") from e

        logger.info(
            "web_source_added",
            source_id=source_id,
            url=url,
            chunk_count=len(persisted.chunks),
            images_stored=persisted.image_report.succeeded_count,
        )

        return source, IngestResult(
            source_id=source_id,
            status="ready",
            chunk_count=len(persisted.chunks),
            embedded=persisted.advisory is None and bool(persisted.chunks),
            advisory=persisted.advisory,
            reports={"images": persisted.image_report},
        )

    # -- shared steps -------------------------------------------------------

    def get_adapter(self, source_type: str) -> Callable[[Source], Awaitable[ExtractedContent]]:
        """Look up the extraction adapter for a source type.

        Raises:
            ExtractionError: For an unknown type
        """
        adapters = {
            "pdf": self._extract_pdf,
            "text": self._extract_text,
            "url": self._extract_url,
            "youtube": self._extract_youtube,
            "image": self._extract_image,
        }
        adapter = adapters.get(source_type)
        if adapter is None:
            raise ExtractionError(f"Unsupported source type: {source_type}")
        return adapter

    async def _extract(self, source: Source) -> ExtractedContent:
        content = await self.get_adapter(source.type)(source)
        if not content.text or not content.text.strip():
            raise EmptyExtractionError(EMPTY_EXTRACTION_MESSAGE)
        return content

    def _download_upload(self, source: Source) -> bytes:
        if not source.file_path:
            raise ExtractionError("Source has no uploaded file")
        try:
            return self.storage.download(source.file_path)
        except OSError as e:
            raise ExtractionError(f"Failed to download file: {e}") from e

    async def _extract_pdf(self, source: Source) -> ExtractedContent:
        text = extract_pdf(self._download_upload(source))
        return ExtractedContent(
            text=text,
            preview=text[: config.PREVIEW_CHARS],
            document=f"# {source.title}\n\nSource: PDF Document\n\n## Content\n\n{text}",
        )

    async def _extract_text(self, source: Source) -> ExtractedContent:
        text = extract_text(self._download_upload(source))
        return ExtractedContent(
            text=text,
            preview=text[: config.PREVIEW_CHARS],
            file_path=source.file_path,
        )

    async def _extract_url(self, source: Source) -> ExtractedContent:
        if not source.original_url:
            raise ExtractionError("Source has no URL")
        page = await scrape_url(source.original_url, transport=self.transport)
        return ExtractedContent(
            text=page.content,
            preview=(page.description or page.content)[: config.PREVIEW_CHARS],
            document=render_page_document(page, source.original_url, source.title),
            image_urls=page.image_urls,
        )

    async def _extract_youtube(self, source: Source) -> ExtractedContent:
        transcript = await fetch_transcript(source.original_url or "")
        return ExtractedContent(
            text=transcript,
            preview=transcript[: config.PREVIEW_CHARS],
            document=(
                f"# {source.title}\n\nSource: {source.original_url}\n\n"
                f"## Transcript\n\n{transcript}"
            ),
        )

    async def _extract_image(self, source: Source) -> ExtractedContent:
        if not source.file_path:
            raise ExtractionError("Source has no uploaded file")

        model = None
        for provider, model_name in config.VISION_MODELS:
            api_key = self.key_lookup(source.user_id, provider)
            if api_key:
                model = get_model(provider, model_name, api_key)
                break
        if model is None:
            raise ExtractionError(
                "An OpenAI or Google API key is required for image processing"
            )

        description = await describe_image(self.storage.get_public_url(source.file_path), model)
        return ExtractedContent(
            text=description,
            preview=description[: config.PREVIEW_CHARS],
            document=(
                f"# {source.title}\n\nSource: Uploaded Image\n\n"
                f"## Image Description\n\n{description}"
            ),
            image_paths=[source.file_path],
        )

    async def _persist(
        self,
        source_id: str,
        project_id: str,
        user_id: str,
        title: str,
        content: ExtractedContent,
    ) -> PersistedContent:
        """Upload artifacts, chunk and embed.

        Nothing here touches the source row. If a fatal step fails or the task
        is cancelled, every file uploaded so far is removed before the error
        propagates.
        """
        prefix = make_prefix(project_id, title)
        derived_paths: List[str] = []

        try:
            file_path = content.file_path
            if content.document is not None:
                file_path = self.storage.upload(
                    f"{prefix}/content.txt",
                    content.document.encode("utf-8"),
                    "text/plain; charset=utf-8",
                )
                derived_paths.append(file_path)

            chunks, advisory = await self._chunk_and_embed(
                source_id, project_id, user_id, content.text
            )

            image_report = await self._store_images(prefix, content.image_urls)
            stored_images = [s.value for s in image_report.succeeded]
            derived_paths.extend(stored_images)

        except BaseException:
            self.storage.remove(derived_paths)
            raise

        return PersistedContent(
            file_path=file_path,
            chunks=chunks,
            derived_paths=derived_paths,
            image_paths=content.image_paths + stored_images,
            advisory=advisory,
            image_report=image_report,
        )

    async def _chunk_and_embed(
        self, source_id: str, project_id: str, user_id: str, text: str
    ) -> Tuple[List[Chunk], Optional[str]]:
        """Chunk text and try to embed it.

        Returns:
            Tuple of (chunks, advisory). The advisory is set when chunks are
            stored without vectors.
        """
        pieces = self.chunker.split(text)
        chunks = [
            Chunk(
                id=str(uuid.uuid4()),
                source_id=source_id,
                project_id=project_id,
                user_id=user_id,
                content=piece.content,
                chunk_index=piece.chunk_index,
                metadata={"char_start": piece.char_start, "char_end": piece.char_end},
            )
            for piece in pieces
        ]
        if not chunks:
            return chunks, None

        api_key = self.key_lookup(user_id, "openai")
        if not api_key:
            logger.warning("embedding_skipped_no_key", source_id=source_id)
            return chunks, NO_EMBEDDING_KEY_ADVISORY

        try:
            client = self.embedding_client_factory(api_key)
            vectors = await client.embed_batch([c.content for c in chunks])
        except EmbeddingProviderError as e:
            logger.warning("embedding_failed_storing_without_vectors", source_id=source_id, error=str(e))
            return chunks, f"Embeddings could not be generated: {e}"

        for chunk, vector in zip(chunks, vectors):
            chunk.embedding = vector
        return chunks, None

    async def _store_images(self, prefix: str, image_urls: List[str]) -> BestEffortReport:
        """Download and store up to MAX_SAVED_IMAGES images, skipping failures."""
        report = BestEffortReport(step="images")
        candidates = image_urls[: config.MAX_SAVED_IMAGES]
        if not candidates:
            return report

        async with httpx.AsyncClient(
            timeout=config.IMAGE_FETCH_TIMEOUT,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            for image_url in candidates:
                try:
                    response = await client.get(
                        image_url, headers={"User-Agent": config.USER_AGENT}
                    )
                    response.raise_for_status()
                    content_type = response.headers.get("content-type", "image/jpeg")
                    path = self.storage.upload(
                        f"{prefix}/image-{report.succeeded_count}.{_image_extension(content_type)}",
                        response.content,
                        content_type,
                    )
                    report.add(Succeeded(item=image_url, value=path))
                except (httpx.HTTPError, httpx.InvalidURL, StoreWriteError) as e:
                    logger.warning("image_download_skipped", url=image_url, error=str(e))
                    report.add(Skipped(item=image_url, reason=str(e)))

        return report

    def _remove_stale_artifacts(
        self, previous: List[str], current: List[str]
    ) -> BestEffortReport:
        """Delete artifacts from an earlier run that the new run replaced."""
        report = BestEffortReport(step="cleanup")
        for path in previous:
            if path in current:
                continue
            try:
                self.storage.remove([path])
                report.add(Succeeded(item=path))
            except (OSError, StoreWriteError) as e:
                logger.warning("stale_artifact_not_removed", path=path, error=str(e))
                report.add(Skipped(item=path, reason=str(e)))
        return report
