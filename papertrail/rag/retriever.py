"""Retriever for semantic search over a project's sources.

Handles:
- Query embedding generation
- Scoped cosine-similarity search with a score threshold
- Batched source-title resolution
- Context formatting for the system prompt
"""
from typing import List, Dict, Optional
import structlog

from papertrail import config, db
from papertrail.models import RetrievedChunk
from papertrail.rag.embeddings import EmbeddingClient

logger = structlog.get_logger()

NO_SOURCES_FOUND = "No relevant sources found."
UNKNOWN_SOURCE = "Unknown Source"


class Retriever:
    """Semantic retriever for the RAG pipeline."""

    def __init__(self, embedding_client: EmbeddingClient):
        """Initialize the retriever.

        Args:
            embedding_client: Client used to embed queries
        """
        self.embedding_client = embedding_client

    async def retrieve(
        self,
        query: str,
        project_id: str,
        user_id: str,
        match_count: Optional[int] = None,
        match_threshold: Optional[float] = None,
    ) -> List[RetrievedChunk]:
        """Retrieve the chunks most similar to a query.

        Retrieval is best-effort: failures are logged and yield no results.

        Args:
            query: User query text
            project_id: Project scope
            user_id: Owner scope
            match_count: Maximum results (default from config)
            match_threshold: Minimum similarity, exclusive (default from config)

        Returns:
            List of RetrievedChunk objects, most similar first
        """
        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        match_count = match_count if match_count is not None else config.RETRIEVAL_MATCH_COUNT
        if match_threshold is None:
            match_threshold = config.RETRIEVAL_MATCH_THRESHOLD

        logger.info(
            "retrieval_started",
            query_length=len(query),
            project_id=project_id,
            match_count=match_count,
            match_threshold=match_threshold,
        )

        try:
            query_embedding = await self.embedding_client.embed_query(query)

            rows = db.match_chunks(
                query_embedding,
                project_id=project_id,
                user_id=user_id,
                match_count=match_count,
                match_threshold=match_threshold,
            )
            if not rows:
                logger.info("no_results_found", project_id=project_id)
                return []

            titles = db.get_source_titles([row["source_id"] for row in rows])

        except Exception as e:
            logger.error(
                "retrieval_failed",
                error=str(e),
                error_type=type(e).__name__,
                query_preview=query[:100],
            )
            return []

        results = [
            RetrievedChunk(
                id=row["id"],
                source_id=row["source_id"],
                content=row["content"],
                chunk_index=row["chunk_index"],
                similarity=row["similarity"],
                source_title=titles.get(row["source_id"], UNKNOWN_SOURCE),
                metadata=row.get("metadata", {}),
            )
            for row in rows
        ]

        logger.info(
            "retrieval_completed",
            results_returned=len(results),
            top_similarity=results[0].similarity,
        )
        return results


def format_context(chunks: List[RetrievedChunk]) -> str:
    """Format retrieved chunks as numbered source blocks.

    Chunks are grouped by source in order of first appearance; each group
    renders as ``[Source N: title]`` followed by its chunk texts.

    Args:
        chunks: Retrieved chunks, best first

    Returns:
        Context string, or a fixed sentinel when there are no chunks
    """
    if not chunks:
        return NO_SOURCES_FOUND

    groups: Dict[str, List[RetrievedChunk]] = {}
    for chunk in chunks:
        groups.setdefault(chunk.source_id, []).append(chunk)

    blocks = []
    for number, group in enumerate(groups.values(), 1):
        body = "\n\n".join(c.content for c in group)
        blocks.append(f"[Source {number}: {group[0].source_title}]\n{body}")

    return "\n\n---\n\n".join(blocks)


def sources_summary(chunks: List[RetrievedChunk]) -> List[Dict[str, str]]:
    """List the distinct sources behind a set of chunks, in citation order."""
    seen: Dict[str, str] = {}
    for chunk in chunks:
        seen.setdefault(chunk.source_id, chunk.source_title)
    return [{"id": source_id, "title": title} for source_id, title in seen.items()]
