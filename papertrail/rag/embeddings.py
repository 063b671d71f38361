"""Batched embedding client for an OpenAI-compatible embeddings endpoint."""
from typing import List, Optional
import httpx
import structlog

from papertrail import config
from papertrail.errors import EmbeddingProviderError

logger = structlog.get_logger()


class EmbeddingClient:
    """Async client producing fixed-dimension vectors for chunks and queries."""

    def __init__(
        self,
        api_key: str,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        dimensions: Optional[int] = None,
        batch_size: Optional[int] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """Initialize the embedding client.

        Args:
            api_key: Provider API key
            base_url: API base URL (defaults to config.EMBEDDING_API_BASE)
            model: Embedding model (defaults to config.EMBEDDING_MODEL)
            dimensions: Vector size (defaults to config.EMBEDDING_DIMENSIONS)
            batch_size: Texts per request (defaults to config.EMBEDDING_BATCH_SIZE)
            timeout: Request timeout in seconds
            transport: Optional httpx transport, used by tests
        """
        if not api_key:
            raise EmbeddingProviderError("No embedding API key configured")

        self.api_key = api_key
        self.base_url = (base_url or config.EMBEDDING_API_BASE).rstrip("/")
        self.model = model or config.EMBEDDING_MODEL
        self.dimensions = dimensions or config.EMBEDDING_DIMENSIONS
        self.batch_size = batch_size or config.EMBEDDING_BATCH_SIZE
        self.timeout = timeout or config.EMBEDDING_TIMEOUT
        self.transport = transport

    async def embed_batch(self, texts: List[str]) -> List[List[float]]:
        """Embed many texts, one request per batch.

        Vectors are returned in input order regardless of the order the
        provider lists them in.

        Args:
            texts: Texts to embed

        Returns:
            One vector per input text

        Raises:
            EmbeddingProviderError: If any batch request fails
        """
        if not texts:
            return []

        vectors: List[List[float]] = []

        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            for i in range(0, len(texts), self.batch_size):
                batch = texts[i : i + self.batch_size]
                vectors.extend(await self._embed_request(client, batch))

                logger.debug(
                    "embeddings_batch_generated",
                    batch_start=i,
                    batch_size=len(batch),
                )

        logger.info("embeddings_generated", count=len(vectors), model=self.model)
        return vectors

    async def embed_query(self, text: str) -> List[float]:
        """Embed a single query text.

        Raises:
            EmbeddingProviderError: If the request fails
        """
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            vectors = await self._embed_request(client, [text])
        return vectors[0]

    async def _embed_request(
        self, client: httpx.AsyncClient, batch: List[str]
    ) -> List[List[float]]:
        try:
            response = await client.post(
                f"{self.base_url}/embeddings",
                headers={"Authorization": f"Bearer {self.api_key}"},
                json={
                    "model": self.model,
                    "input": batch,
                    "dimensions": self.dimensions,
                },
            )
        except httpx.HTTPError as e:
            logger.error("embedding_request_failed", error=str(e), model=self.model)
            raise EmbeddingProviderError(f"Embedding request failed: {e}") from e

        if response.status_code // 100 != 2:
            logger.error(
                "embedding_http_error",
                status_code=response.status_code,
                body_preview=response.text[:200],
            )
            raise EmbeddingProviderError(
                f"Embedding API error: {response.status_code} - {response.text[:200]}"
            )

        try:
            data = response.json()["data"]
            ordered = sorted(data, key=lambda item: item["index"])
            vectors = [item["embedding"] for item in ordered]
        except (ValueError, KeyError, TypeError) as e:
            raise EmbeddingProviderError(f"Malformed embedding response: {e}") from e

        if len(vectors) != len(batch):
            raise EmbeddingProviderError(
                f"Expected {len(batch)} embeddings, got {len(vectors)}"
            )

        return vectors
