"""FAISS cosine-similarity search over an in-memory vector set.

Vectors are L2-normalised before they enter an inner-product index, so the
scores FAISS returns are cosine similarities in [-1, 1].
"""
from typing import List, Tuple, Sequence
import numpy as np
import faiss
import structlog

logger = structlog.get_logger()


class FAISSVectorStore:
    """Exact (flat) inner-product index for one scoped similarity query."""

    def __init__(self, dimension: int):
        """Initialize an empty index.

        Args:
            dimension: Embedding dimension every added vector must have
        """
        self.dimension = dimension
        self.index = faiss.IndexFlatIP(dimension)

    @property
    def size(self) -> int:
        return self.index.ntotal

    def add(self, vectors: np.ndarray) -> None:
        """Normalise and add vectors to the index.

        Args:
            vectors: Array of shape (n, dimension)

        Raises:
            ValueError: If the vector dimension doesn't match the index
        """
        matrix = np.array(vectors, dtype=np.float32, copy=True)
        if matrix.ndim != 2 or matrix.shape[1] != self.dimension:
            raise ValueError(
                f"Vector dimension mismatch: expected {self.dimension}, "
                f"got {matrix.shape[-1] if matrix.ndim else 0}"
            )

        faiss.normalize_L2(matrix)
        self.index.add(matrix)

    def search(
        self, query: Sequence[float], top_k: int
    ) -> Tuple[List[int], List[float]]:
        """Find the most similar vectors to a query.

        Args:
            query: Query embedding
            top_k: Number of neighbours to return

        Returns:
            Tuple of (positions, similarities) ordered by descending similarity

        Raises:
            ValueError: If the query dimension doesn't match the index
        """
        if self.index.ntotal == 0 or top_k <= 0:
            return [], []

        vector = np.array(query, dtype=np.float32).reshape(1, -1)
        if vector.shape[1] != self.dimension:
            raise ValueError(
                f"Query dimension mismatch: expected {self.dimension}, "
                f"got {vector.shape[1]}"
            )

        faiss.normalize_L2(vector)
        k = min(top_k, self.index.ntotal)
        scores, ids = self.index.search(vector, k)

        # Flat index ties come back in insertion order; make that explicit
        hits = sorted(
            ((int(i), float(s)) for i, s in zip(ids[0], scores[0]) if i != -1),
            key=lambda hit: (-hit[1], hit[0]),
        )

        logger.debug("faiss_search_completed", requested=top_k, returned=len(hits))

        return [h[0] for h in hits], [h[1] for h in hits]
