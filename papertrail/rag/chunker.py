"""Text chunking with overlap for the RAG pipeline.

Character-based chunking that prefers to cut at sentence or paragraph ends.
Each window may look ahead a bounded number of characters past the target
size to find such a break, but never past `target_size * MAX_OVERSHOOT`.
"""
from typing import List, Optional
from dataclasses import dataclass
import structlog

from papertrail import config

logger = structlog.get_logger()

SENTENCE_BREAKS = (". ", ".\n", "! ", "!\n", "? ", "?\n")
PARAGRAPH_BREAK = "\n\n"

# No chunk may exceed the target by more than this factor
MAX_OVERSHOOT = 1.13


@dataclass
class TextChunk:
    """Represents a chunk of text with position information."""

    content: str
    char_start: int
    char_end: int
    chunk_index: int


class TextChunker:
    """Boundary-aware character chunker with overlap support."""

    def __init__(
        self,
        target_size: Optional[int] = None,
        overlap: Optional[int] = None,
        lookahead: Optional[int] = None,
    ):
        """Initialize the text chunker.

        Args:
            target_size: Nominal chunk size in characters (default from config)
            overlap: Characters shared by consecutive chunks (default from config)
            lookahead: Extra characters searched for a break (default from config)

        Raises:
            ValueError: If overlap would stall the window
        """
        self.target_size = target_size if target_size is not None else config.CHUNK_SIZE
        self.overlap = overlap if overlap is not None else config.CHUNK_OVERLAP
        self.lookahead = lookahead if lookahead is not None else config.CHUNK_LOOKAHEAD
        self.max_size = min(
            self.target_size + self.lookahead, int(self.target_size * MAX_OVERSHOOT)
        )

        # A cut is never earlier than half the target, so this keeps start moving
        if self.target_size <= 0 or not 0 <= self.overlap < self.target_size / 2:
            raise ValueError(
                f"Overlap ({self.overlap}) must be less than half of "
                f"target size ({self.target_size})"
            )

    def split(self, text: str) -> List[TextChunk]:
        """Split text into overlapping chunks.

        Args:
            text: Text to chunk

        Returns:
            List of TextChunk objects in document order
        """
        if not text:
            return []

        text_length = len(text)

        if text_length <= self.target_size:
            content = text.strip()
            if not content:
                return []
            return [TextChunk(content=content, char_start=0, char_end=text_length, chunk_index=0)]

        chunks: List[TextChunk] = []
        start = 0

        while start < text_length:
            end = start + self.target_size

            if end < text_length:
                window = text[start : start + self.max_size]
                cut = self._find_last_break(window)
                if cut > self.target_size * 0.5:
                    end = start + cut
            else:
                end = text_length

            content = text[start:end].strip()
            if content:
                chunks.append(
                    TextChunk(
                        content=content,
                        char_start=start,
                        char_end=end,
                        chunk_index=len(chunks),
                    )
                )

            if end >= text_length:
                break
            start = end - self.overlap

        logger.debug(
            "text_chunked",
            text_length=text_length,
            chunk_count=len(chunks),
            target_size=self.target_size,
        )

        return chunks

    @staticmethod
    def _find_last_break(window: str) -> int:
        """Return the offset just past the last sentence or paragraph break.

        Args:
            window: Candidate text, including the lookahead

        Returns:
            Cut offset within the window, or -1 if there is no break
        """
        best = -1
        for marker in SENTENCE_BREAKS + (PARAGRAPH_BREAK,):
            position = window.rfind(marker)
            if position != -1:
                best = max(best, position + len(marker))
        return best


def chunk(
    text: str,
    target_size: Optional[int] = None,
    overlap: Optional[int] = None,
) -> List[str]:
    """Chunk text and return only the chunk strings.

    Args:
        text: Text to chunk
        target_size: Nominal chunk size (default from config)
        overlap: Overlap between chunks (default from config)

    Returns:
        List of chunk strings
    """
    chunker = TextChunker(target_size=target_size, overlap=overlap)
    return [c.content for c in chunker.split(text)]
