"""Text chunking pipeline for BriefContext.

Splits page text into bounded-size retrievable units for embedding.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Iterable, List, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 1000


@dataclass
class TextChunk:
    """A chunk of source text with its position in the source."""
    source_ref: str
    chunk_index: int
    content: str

    @property
    def chunk_id(self) -> str:
        return generate_chunk_id(self.source_ref, self.chunk_index)


def generate_chunk_id(source_ref: str, chunk_index: int) -> str:
    """Generate a deterministic chunk ID from the source reference and offset."""
    content = f"{source_ref}#{chunk_index}"
    return hashlib.md5(content.encode()).hexdigest()[:12]


def chunk_text(text: str, target_size: int = DEFAULT_CHUNK_SIZE) -> List[str]:
    """Greedily pack whitespace-separated tokens into chunks.

    Tokens are accumulated while the space-joined chunk stays within
    ``target_size`` characters. A token longer than ``target_size`` is kept
    whole as a chunk of its own.

    Args:
        text: Raw text to split
        target_size: Maximum chunk length in characters

    Returns:
        Ordered list of chunks; empty for empty or whitespace-only text
    """
    if target_size <= 0:
        raise ValueError("target_size must be positive")

    chunks: List[str] = []
    current: List[str] = []
    current_length = 0

    for token in text.split():
        # +1 for the joining space
        if current and current_length + 1 + len(token) > target_size:
            chunks.append(" ".join(current))
            current = []
            current_length = 0

        if current:
            current_length += 1
        current.append(token)
        current_length += len(token)

    if current:
        chunks.append(" ".join(current))

    return chunks


class TextChunker:
    """Chunks page text into pieces small enough to embed."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        """Initialize chunker.

        Args:
            chunk_size: Target size for each chunk in characters
        """
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size

    def chunk(self, text: str) -> List[str]:
        return chunk_text(text, self.chunk_size)

    def chunk_document(self, source_ref: str, text: str) -> List[TextChunk]:
        """Chunk one document, keeping its source reference on every chunk."""
        chunks = [
            TextChunk(source_ref=source_ref, chunk_index=i, content=content)
            for i, content in enumerate(self.chunk(text))
        ]
        logger.debug(f"Split {source_ref} into {len(chunks)} chunks")
        return chunks

    def chunk_documents(self, documents: Iterable[Tuple[str, str]]) -> List[TextChunk]:
        """Chunk several ``(source_ref, text)`` documents in order."""
        all_chunks: List[TextChunk] = []
        for source_ref, text in documents:
            all_chunks.extend(self.chunk_document(source_ref, text))
        return all_chunks
