"""Sentence-based text chunking for embedding.

Extracted document text is split into sentences and packed into overlapping,
character-bounded chunks. Sentences are never cut: a chunk only grows past
`chunk_size` by the sentence that triggered the split. Chunking is
deterministic apart from the generated chunk ids and timestamps.
"""

import re
import uuid
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from rag_backend.models import ChunkMetadata, DocumentChunk, FileInfo, utc_timestamp

# A sentence runs up to and including a run of terminators (or end of text).
SENTENCE_PATTERN = re.compile(r"[^.!?]*(?:[.!?]+|$)")


@dataclass(frozen=True)
class ChunkingConfig:
    """Configuration for text chunking.

    Attributes:
        chunk_size: Target chunk size in characters
        overlap: Number of trailing characters of a closed chunk repeated at
            the start of the next one
    """

    chunk_size: int = 1000
    overlap: int = 200

    def __post_init__(self) -> None:
        """Validate configuration parameters."""
        if self.chunk_size <= 0:
            raise ValueError(f"chunk_size must be positive, got {self.chunk_size}")
        if self.overlap < 0:
            raise ValueError(f"overlap must be non-negative, got {self.overlap}")
        if self.overlap >= self.chunk_size:
            raise ValueError(
                f"overlap ({self.overlap}) must be less than chunk_size ({self.chunk_size})"
            )


class Chunker(Protocol):
    """Protocol for text chunking implementations."""

    def chunk(self, text: str, file_info: FileInfo) -> list[DocumentChunk]:
        """Split text into overlapping chunks carrying provenance metadata."""
        ...


def split_into_sentences(text: str) -> list[str]:
    """Split text on sentence terminators, dropping whitespace-only units.

    Example:
        >>> split_into_sentences("Hello there. How are you?  Fine!")
        ['Hello there.', 'How are you?', 'Fine!']
    """
    return [unit.strip() for unit in SENTENCE_PATTERN.findall(text) if unit.strip()]


def overlap_tail(text: str, overlap: int) -> str:
    """Return the last `overlap` characters of text (all of it when shorter)."""
    if overlap <= 0:
        return ""
    if len(text) <= overlap:
        return text
    return text[-overlap:]


class SentenceChunker:
    """Greedy sentence packer with a character overlap between neighbours."""

    def __init__(self, config: ChunkingConfig):
        """Initialize chunker with configuration.

        Args:
            config: Chunking configuration
        """
        self.config = config

    def split(self, text: str) -> list[str]:
        """Split text into chunk-sized strings without attaching metadata.

        Args:
            text: Extracted document text

        Returns:
            Chunk texts in document order (empty for blank input). Text that
            already fits in one chunk is returned trimmed but otherwise intact.
        """
        stripped = text.strip()
        if len(stripped) <= self.config.chunk_size:
            return [stripped] if stripped else []

        pieces: list[str] = []
        buffer = ""

        for sentence in split_into_sentences(text):
            if buffer and len(buffer) + len(sentence) > self.config.chunk_size:
                pieces.append(buffer.strip())
                tail = overlap_tail(buffer, self.config.overlap)
                buffer = f"{tail} {sentence}" if tail else sentence
            else:
                buffer = f"{buffer} {sentence}" if buffer else sentence

        if buffer.strip():
            pieces.append(buffer.strip())

        return pieces

    def chunk(self, text: str, file_info: FileInfo) -> list[DocumentChunk]:
        """Split text into overlapping chunks with provenance metadata.

        Every chunk of the document receives the final `total_chunks` count.

        Args:
            text: Extracted document text
            file_info: Source file description

        Returns:
            List of DocumentChunk objects in order; empty when the text has no
            content (callers must treat that as an ingestion failure)
        """
        pieces = self.split(text)
        total = len(pieces)
        timestamp = utc_timestamp()

        chunks = [
            DocumentChunk(
                id=str(uuid.uuid4()),
                content=piece,
                metadata=ChunkMetadata(
                    source=file_info.path,
                    filename=file_info.filename,
                    chunk_index=index,
                    total_chunks=total,
                    timestamp=timestamp,
                    file_type=file_info.type,
                    size=file_info.size,
                ),
            )
            for index, piece in enumerate(pieces)
        ]

        logger.debug(f"Created {total} chunks for {file_info.filename}")
        return chunks


def chunk_text(
    text: str,
    file_info: FileInfo,
    chunk_size: int = 1000,
    chunk_overlap: int = 200,
) -> list[DocumentChunk]:
    """Convenience function to chunk text with an ad-hoc config.

    Args:
        text: Input text to chunk
        file_info: Source file description
        chunk_size: Target chunk size in characters
        chunk_overlap: Characters repeated between neighbouring chunks

    Returns:
        List of DocumentChunk objects

    Example:
        >>> chunks = chunk_text(text, info, chunk_size=1000, chunk_overlap=200)
        >>> chunks[0].metadata.chunk_index
        0
    """
    chunker = SentenceChunker(ChunkingConfig(chunk_size=chunk_size, overlap=chunk_overlap))
    return chunker.chunk(text, file_info)
