"""Pydantic models for data flowing through the RAG backend.

Chunks, memory entries, index records and operation results are all validated
against these schemas so malformed data fails before it reaches the store.
"""

from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

ClearScope = Literal["files", "memory", "all"]


def utc_timestamp() -> str:
    """Return the current time as an ISO-8601 UTC string."""
    return datetime.now(UTC).isoformat()


class FileInfo(BaseModel):
    """Filesystem facts about a document being ingested.

    Attributes:
        filename: Base name of the file
        path: Path as given by the caller (used as the chunk `source`)
        size: File size in bytes
        type: Lower-cased extension including the dot (e.g. ".pdf")
        last_modified: Modification time reported by the filesystem
    """

    filename: str
    path: str
    size: int = Field(ge=0)
    type: str
    last_modified: datetime


class ChunkMetadata(BaseModel):
    """Provenance metadata stored alongside every document chunk.

    Attributes:
        source: Path of the source document (delete-by-source key)
        filename: Originating filename
        chunk_index: 0-indexed position among sibling chunks
        total_chunks: Number of sibling chunks for the document
        timestamp: Creation time (ISO-8601, UTC)
        file_type: Detected file-type tag (extension)
        size: Original file size in bytes
    """

    source: str
    filename: str
    chunk_index: int = Field(ge=0)
    total_chunks: int = Field(ge=1)
    timestamp: str = Field(default_factory=utc_timestamp)
    file_type: str
    size: int = Field(ge=0)

    @model_validator(mode="after")
    def check_index_within_total(self) -> "ChunkMetadata":
        if self.chunk_index >= self.total_chunks:
            raise ValueError(
                f"chunk_index ({self.chunk_index}) must be less than "
                f"total_chunks ({self.total_chunks})"
            )
        return self


class DocumentChunk(BaseModel):
    """A contiguous slice of a document's extracted text."""

    id: str
    content: str = Field(min_length=1)
    metadata: ChunkMetadata

    def to_metadata(self) -> dict[str, Any]:
        """Flatten into the metadata mapping stored in the vector index."""
        return {**self.metadata.model_dump(), "type": "document", "content": self.content}


class MemoryMetadata(BaseModel):
    """Metadata for an agent-authored memory note.

    Attributes:
        agent_id: Owning agent
        session_id: Session the note was written in
        timestamp: Creation time (ISO-8601, UTC)
        category: Free-form category label
        importance: Importance score, intended range 1-10 (not enforced)
        tags: Free-text tags
    """

    agent_id: str = Field(min_length=1)
    session_id: str
    timestamp: str = Field(default_factory=utc_timestamp)
    category: str = "general"
    importance: int = 1
    tags: list[str] = Field(default_factory=list)


class MemoryEntry(BaseModel):
    """An agent memory note. Immutable once stored: updates are delete + re-add."""

    model_config = {"frozen": True}

    id: str
    content: str = Field(min_length=1)
    metadata: MemoryMetadata

    def to_metadata(self) -> dict[str, Any]:
        """Flatten into the metadata mapping stored in the vector index."""
        return {**self.metadata.model_dump(), "type": "memory", "content": self.content}


class VectorRecord(BaseModel):
    """One vector plus metadata, as sent to a vector index."""

    id: str
    values: list[float]
    metadata: dict[str, Any] = Field(default_factory=dict)


class IndexMatch(BaseModel):
    """One raw match returned by a vector index query."""

    id: str
    score: float | None = None
    metadata: dict[str, Any] | None = None


class SearchResult(BaseModel):
    """A ranked, threshold-filtered search hit.

    Attributes:
        id: Stored record id (chunk id or memory id)
        content: Text content recovered from metadata
        metadata: Full stored metadata mapping
        score: Cosine-like similarity score in [-1, 1]
    """

    id: str
    content: str
    metadata: dict[str, Any] = Field(default_factory=dict)
    score: float = Field(ge=-1.0, le=1.0)


class SearchOptions(BaseModel):
    """Options for a similarity search.

    Attributes:
        limit: Maximum number of results (top-K)
        threshold: Minimum similarity score a result must reach
        filters: Optional exact-match metadata filters (e.g. {"agent_id": "a1"})
    """

    limit: int = Field(default=10, ge=1, le=10000)
    threshold: float = Field(default=0.7, ge=-1.0, le=1.0)
    filters: dict[str, Any] | None = None


class CollectionStats(BaseModel):
    documents: int = Field(default=0, ge=0)
    memory: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)


class IndexedFile(BaseModel):
    """A document as reconstructed from the metadata of its stored chunks."""

    source: str
    filename: str
    file_type: str
    size: int
    chunks: int
    indexed_at: str


class OperationResult(BaseModel):
    success: bool
    message: str


class IngestResult(OperationResult):
    chunks: int = 0


class MemoryAddResult(OperationResult):
    memory_id: str = ""


class DirectoryIngestResult(BaseModel):
    """Outcome of ingesting every supported file in a directory."""

    directory: str
    files: int = 0
    succeeded: int = 0
    failed: int = 0
    chunks: int = 0
    results: dict[str, IngestResult] = Field(default_factory=dict)
