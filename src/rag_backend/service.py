"""Retrieval orchestrator composing extraction, chunking, embedding and storage.

`RAGService` holds no state of its own between calls. Mutating operations
return `{success, message}`-shaped results instead of raising; read-only
searches let failures propagate to the caller.
"""

from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import Any
from uuid import uuid4

from loguru import logger

from rag_backend.chunking import Chunker, SentenceChunker
from rag_backend.config import FilesConfig, RAGConfig, SearchDefaults
from rag_backend.embedding import EmbeddingClient, create_embedding_client
from rag_backend.errors import EmptyContentError, FileTooLargeError, UnsupportedFileTypeError
from rag_backend.extraction import (
    extract_text,
    file_extension,
    get_file_info,
    is_supported_file,
    list_supported_files,
)
from rag_backend.models import (
    ClearScope,
    CollectionStats,
    DirectoryIngestResult,
    IndexedFile,
    IngestResult,
    MemoryAddResult,
    MemoryEntry,
    MemoryMetadata,
    OperationResult,
    SearchOptions,
    SearchResult,
    VectorRecord,
)
from rag_backend.store import VectorStore

Extractor = Callable[[str, str], Awaitable[str]]

CLEAR_SCOPES: tuple[str, ...] = ("files", "memory", "all")


class RAGService:
    """Coordinates ingest, search, removal and memory operations."""

    def __init__(
        self,
        store: VectorStore,
        embedder: EmbeddingClient,
        chunker: Chunker,
        files: FilesConfig | None = None,
        search_defaults: SearchDefaults | None = None,
        extractor: Extractor = extract_text,
    ):
        """Initialize the service from its collaborators.

        Args:
            store: Vector store owning the documents and memory collections
            embedder: Embedding client used for chunks, memories and queries
            chunker: Text chunker producing DocumentChunks
            files: Ingestion limits (defaults apply when omitted)
            search_defaults: Default search limit and threshold
            extractor: Coroutine returning raw text for (path, file_type)
        """
        self.store = store
        self.embedder = embedder
        self.chunker = chunker
        self.files = files or FilesConfig()
        self.search_defaults = search_defaults or SearchDefaults()
        self.extractor = extractor

    @classmethod
    def from_config(cls, config: RAGConfig) -> "RAGService":
        """Build the service with the configured providers."""
        return cls(
            store=VectorStore.from_config(config.index, config.embedding.dimensions),
            embedder=create_embedding_client(config.embedding),
            chunker=SentenceChunker(config.chunking),
            files=config.files,
            search_defaults=config.search,
        )

    async def initialize(self) -> None:
        """Health-check both collections; unreachable ones only log a warning."""
        for collection in (self.store.documents, self.store.memory):
            if await collection.health_check():
                logger.info(f"Connected to {collection.name} index ({collection.index.name})")
            else:
                logger.warning(f"{collection.name} index ({collection.index.name}) is not reachable")
        logger.info("RAG service initialized")

    async def close(self) -> None:
        aclose = getattr(self.embedder, "aclose", None)
        if aclose is not None:
            await aclose()
        logger.info("RAG service closed")

    def _search_options(
        self, limit: int | None, threshold: float | None, filters: dict[str, Any] | None
    ) -> SearchOptions:
        return SearchOptions(
            limit=limit if limit is not None else self.search_defaults.limit,
            threshold=threshold if threshold is not None else self.search_defaults.threshold,
            filters=filters or None,
        )

    # -- documents ---------------------------------------------------------

    async def _ingest(self, path: str) -> int:
        if not is_supported_file(path, self.files.supported_extensions):
            raise UnsupportedFileTypeError(file_extension(path))

        file_info = get_file_info(path)
        if file_info.size > self.files.max_file_size_bytes:
            raise FileTooLargeError(file_info.size, self.files.max_file_size_mb)

        text = await self.extractor(file_info.path, file_info.type)
        chunks = self.chunker.chunk(text, file_info)
        if not chunks:
            raise EmptyContentError()

        # Embed everything before writing so a failed embedding stores nothing
        vectors = await self.embedder.embed_batch([chunk.content for chunk in chunks])
        records = [
            VectorRecord(id=chunk.id, values=vector, metadata=chunk.to_metadata())
            for chunk, vector in zip(chunks, vectors, strict=True)
        ]
        await self.store.documents.upsert(records)
        return len(chunks)

    async def add_file(self, path: str) -> IngestResult:
        """Ingest one document into the documents collection.

        Args:
            path: File to ingest; stored verbatim as the chunks' `source`

        Returns:
            IngestResult with the chunk count, or success=False with the cause
        """
        logger.info(f"Adding file to RAG: {path}")
        try:
            chunks = await self._ingest(path)
        except Exception as e:
            logger.error(f"Error adding file {path}: {e}")
            return IngestResult(success=False, chunks=0, message=f"Failed to add file: {e}")

        logger.info(f"Successfully added file: {path} ({chunks} chunks)")
        return IngestResult(
            success=True, chunks=chunks, message=f"File added successfully with {chunks} chunks"
        )

    async def add_directory(self, directory: str, recursive: bool = False) -> DirectoryIngestResult:
        """Ingest every supported file in a directory, one at a time.

        A failing file does not stop the others; its result is recorded.
        """
        logger.info(f"Adding directory to RAG: {directory} (recursive={recursive})")
        result = DirectoryIngestResult(directory=directory)

        try:
            files = list_supported_files(directory, self.files.supported_extensions, recursive)
        except OSError as e:
            logger.error(f"Error listing directory {directory}: {e}")
            result.results[directory] = IngestResult(
                success=False, message=f"Failed to add directory: {e}"
            )
            result.failed = 1
            return result

        for file_info in files:
            outcome = await self.add_file(file_info.path)
            result.results[file_info.path] = outcome
            if outcome.success:
                result.succeeded += 1
                result.chunks += outcome.chunks
            else:
                result.failed += 1

        result.files = len(files)
        logger.info(
            f"Directory {directory}: {result.succeeded}/{result.files} files added "
            f"({result.chunks} chunks)"
        )
        return result

    async def search_files(
        self,
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        """Similarity search over document chunks.

        Raises:
            EmbeddingError: If the query cannot be embedded
            VectorStoreError: If the documents index cannot be queried
        """
        logger.info(f'Searching files with query: "{query}"')
        options = self._search_options(limit, threshold, filters)
        try:
            vector = await self.embedder.embed_query(query)
            return await self.store.documents.search(vector, options)
        except Exception as e:
            logger.error(f"Error searching files: {e}")
            raise

    async def remove_file(self, path: str) -> OperationResult:
        """Delete every chunk whose source is `path`."""
        logger.info(f"Removing file from RAG: {path}")
        try:
            removed = await self.store.documents.delete_by_filter({"source": path})
        except Exception as e:
            logger.error(f"Error removing file {path}: {e}")
            return OperationResult(success=False, message=f"Failed to remove file: {e}")

        logger.info(f"Removed {removed} chunks for {path}")
        return OperationResult(success=True, message="File removed successfully")

    async def list_files(self) -> list[IndexedFile]:
        """Documents currently indexed, rebuilt from chunk metadata, newest first.

        Chunk counts come from the stored `total_chunks`, so a fetch truncated
        at the enumeration limit still reports whole documents correctly.
        """
        logger.info("Listing files in RAG system")
        chunks = await self.store.documents.fetch({"type": "document"})

        files: dict[str, IndexedFile] = {}
        for chunk in chunks:
            metadata = chunk.metadata
            source = str(metadata.get("source", ""))
            if not source:
                continue
            timestamp = str(metadata.get("timestamp", ""))
            total = int(metadata.get("total_chunks") or 1)
            existing = files.get(source)
            if existing is None:
                files[source] = IndexedFile(
                    source=source,
                    filename=str(metadata.get("filename", Path(source).name)),
                    file_type=str(metadata.get("file_type", file_extension(source))),
                    size=int(metadata.get("size", 0)),
                    chunks=total,
                    indexed_at=timestamp,
                )
            else:
                existing.chunks = max(existing.chunks, total)
                existing.indexed_at = max(existing.indexed_at, timestamp)

        return sorted(files.values(), key=lambda f: f.indexed_at, reverse=True)

    # -- memory ------------------------------------------------------------

    async def add_memory(
        self,
        content: str,
        agent_id: str,
        session_id: str,
        category: str = "general",
        importance: int = 1,
        tags: list[str] | None = None,
    ) -> MemoryAddResult:
        """Store an agent memory note under a freshly generated id."""
        try:
            entry = MemoryEntry(
                id=str(uuid4()),
                content=content,
                metadata=MemoryMetadata(
                    agent_id=agent_id,
                    session_id=session_id,
                    category=category,
                    importance=importance,
                    tags=tags or [],
                ),
            )
            vector = await self.embedder.embed_query(entry.content)
            await self.store.memory.upsert(
                [VectorRecord(id=entry.id, values=vector, metadata=entry.to_metadata())]
            )
        except Exception as e:
            logger.error(f"Error adding memory: {e}")
            return MemoryAddResult(success=False, memory_id="", message=f"Failed to add memory: {e}")

        logger.info(f"Added memory entry: {entry.id}")
        return MemoryAddResult(success=True, memory_id=entry.id, message="Memory added successfully")

    async def search_memory(
        self,
        query: str,
        agent_id: str | None = None,
        limit: int | None = None,
        threshold: float | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[SearchResult]:
        """Similarity search over memory, optionally restricted to one agent."""
        logger.info(f'Searching memory with query: "{query}"')
        merged = dict(filters or {})
        if agent_id:
            merged["agent_id"] = agent_id
        options = self._search_options(limit, threshold, merged)
        try:
            vector = await self.embedder.embed_query(query)
            return await self.store.memory.search(vector, options)
        except Exception as e:
            logger.error(f"Error searching memory: {e}")
            raise

    async def remove_memory(self, memory_id: str) -> OperationResult:
        logger.info(f"Removing memory entry: {memory_id}")
        try:
            await self.store.memory.delete([memory_id])
        except Exception as e:
            logger.error(f"Error removing memory {memory_id}: {e}")
            return OperationResult(success=False, message=f"Failed to remove memory: {e}")

        return OperationResult(success=True, message="Memory removed successfully")

    async def get_memory_by_agent(self, agent_id: str) -> list[SearchResult]:
        """Every memory entry of one agent (score 1.0 when the index gives none)."""
        logger.info(f"Getting memory for agent: {agent_id}")
        return await self.store.memory.fetch({"agent_id": agent_id})

    # -- maintenance -------------------------------------------------------

    async def get_stats(self) -> CollectionStats:
        """Counts of both collections; any failure reports zeros for both."""
        try:
            return await self.store.stats()
        except Exception as e:
            logger.error(f"Error getting stats: {e}")
            return CollectionStats()

    async def clear_data(self, scope: ClearScope) -> OperationResult:
        """Clear the documents collection, the memory collection, or both."""
        if scope not in CLEAR_SCOPES:
            return OperationResult(
                success=False,
                message=f"Failed to clear data: unknown scope {scope!r} (expected one of {CLEAR_SCOPES})",
            )

        names: tuple[str, ...] = ("files", "memory") if scope == "all" else (scope,)
        try:
            for name in names:
                await self.store.collection(name).clear()
        except Exception as e:
            logger.error(f"Error clearing {scope} data: {e}")
            return OperationResult(success=False, message=f"Failed to clear data: {e}")

        logger.info(f"Cleared {scope} data")
        return OperationResult(success=True, message=f"{scope} data cleared successfully")

    async def test_embedding_service(self) -> bool:
        return await self.embedder.test_connection()
