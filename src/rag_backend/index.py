"""Vector index capability interface and the Pinecone implementation.

A `VectorIndex` is one remote index: upsert, similarity query with exact-match
metadata filters, delete by id, count and clear. Higher layers (threshold
filtering, delete-by-filter, collections) live in `rag_backend.store` so they
can be tested against an in-memory fake.
"""

import asyncio
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from loguru import logger
from pydantic import BaseModel, Field

from rag_backend.models import IndexMatch, VectorRecord


class IndexConfig(BaseModel):
    """Vector index configuration.

    Attributes:
        backend: Index backend (only "pinecone" is supported)
        api_key: API key for the hosted service
        documents_index: Index holding document chunks
        memory_index: Index holding agent memory entries
        namespace: Optional namespace for multi-tenancy
    """

    backend: str = Field(default="pinecone", pattern="^pinecone$")
    api_key: str | None = None
    documents_index: str = "rag-files"
    memory_index: str = "agent-memory"
    namespace: str | None = None


class VectorIndex(ABC):
    """Abstract base class for vector index implementations."""

    name: str

    @abstractmethod
    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        """Insert or overwrite records by id.

        Args:
            records: Vectors with metadata to upsert

        Raises:
            ValueError: If records list is empty
        """
        ...

    @abstractmethod
    async def query(
        self,
        vector: Sequence[float],
        top_k: int,
        filters: dict[str, Any] | None = None,
        include_metadata: bool = True,
    ) -> list[IndexMatch]:
        """Approximate nearest-neighbour search.

        Args:
            vector: Query vector
            top_k: Maximum number of matches
            filters: Exact-match metadata filter
            include_metadata: Return stored metadata with each match

        Returns:
            Matches ordered by descending score
        """
        ...

    @abstractmethod
    async def delete(self, ids: Sequence[str]) -> None:
        """Delete records by id."""
        ...

    @abstractmethod
    async def count(self) -> int:
        """Return the number of stored vectors."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Remove every stored vector."""
        ...

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if index is accessible and healthy.

        Returns:
            True if healthy, False otherwise
        """
        ...


class PineconeIndex(VectorIndex):
    """Pinecone vector index implementation.

    The Pinecone SDK is synchronous; calls run in a worker thread so the event
    loop keeps serving other operations.
    """

    UPSERT_BATCH_SIZE = 100
    DELETE_BATCH_SIZE = 1000

    def __init__(self, index_name: str, api_key: str, namespace: str | None = None):
        """Initialize Pinecone index client.

        Args:
            index_name: Name of Pinecone index
            api_key: Pinecone API key
            namespace: Optional namespace for multi-tenancy
        """
        from pinecone import Pinecone

        self.name = index_name
        self.namespace = namespace

        self.pc = Pinecone(api_key=api_key)
        self.index = self.pc.Index(index_name)

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        if not records:
            raise ValueError("Cannot upsert empty record list")

        for start in range(0, len(records), self.UPSERT_BATCH_SIZE):
            vectors = [
                {"id": record.id, "values": record.values, "metadata": record.metadata}
                for record in records[start : start + self.UPSERT_BATCH_SIZE]
            ]
            await asyncio.to_thread(self.index.upsert, vectors=vectors, namespace=self.namespace)

        logger.debug(f"Upserted {len(records)} vectors into {self.name}")

    async def query(
        self,
        vector: Sequence[float],
        top_k: int,
        filters: dict[str, Any] | None = None,
        include_metadata: bool = True,
    ) -> list[IndexMatch]:
        results = await asyncio.to_thread(
            self.index.query,
            vector=list(vector),
            top_k=top_k,
            filter=filters or None,
            namespace=self.namespace,
            include_metadata=include_metadata,
            include_values=False,  # Don't return vectors to save bandwidth
        )

        return [
            IndexMatch(
                id=match.id,
                score=match.score,
                metadata=dict(match.metadata) if match.metadata else None,
            )
            for match in results.matches or []
        ]

    async def delete(self, ids: Sequence[str]) -> None:
        if not ids:
            return

        for start in range(0, len(ids), self.DELETE_BATCH_SIZE):
            batch = list(ids[start : start + self.DELETE_BATCH_SIZE])
            await asyncio.to_thread(self.index.delete, ids=batch, namespace=self.namespace)

    async def count(self) -> int:
        stats = await asyncio.to_thread(self.index.describe_index_stats)

        if self.namespace:
            namespaces = getattr(stats, "namespaces", None) or {}
            summary = namespaces.get(self.namespace)
            return summary.vector_count if summary else 0

        return stats.total_vector_count if hasattr(stats, "total_vector_count") else 0

    async def clear(self) -> None:
        await asyncio.to_thread(self.index.delete, delete_all=True, namespace=self.namespace)

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self.index.describe_index_stats)
            return True
        except Exception:
            return False


def create_index(config: IndexConfig, index_name: str) -> VectorIndex:
    """Factory function to create a vector index from config.

    Args:
        config: Index configuration
        index_name: Which index to open (documents or memory)

    Returns:
        Vector index implementation
    """
    if config.backend == "pinecone":
        if not config.api_key:
            raise ValueError("Pinecone API key is required")
        return PineconeIndex(index_name, api_key=config.api_key, namespace=config.namespace)
    raise ValueError(f"Unknown index backend {config.backend!r}. Expected 'pinecone'")
