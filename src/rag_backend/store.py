"""Vector store adapter over the two logical collections.

`Collection` wraps one `VectorIndex` and adds what the raw index does not do:
dimension checks before storage, threshold filtering of search results,
delete-by-filter (broad query, then bulk delete) and error wrapping.
`VectorStore` owns the "documents" and "memory" collections.
"""

import asyncio
from collections.abc import Sequence
from typing import Any

from loguru import logger

from rag_backend.errors import DimensionMismatchError, VectorStoreError
from rag_backend.index import IndexConfig, VectorIndex, create_index
from rag_backend.models import CollectionStats, IndexMatch, SearchOptions, SearchResult, VectorRecord

# Upper bound for enumeration queries (Pinecone caps top_k at 10,000)
BROAD_QUERY_TOP_K = 10000

COLLECTION_ALIASES = {"files": "documents", "documents": "documents", "memory": "memory"}


def _clamp_score(score: float) -> float:
    # Pinecone sometimes returns 1.00000036 due to float precision
    return min(1.0, max(-1.0, score))


def _to_result(match: IndexMatch, score: float) -> SearchResult:
    metadata = match.metadata or {}
    return SearchResult(
        id=match.id,
        content=str(metadata.get("content", "")),
        metadata=metadata,
        score=_clamp_score(score),
    )


class Collection:
    """One named logical collection backed by a vector index."""

    def __init__(self, name: str, index: VectorIndex, dimensions: int):
        """Initialize collection.

        Args:
            name: Logical collection name ("documents" or "memory")
            index: Backing vector index
            dimensions: Required vector length
        """
        self.name = name
        self.index = index
        self.dimensions = dimensions

    async def upsert(self, records: Sequence[VectorRecord]) -> None:
        """Insert or overwrite records.

        Raises:
            DimensionMismatchError: If any vector has the wrong length (nothing
                is stored in that case)
            VectorStoreError: If the index rejects the write
        """
        if not records:
            return

        for record in records:
            if len(record.values) != self.dimensions:
                raise DimensionMismatchError(self.dimensions, len(record.values), record.id)

        try:
            await self.index.upsert(records)
        except Exception as e:
            logger.error(f"Error upserting into {self.name}: {e}")
            raise VectorStoreError(f"upsert {len(records)} records into {self.name}", e) from e

        logger.debug(f"Upserted {len(records)} records into {self.name}")

    async def search(self, vector: Sequence[float], options: SearchOptions) -> list[SearchResult]:
        """Top-K similarity search keeping only matches at or above the threshold.

        Results keep the index's descending-score order and never exceed
        `options.limit`. Matches without metadata are dropped.
        """
        try:
            matches = await self.index.query(vector, top_k=options.limit, filters=options.filters)
        except Exception as e:
            logger.error(f"Error searching {self.name}: {e}")
            raise VectorStoreError(f"search {self.name}", e) from e

        results = [
            _to_result(match, match.score or 0.0)
            for match in matches
            if (match.score or 0.0) >= options.threshold and match.metadata
        ][: options.limit]

        logger.debug(f"Found {len(results)} relevant results in {self.name}")
        return results

    async def _broad_query(
        self, filters: dict[str, Any] | None, limit: int, include_metadata: bool
    ) -> list[IndexMatch]:
        try:
            return await self.index.query(
                [0.0] * self.dimensions,
                top_k=limit,
                filters=filters,
                include_metadata=include_metadata,
            )
        except Exception as e:
            logger.error(f"Error fetching from {self.name}: {e}")
            raise VectorStoreError(f"fetch records from {self.name}", e) from e

    async def fetch(
        self, filters: dict[str, Any] | None = None, limit: int = BROAD_QUERY_TOP_K
    ) -> list[SearchResult]:
        """Enumerate records matching an exact metadata filter.

        Issues a zero-vector query restricted by the filter. Scores are not
        meaningful here; a missing or zero score is reported as 1.0. At most
        `limit` records come back; hitting the limit is logged as a warning.
        """
        matches = await self._broad_query(filters, limit, include_metadata=True)
        if len(matches) >= limit:
            logger.warning(
                f"Fetch from {self.name} matching {filters} hit the {limit} record limit; "
                "results are truncated"
            )

        return [_to_result(match, match.score or 1.0) for match in matches]

    async def delete(self, ids: Sequence[str]) -> None:
        if not ids:
            return

        try:
            await self.index.delete(ids)
        except Exception as e:
            logger.error(f"Error deleting from {self.name}: {e}")
            raise VectorStoreError(f"delete {len(ids)} records from {self.name}", e) from e

    async def delete_by_filter(self, filters: dict[str, Any]) -> int:
        """Delete every record matching the filter.

        One query returns at most `BROAD_QUERY_TOP_K` ids, so rounds of
        query-then-delete repeat until no unseen id matches.

        Returns:
            Number of deleted records (0 is a successful no-op)
        """
        deleted: set[str] = set()

        while True:
            matches = await self._broad_query(
                filters, BROAD_QUERY_TOP_K, include_metadata=False
            )
            # Stale matches for already deleted ids can linger in an eventually
            # consistent index
            ids = [match.id for match in matches if match.id not in deleted]
            if not ids:
                break

            await self.delete(ids)
            deleted.update(ids)
            logger.debug(f"Deleted {len(ids)} records from {self.name} matching {filters}")

        if not deleted:
            logger.info(f"No records in {self.name} match {filters}")
            return 0

        logger.info(f"Deleted {len(deleted)} records from {self.name} matching {filters}")
        return len(deleted)

    async def count(self) -> int:
        try:
            return await self.index.count()
        except Exception as e:
            logger.error(f"Error counting {self.name}: {e}")
            raise VectorStoreError(f"count {self.name}", e) from e

    async def clear(self) -> None:
        try:
            await self.index.clear()
        except Exception as e:
            logger.error(f"Error clearing {self.name}: {e}")
            raise VectorStoreError(f"clear {self.name}", e) from e

        logger.info(f"Cleared {self.name} collection")

    async def health_check(self) -> bool:
        return await self.index.health_check()


class VectorStore:
    """The documents and memory collections behind one adapter."""

    def __init__(self, documents: VectorIndex, memory: VectorIndex, dimensions: int):
        self.documents = Collection("documents", documents, dimensions)
        self.memory = Collection("memory", memory, dimensions)

    @classmethod
    def from_config(cls, config: IndexConfig, dimensions: int) -> "VectorStore":
        return cls(
            documents=create_index(config, config.documents_index),
            memory=create_index(config, config.memory_index),
            dimensions=dimensions,
        )

    def collection(self, name: str) -> Collection:
        """Resolve a collection by name ("files" is an alias of "documents")."""
        try:
            resolved = COLLECTION_ALIASES[name]
        except KeyError:
            raise ValueError(
                f"Unknown collection {name!r}. Expected one of {sorted(COLLECTION_ALIASES)}"
            ) from None
        return self.documents if resolved == "documents" else self.memory

    async def stats(self) -> CollectionStats:
        """Count both collections.

        Raises:
            VectorStoreError: If either count fails
        """
        documents, memory = await asyncio.gather(self.documents.count(), self.memory.count())
        return CollectionStats(documents=documents, memory=memory, total=documents + memory)
