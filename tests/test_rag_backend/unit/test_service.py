"""Unit tests for RAGService over in-memory fakes.

Covers the ingest pipeline and its failure shapes, search guarantees
(threshold and limit), document removal by source, the memory lifecycle,
stats degradation and clearing.
"""

from pathlib import Path
from unittest.mock import AsyncMock

import pytest
from fakes import DIMENSIONS, FakeEmbedder, InMemoryIndex

from rag_backend.chunking import ChunkingConfig, SentenceChunker
from rag_backend.config import FilesConfig, RAGConfig
from rag_backend.errors import EmbeddingError, EmbeddingRateLimitError
from rag_backend.models import VectorRecord
from rag_backend.service import RAGService
from rag_backend.store import BROAD_QUERY_TOP_K, VectorStore


def write(path: Path, text: str) -> str:
    path.write_text(text, encoding="utf-8")
    return str(path)


def long_text(length: int) -> str:
    sentences: list[str] = []
    i = 0
    while len(" ".join(sentences)) < length:
        sentences.append(f"Observation {i} concerns larval gradient climbing behaviour.")
        i += 1
    return " ".join(sentences)


class TestAddFile:
    @pytest.mark.asyncio
    async def test_ingest_3000_character_file(
        self,
        service: RAGService,
        embedder: FakeEmbedder,
        documents_index: InMemoryIndex,
        tmp_path: Path,
    ) -> None:
        path = write(tmp_path / "notes.txt", long_text(3000))

        result = await service.add_file(path)

        assert result.success is True
        assert result.chunks >= 3
        assert result.message == f"File added successfully with {result.chunks} chunks"
        assert len(documents_index.records) == result.chunks
        # One embed_batch call covering every chunk
        assert len(embedder.batches) == 1
        assert len(embedder.batches[0]) == result.chunks

        metadata = [r.metadata for r in documents_index.records.values()]
        assert {m["source"] for m in metadata} == {path}
        assert {m["total_chunks"] for m in metadata} == {result.chunks}
        assert sorted(m["chunk_index"] for m in metadata) == list(range(result.chunks))
        assert all(m["type"] == "document" and m["content"] for m in metadata)

    @pytest.mark.asyncio
    async def test_unsupported_extension(self, service: RAGService, tmp_path: Path) -> None:
        path = write(tmp_path / "program.exe", "binary-ish")

        result = await service.add_file(path)

        assert result.success is False
        assert result.chunks == 0
        assert result.message == "Failed to add file: Unsupported file type: .exe"

    @pytest.mark.asyncio
    async def test_missing_file(self, service: RAGService, tmp_path: Path) -> None:
        result = await service.add_file(str(tmp_path / "missing.txt"))

        assert result.success is False
        assert result.message.startswith("Failed to add file:")

    @pytest.mark.asyncio
    async def test_file_too_large(
        self, store: VectorStore, embedder: FakeEmbedder, tmp_path: Path
    ) -> None:
        service = RAGService(
            store=store,
            embedder=embedder,
            chunker=SentenceChunker(ChunkingConfig()),
            files=FilesConfig(max_file_size_mb=1),
        )
        path = write(tmp_path / "big.txt", "x" * (1024 * 1024 + 1))

        result = await service.add_file(path)

        assert result.success is False
        assert "File too large" in result.message
        assert embedder.batches == []

    @pytest.mark.asyncio
    async def test_empty_file(self, service: RAGService, tmp_path: Path) -> None:
        path = write(tmp_path / "empty.md", "   \n\n  ")

        result = await service.add_file(path)

        assert result.success is False
        assert result.message == (
            "Failed to add file: No content could be extracted from the file"
        )

    @pytest.mark.asyncio
    async def test_embedding_failure_stores_nothing(
        self,
        service: RAGService,
        embedder: FakeEmbedder,
        documents_index: InMemoryIndex,
        tmp_path: Path,
    ) -> None:
        embedder.fail_with = EmbeddingRateLimitError()
        path = write(tmp_path / "notes.txt", long_text(2000))

        result = await service.add_file(path)

        assert result.success is False
        assert "Rate limit exceeded" in result.message
        assert documents_index.records == {}

    @pytest.mark.asyncio
    async def test_store_failure(
        self, service: RAGService, documents_index: InMemoryIndex, tmp_path: Path
    ) -> None:
        documents_index.fail_with = ConnectionError("index unreachable")
        path = write(tmp_path / "notes.txt", "Short note.")

        result = await service.add_file(path)

        assert result.success is False
        assert "index unreachable" in result.message

    @pytest.mark.asyncio
    async def test_custom_extractor(
        self, store: VectorStore, embedder: FakeEmbedder, tmp_path: Path
    ) -> None:
        seen: list[tuple[str, str]] = []

        async def fake_extract(path: str, file_type: str) -> str:
            seen.append((path, file_type))
            return "Extracted from a PDF."

        service = RAGService(
            store=store,
            embedder=embedder,
            chunker=SentenceChunker(ChunkingConfig()),
            extractor=fake_extract,
        )
        path = str(tmp_path / "paper.pdf")
        Path(path).write_bytes(b"%PDF-1.4 fake")

        result = await service.add_file(path)

        assert result.success is True
        assert result.chunks == 1
        assert seen == [(path, ".pdf")]


class TestAddDirectory:
    @pytest.mark.asyncio
    async def test_mixed_directory(self, service: RAGService, tmp_path: Path) -> None:
        write(tmp_path / "a.txt", "First document.")
        write(tmp_path / "b.md", "# Second\n\nSecond document.")
        write(tmp_path / "empty.txt", "")
        write(tmp_path / "skip.exe", "ignored")

        result = await service.add_directory(str(tmp_path))

        assert result.files == 3
        assert result.succeeded == 2
        assert result.failed == 1
        assert result.chunks == 2
        assert str(tmp_path / "skip.exe") not in result.results
        assert result.results[str(tmp_path / "empty.txt")].success is False

    @pytest.mark.asyncio
    async def test_recursive(self, service: RAGService, tmp_path: Path) -> None:
        nested = tmp_path / "nested"
        nested.mkdir()
        write(tmp_path / "top.txt", "Top level.")
        write(nested / "deep.txt", "Nested file.")

        flat = await service.add_directory(str(tmp_path))
        deep = await service.add_directory(str(tmp_path), recursive=True)

        assert flat.files == 1
        assert deep.files == 2

    @pytest.mark.asyncio
    async def test_missing_directory(self, service: RAGService, tmp_path: Path) -> None:
        result = await service.add_directory(str(tmp_path / "nope"))

        assert result.failed == 1
        assert result.files == 0


class TestSearchFiles:
    @pytest.mark.asyncio
    async def test_finds_ingested_content(self, service: RAGService, tmp_path: Path) -> None:
        path = write(tmp_path / "fly.txt", "Fly lines used in the screen.")
        await service.add_file(path)

        results = await service.search_files("Fly lines used in the screen.")

        assert len(results) == 1
        assert results[0].content == "Fly lines used in the screen."
        assert results[0].metadata["source"] == path

    @pytest.mark.asyncio
    @pytest.mark.parametrize(("limit", "threshold"), [(1, -1.0), (3, 0.0), (10, 0.5), (2, 0.9)])
    async def test_threshold_and_limit_respected(
        self, service: RAGService, tmp_path: Path, limit: int, threshold: float
    ) -> None:
        for i, text in enumerate(
            [
                "Gradient climbing in larvae.",
                "Larvae climbing gradients quickly.",
                "Odor gradient navigation.",
                "Unrelated note about lunch.",
                "Gradient climbing in larvae again.",
            ]
        ):
            await service.add_file(write(tmp_path / f"doc{i}.txt", text))

        results = await service.search_files(
            "gradient climbing in larvae", limit=limit, threshold=threshold
        )

        assert len(results) <= limit
        assert all(r.score >= threshold for r in results)

    @pytest.mark.asyncio
    async def test_failure_propagates(self, service: RAGService, embedder: FakeEmbedder) -> None:
        embedder.fail_with = EmbeddingError("provider down")

        with pytest.raises(EmbeddingError, match="provider down"):
            await service.search_files("anything")


class TestRemoveAndList:
    @pytest.mark.asyncio
    async def test_remove_only_matching_source(self, service: RAGService, tmp_path: Path) -> None:
        keep = write(tmp_path / "keep.txt", "Shared sentence about neurons.")
        drop = write(tmp_path / "drop.txt", "Shared sentence about neurons.")
        await service.add_file(keep)
        await service.add_file(drop)

        result = await service.remove_file(drop)

        assert result.success is True
        assert result.message == "File removed successfully"
        remaining = await service.search_files("Shared sentence about neurons.")
        assert [r.metadata["source"] for r in remaining] == [keep]

    @pytest.mark.asyncio
    async def test_remove_file_beyond_enumeration_limit(
        self, service: RAGService, documents_index: InMemoryIndex
    ) -> None:
        await service.store.documents.upsert(
            [
                VectorRecord(
                    id=f"big-{i}",
                    values=[1.0] * DIMENSIONS,
                    metadata={"type": "document", "source": "/big.txt"},
                )
                for i in range(BROAD_QUERY_TOP_K + 50)
            ]
        )

        result = await service.remove_file("/big.txt")

        assert result.success is True
        assert documents_index.records == {}

    @pytest.mark.asyncio
    async def test_remove_unknown_path_is_success(self, service: RAGService) -> None:
        result = await service.remove_file("/never/added.txt")
        assert result.success is True

    @pytest.mark.asyncio
    async def test_remove_failure(
        self, service: RAGService, documents_index: InMemoryIndex
    ) -> None:
        documents_index.fail_with = ConnectionError("down")

        result = await service.remove_file("/docs/a.txt")

        assert result.success is False
        assert result.message.startswith("Failed to remove file:")

    @pytest.mark.asyncio
    async def test_list_files(self, service: RAGService, tmp_path: Path) -> None:
        short = write(tmp_path / "short.txt", "Just one sentence.")
        longer = write(tmp_path / "long.txt", long_text(3000))
        await service.add_file(short)
        await service.add_file(longer)

        files = {f.source: f for f in await service.list_files()}

        assert set(files) == {short, longer}
        assert files[short].chunks == 1
        assert files[longer].chunks >= 3
        assert files[short].filename == "short.txt"
        assert files[short].file_type == ".txt"

    @pytest.mark.asyncio
    async def test_list_files_counts_from_total_chunks(self, service: RAGService) -> None:
        # Only two of five chunks come back, as when enumeration is truncated
        await service.store.documents.upsert(
            [
                VectorRecord(
                    id=f"c{i}",
                    values=[1.0] * DIMENSIONS,
                    metadata={
                        "type": "document",
                        "source": "/docs/report.pdf",
                        "filename": "report.pdf",
                        "chunk_index": i,
                        "total_chunks": 5,
                        "timestamp": "2026-01-01T00:00:00+00:00",
                    },
                )
                for i in range(2)
            ]
        )

        files = await service.list_files()

        assert [(f.source, f.chunks) for f in files] == [("/docs/report.pdf", 5)]


class TestMemory:
    @pytest.mark.asyncio
    async def test_round_trip_by_agent(self, service: RAGService) -> None:
        added = await service.add_memory(
            "The user prefers concise answers.",
            agent_id="agent-1",
            session_id="s-1",
            category="preferences",
            importance=7,
            tags=["style"],
        )

        assert added.success is True
        assert added.message == "Memory added successfully"

        results = await service.get_memory_by_agent("agent-1")

        assert [r.id for r in results] == [added.memory_id]
        assert results[0].score == 1.0
        assert results[0].metadata["category"] == "preferences"
        assert results[0].metadata["tags"] == ["style"]
        assert results[0].metadata["type"] == "memory"

    @pytest.mark.asyncio
    async def test_ids_are_unique(self, service: RAGService) -> None:
        first = await service.add_memory("same", agent_id="a", session_id="s")
        second = await service.add_memory("same", agent_id="a", session_id="s")
        assert first.memory_id != second.memory_id

    @pytest.mark.asyncio
    async def test_search_memory_agent_filter(self, service: RAGService) -> None:
        await service.add_memory("Fly stock 42 is contaminated.", agent_id="a1", session_id="s")
        mine = await service.add_memory(
            "Fly stock 42 is contaminated.", agent_id="a2", session_id="s"
        )

        results = await service.search_memory("Fly stock 42 is contaminated.", agent_id="a2")

        assert [r.id for r in results] == [mine.memory_id]

    @pytest.mark.asyncio
    async def test_remove_memory(self, service: RAGService) -> None:
        added = await service.add_memory("Temporary note.", agent_id="a1", session_id="s")

        result = await service.remove_memory(added.memory_id)

        assert result.success is True
        assert await service.get_memory_by_agent("a1") == []

    @pytest.mark.asyncio
    async def test_add_memory_failure(self, service: RAGService, embedder: FakeEmbedder) -> None:
        embedder.fail_with = EmbeddingError("provider down")

        result = await service.add_memory("Note.", agent_id="a1", session_id="s")

        assert result.success is False
        assert result.memory_id == ""
        assert result.message == "Failed to add memory: provider down"

    @pytest.mark.asyncio
    async def test_empty_agent_rejected(self, service: RAGService) -> None:
        result = await service.add_memory("Note.", agent_id="", session_id="s")
        assert result.success is False


class TestStatsAndClear:
    @pytest.mark.asyncio
    async def test_clear_all_then_stats_is_zero(self, service: RAGService, tmp_path: Path) -> None:
        await service.add_file(write(tmp_path / "a.txt", "Some content."))
        await service.add_memory("A memory.", agent_id="a1", session_id="s")

        before = await service.get_stats()
        assert (before.documents, before.memory, before.total) == (1, 1, 2)

        result = await service.clear_data("all")
        stats = await service.get_stats()

        assert result.success is True
        assert result.message == "all data cleared successfully"
        assert stats.model_dump() == {"documents": 0, "memory": 0, "total": 0}

    @pytest.mark.asyncio
    async def test_clear_single_scope(self, service: RAGService, tmp_path: Path) -> None:
        await service.add_file(write(tmp_path / "a.txt", "Some content."))
        await service.add_memory("A memory.", agent_id="a1", session_id="s")

        await service.clear_data("memory")
        stats = await service.get_stats()

        assert (stats.documents, stats.memory) == (1, 0)

    @pytest.mark.asyncio
    async def test_clear_files_scope_keeps_memory(
        self, service: RAGService, documents_index: InMemoryIndex, tmp_path: Path
    ) -> None:
        await service.add_file(write(tmp_path / "a.txt", "Some content."))
        await service.add_memory("A memory.", agent_id="a1", session_id="s")

        result = await service.clear_data("files")
        stats = await service.get_stats()

        assert result.message == "files data cleared successfully"
        assert documents_index.records == {}
        assert (stats.documents, stats.memory) == (0, 1)

    @pytest.mark.asyncio
    async def test_unknown_scope(self, service: RAGService) -> None:
        result = await service.clear_data("everything")  # type: ignore[arg-type]
        assert result.success is False

    @pytest.mark.asyncio
    async def test_stats_collapse_to_zero_on_failure(
        self, service: RAGService, tmp_path: Path, memory_index: InMemoryIndex
    ) -> None:
        await service.add_file(write(tmp_path / "a.txt", "Some content."))
        memory_index.fail_with = ConnectionError("down")

        stats = await service.get_stats()

        assert stats.model_dump() == {"documents": 0, "memory": 0, "total": 0}

    @pytest.mark.asyncio
    async def test_clear_failure(self, service: RAGService, documents_index: InMemoryIndex) -> None:
        documents_index.fail_with = ConnectionError("down")

        result = await service.clear_data("files")

        assert result.success is False
        assert result.message.startswith("Failed to clear data:")


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_embedding_service_check(
        self, service: RAGService, embedder: FakeEmbedder
    ) -> None:
        assert await service.test_embedding_service() is True
        embedder.fail_with = EmbeddingError("down")
        assert await service.test_embedding_service() is False

    @pytest.mark.asyncio
    async def test_initialize_tolerates_unreachable_index(
        self, service: RAGService, memory_index: InMemoryIndex
    ) -> None:
        memory_index.healthy = False
        await service.initialize()

    @pytest.mark.asyncio
    async def test_close_releases_embedder(
        self, service: RAGService, embedder: FakeEmbedder
    ) -> None:
        await service.close()
        assert embedder.closed is True

    def test_from_config(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr(
            "rag_backend.store.create_index", lambda config, name: InMemoryIndex(name)
        )
        config = RAGConfig.model_validate(
            {
                "chunking": {"chunk_size": 500, "overlap": 50},
                "embedding": {"api_key": "hf-test"},
                "index": {"api_key": "pc-test"},
                "files": {"max_file_size_mb": 5},
            }
        )

        service = RAGService.from_config(config)

        assert service.store.documents.index.name == "rag-files"
        assert service.store.memory.index.name == "agent-memory"
        assert service.store.documents.dimensions == 384
        assert service.files.max_file_size_mb == 5

    @pytest.mark.asyncio
    async def test_injected_extractor(
        self, store: VectorStore, embedder: FakeEmbedder, tmp_path: Path
    ) -> None:
        extractor = AsyncMock(return_value="Extracted protocol text.")
        service = RAGService(
            store=store,
            embedder=embedder,
            chunker=SentenceChunker(ChunkingConfig(chunk_size=1000, overlap=200)),
            extractor=extractor,
        )
        path = tmp_path / "protocol.pdf"
        path.write_bytes(b"%PDF-1.4 stub")

        result = await service.add_file(str(path))

        assert result.success is True
        extractor.assert_awaited_once_with(str(path), ".pdf")
        assert embedder.batches == [["Extracted protocol text."]]
