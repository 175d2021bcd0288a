"""Pytest configuration for test discovery, env, and fixtures.

This file ensures that:
- `src/` is importable
- Integration tests can read credentials from `conf/secrets.yml`
- Unit tests share in-memory fakes of the index and embedding services
"""

from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

# Ensure src directory is in path for imports
repo_root = Path(__file__).parent.parent
src_path = repo_root / "src"
if str(src_path) not in sys.path:
    sys.path.insert(0, str(src_path))

from fakes import DIMENSIONS, FakeEmbedder, InMemoryIndex  # noqa: E402

from rag_backend.chunking import ChunkingConfig, SentenceChunker  # noqa: E402
from rag_backend.config import FilesConfig, SearchDefaults  # noqa: E402
from rag_backend.service import RAGService  # noqa: E402
from rag_backend.store import VectorStore  # noqa: E402

SECRET_KEYS = ("HUGGINGFACE_API_KEY", "OPENAI_API_KEY", "PINECONE_API_KEY")


def _load_secrets_into_env() -> None:
    """Load secrets from conf/secrets.yml into environment if not set.

    Only sets variables that are currently unset to avoid overriding user-provided
    environment.
    """
    secrets_path = repo_root / "conf" / "secrets.yml"
    if not secrets_path.exists():
        return

    import yaml  # type: ignore[import-untyped]

    data = yaml.safe_load(secrets_path.read_text()) or {}
    for key in SECRET_KEYS:
        if os.environ.get(key):
            continue
        value = data.get(key)
        if value:
            os.environ[key] = str(value)


def pytest_sessionstart(session: object) -> None:
    _load_secrets_into_env()


@pytest.fixture
def documents_index() -> InMemoryIndex:
    return InMemoryIndex("rag-files")


@pytest.fixture
def memory_index() -> InMemoryIndex:
    return InMemoryIndex("agent-memory")


@pytest.fixture
def store(documents_index: InMemoryIndex, memory_index: InMemoryIndex) -> VectorStore:
    return VectorStore(documents_index, memory_index, dimensions=DIMENSIONS)


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def service(store: VectorStore, embedder: FakeEmbedder) -> RAGService:
    """Service over in-memory fakes with the production chunking defaults."""
    return RAGService(
        store=store,
        embedder=embedder,
        chunker=SentenceChunker(ChunkingConfig(chunk_size=1000, overlap=200)),
        files=FilesConfig(),
        search_defaults=SearchDefaults(limit=10, threshold=0.7),
    )
