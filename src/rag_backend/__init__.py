"""Retrieval backend for the MCP RAG server.

This package provides document chunking, embedding, vector storage and the
retrieval orchestrator independent of the MCP server interface. The server in
`rag_mcp` consumes this backend as a service layer.

Architecture:
    - chunking: Sentence-based splitting into overlapping chunks
    - embedding: Model-agnostic embedding client (Hugging Face, OpenAI)
    - index: Pinecone integration behind the VectorIndex interface
    - store: Documents and memory collections with threshold search
    - service: RAGService orchestrating ingest, search and memory operations
    - models: Pydantic schemas for chunks, memory entries and results

Usage:
    >>> from rag_backend import RAGService, load_config
    >>> service = RAGService.from_config(load_config())
    >>> results = await service.search_files("protein aggregation", limit=5)
"""

__version__ = "1.0.0"

from rag_backend.config import RAGConfig, load_config, validate_config
from rag_backend.models import DocumentChunk, MemoryEntry, SearchOptions, SearchResult
from rag_backend.service import RAGService

__all__ = [
    "DocumentChunk",
    "MemoryEntry",
    "RAGConfig",
    "RAGService",
    "SearchOptions",
    "SearchResult",
    "load_config",
    "validate_config",
]
