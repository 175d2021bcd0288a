"""MCP server entry point exposing the RAG backend as tools."""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Coroutine
from importlib import metadata
from typing import Any, cast

from loguru import logger

from rag_backend.config import RAGConfig, load_config, validate_config
from rag_backend.service import RAGService
from rag_mcp.logging_setup import configure_logging

ResourceHandler = Callable[[], Awaitable[dict[str, Any]]]
ResourceDecorator = Callable[[ResourceHandler], ResourceHandler]

STATS_RESOURCE = "rag://stats"

FastMCP: type[Any] | None = None

__all__ = [
    "run_server",
    "run",
    "register_tools",
    "__version__",
    "FastMCP",
]


def _resolve_version() -> str:
    """Return the installed distribution version or fall back to the project default."""

    try:
        return metadata.version("mcp-rag")
    except metadata.PackageNotFoundError:
        return "1.0.0"


__version__ = _resolve_version()


def _import_fastmcp() -> type[Any]:
    """Import FastMCP lazily so tests can stub the implementation."""

    global FastMCP
    if FastMCP is not None:
        return FastMCP

    try:
        import fastmcp
        from fastmcp import FastMCP as FastMCPClass

        # Disable banner for stdio transport compatibility
        fastmcp.settings.show_cli_banner = False
    except ModuleNotFoundError as exc:  # pragma: no cover - exercised in tests
        raise ImportError(
            "FastMCP is required to run the RAG MCP server. Install `fastmcp` to proceed."
        ) from exc

    FastMCP = cast(type[Any], FastMCPClass)
    return FastMCP


def register_tools(server: Any, service: RAGService) -> None:
    """Register the RAG resource and tools on a FastMCP server."""

    resource_decorator = cast(ResourceDecorator, server.resource(STATS_RESOURCE))

    @resource_decorator
    async def stats_resource() -> dict[str, Any]:
        stats = await service.get_stats()
        return {"resource": STATS_RESOURCE, **stats.model_dump()}

    @server.tool()  # type: ignore[misc]
    async def add_file(file_path: str) -> dict[str, Any]:
        """Add a document to the RAG knowledge base.

        Supported formats: PDF, DOCX, TXT, MD, CSV, JSON. The file is split into
        overlapping chunks, embedded and stored for semantic search.

        Args:
            file_path: Path to the file on the server's filesystem

        Returns:
            Dictionary with success, chunks and message
        """
        result = await service.add_file(file_path)
        if result.success:
            logger.success(result.message)
        return result.model_dump()

    @server.tool()  # type: ignore[misc]
    async def add_directory(directory: str, recursive: bool = False) -> dict[str, Any]:
        """Add every supported document in a directory.

        Args:
            directory: Directory to scan
            recursive: Also scan subdirectories

        Returns:
            Per-file results plus succeeded/failed/chunk totals
        """
        result = await service.add_directory(directory, recursive=recursive)
        return result.model_dump()

    @server.tool()  # type: ignore[misc]
    async def search_files(
        query: str,
        limit: int | None = None,
        threshold: float | None = None,
        filters: dict[str, Any] | None = None,
    ) -> list[dict[str, Any]]:
        """Search ingested documents semantically.

        Args:
            query: Natural language query
            limit: Maximum number of results (default from config, usually 10)
            threshold: Minimum similarity score (default from config, usually 0.7)
            filters: Exact-match metadata filters, e.g. {"file_type": ".pdf"}

        Returns:
            Matching chunks, best first, each with:
            - id: Chunk ID
            - content: Chunk text
            - metadata: source, filename, chunk_index, total_chunks, ...
            - score: Similarity score
        """
        try:
            results = await service.search_files(
                query, limit=limit, threshold=threshold, filters=filters
            )
        except Exception as exc:
            logger.error(f"search_files failed: {exc}")
            raise

        logger.success(f"Found {len(results)} document results")
        return [result.model_dump() for result in results]

    @server.tool()  # type: ignore[misc]
    async def remove_file(file_path: str) -> dict[str, Any]:
        """Remove every chunk of a previously added document.

        Args:
            file_path: The same path that was passed to add_file
        """
        return (await service.remove_file(file_path)).model_dump()

    @server.tool()  # type: ignore[misc]
    async def list_files() -> list[dict[str, Any]]:
        """List indexed documents with their chunk counts, newest first."""
        files = await service.list_files()
        return [indexed.model_dump() for indexed in files]

    @server.tool()  # type: ignore[misc]
    async def add_memory(
        content: str,
        agent_id: str,
        session_id: str,
        category: str = "general",
        importance: int = 1,
        tags: list[str] | None = None,
    ) -> dict[str, Any]:
        """Store a memory note for an agent.

        Args:
            content: The note text
            agent_id: Agent that owns the note
            session_id: Session the note belongs to
            category: Free-form category label
            importance: Importance from 1 to 10
            tags: Optional tags

        Returns:
            Dictionary with success, memory_id and message
        """
        result = await service.add_memory(
            content,
            agent_id=agent_id,
            session_id=session_id,
            category=category,
            importance=importance,
            tags=tags,
        )
        if result.success:
            logger.success(f"Stored memory {result.memory_id} for agent {agent_id}")
        return result.model_dump()

    @server.tool()  # type: ignore[misc]
    async def search_memory(
        query: str,
        agent_id: str | None = None,
        limit: int | None = None,
        threshold: float | None = None,
    ) -> list[dict[str, Any]]:
        """Search agent memory semantically.

        Args:
            query: Natural language query
            agent_id: Restrict results to one agent
            limit: Maximum number of results
            threshold: Minimum similarity score
        """
        try:
            results = await service.search_memory(
                query, agent_id=agent_id, limit=limit, threshold=threshold
            )
        except Exception as exc:
            logger.error(f"search_memory failed: {exc}")
            raise

        logger.success(f"Found {len(results)} memory results")
        return [result.model_dump() for result in results]

    @server.tool()  # type: ignore[misc]
    async def remove_memory(memory_id: str) -> dict[str, Any]:
        """Delete one memory note by its ID."""
        return (await service.remove_memory(memory_id)).model_dump()

    @server.tool()  # type: ignore[misc]
    async def get_memory_by_agent(agent_id: str) -> list[dict[str, Any]]:
        """Return every memory note stored for an agent."""
        results = await service.get_memory_by_agent(agent_id)
        return [result.model_dump() for result in results]

    @server.tool()  # type: ignore[misc]
    async def get_stats() -> dict[str, Any]:
        """Return vector counts for the documents and memory collections."""
        return (await service.get_stats()).model_dump()

    @server.tool()  # type: ignore[misc]
    async def clear_data(scope: str) -> dict[str, Any]:
        """Delete stored data.

        Args:
            scope: "files", "memory" or "all"
        """
        return (await service.clear_data(scope)).model_dump()  # type: ignore[arg-type]

    @server.tool()  # type: ignore[misc]
    async def test_connection() -> dict[str, Any]:
        """Check that the embedding service returns vectors of the configured size."""
        healthy = await service.test_embedding_service()
        return {
            "success": healthy,
            "message": (
                "Embedding service is working" if healthy else "Embedding service test failed"
            ),
        }


async def run_server(config: RAGConfig | None = None, service: RAGService | None = None) -> None:
    """Run the MCP server event loop.

    Args:
        config: Loaded configuration (loaded and validated here when omitted)
        service: Pre-built service; built from config when omitted
    """

    if config is None:
        config = load_config()
        validate_config(config)
    configure_logging(config.server.log_level)

    fastmcp_class = _import_fastmcp()

    if service is None:
        service = RAGService.from_config(config)
    await service.initialize()

    server = _instantiate_fastmcp(
        fastmcp_class,
        server_id=config.server.name,
        name=config.server.name,
        version=config.server.version,
        description="Retrieval-augmented generation over documents and agent memory.",
    )
    register_tools(server, service)

    logger.info(f"Starting {config.server.name} MCP server v{config.server.version}")
    try:
        await server.run_async()
    finally:
        await service.close()


def run(main: Callable[[], Coroutine[Any, Any, None]] | None = None) -> None:
    """Synchronous helper for CLI entry points."""
    entry = main or run_server
    try:
        asyncio.run(entry())
    except KeyboardInterrupt:
        logger.warning("MCP server interrupted by user.")
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unhandled MCP server failure: {}", exc)
        raise


def _instantiate_fastmcp(class_: type[Any], **metadata: Any) -> Any:
    signature = inspect.signature(class_.__init__)
    parameters = signature.parameters

    filtered: dict[str, Any] = {key: value for key, value in metadata.items() if key in parameters}

    if "server_id" in metadata and "server_id" not in filtered and "id" in parameters:
        filtered["id"] = metadata["server_id"]

    if not filtered and any(
        param.kind == inspect.Parameter.VAR_KEYWORD for param in parameters.values()
    ):
        filtered = metadata

    return class_(**filtered)
