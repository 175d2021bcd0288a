"""Maintenance CLI for the RAG knowledge base.

Every command prints a JSON document on stdout and exits with status 1 when
the operation reports failure. Logs go to stderr.

Usage:
    mcp-rag-maintenance add-file docs/protocol.pdf
    mcp-rag-maintenance add-dir docs/ --recursive
    mcp-rag-maintenance search-files "gradient climbing" --limit 5
    mcp-rag-maintenance --override search.threshold=0.5 search-memory "fly lines"
    mcp-rag-maintenance clear all
"""

import asyncio
import json
from collections.abc import Awaitable, Callable
from typing import Any

import click
from loguru import logger
from pydantic import BaseModel

from rag_backend.config import load_config, validate_config
from rag_backend.service import RAGService
from rag_mcp.logging_setup import configure_logging

Operation = Callable[[RAGService], Awaitable[Any]]


def build_service(config_path: str | None, overrides: list[str]) -> RAGService:
    """Load, validate and wire the service for one CLI invocation."""
    config = load_config(config_path=config_path, overrides=overrides)
    validate_config(config)
    configure_logging(config.server.log_level)
    return RAGService.from_config(config)


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, list):
        return [_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    return value


async def _with_service(settings: dict[str, Any], operation: Operation) -> Any:
    service = build_service(settings["config_path"], settings["overrides"])
    try:
        return await operation(service)
    finally:
        await service.close()


def _execute(ctx: click.Context, operation: Operation) -> None:
    """Run an operation, print its JSON result and set the exit status."""
    try:
        result = asyncio.run(_with_service(ctx.obj, operation))
    except Exception as exc:  # noqa: BLE001
        logger.error(f"{ctx.info_name} failed: {exc}")
        click.echo(json.dumps({"success": False, "message": str(exc)}, indent=2))
        ctx.exit(1)

    payload = _jsonable(result)
    click.echo(json.dumps(payload, indent=2, default=str))

    if isinstance(payload, dict) and payload.get("success") is False:
        ctx.exit(1)
    if isinstance(payload, dict) and payload.get("failed", 0) > 0:
        ctx.exit(1)


@click.group()  # type: ignore[misc]
@click.option(  # type: ignore[misc]
    "--config-path",
    type=click.Path(file_okay=False),
    default=None,
    help="Directory holding the Hydra config (defaults to conf/rag)",
)
@click.option(  # type: ignore[misc]
    "--override",
    "overrides",
    multiple=True,
    help="Hydra override, e.g. chunking.chunk_size=500 (repeatable)",
)
@click.pass_context  # type: ignore[misc]
def cli(ctx: click.Context, config_path: str | None, overrides: tuple[str, ...]) -> None:
    """Manage documents and agent memory in the RAG knowledge base."""
    ctx.obj = {"config_path": config_path, "overrides": list(overrides)}


@cli.command("add-file")  # type: ignore[misc]
@click.argument("path")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def add_file(ctx: click.Context, path: str) -> None:
    """Chunk, embed and store one document."""
    _execute(ctx, lambda service: service.add_file(path))


@cli.command("add-dir")  # type: ignore[misc]
@click.argument("directory")  # type: ignore[misc]
@click.option("--recursive", is_flag=True, help="Also ingest subdirectories")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def add_dir(ctx: click.Context, directory: str, recursive: bool) -> None:
    """Add every supported document in a directory."""
    _execute(ctx, lambda service: service.add_directory(directory, recursive=recursive))


@cli.command("remove-file")  # type: ignore[misc]
@click.argument("path")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def remove_file(ctx: click.Context, path: str) -> None:
    """Remove every chunk of a document."""
    _execute(ctx, lambda service: service.remove_file(path))


@cli.command("list-files")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def list_files(ctx: click.Context) -> None:
    """List indexed documents."""
    _execute(ctx, lambda service: service.list_files())


@cli.command("search-files")  # type: ignore[misc]
@click.argument("query")  # type: ignore[misc]
@click.option("--limit", type=int, default=None, help="Maximum results")  # type: ignore[misc]
@click.option("--threshold", type=float, default=None, help="Minimum score")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def search_files(
    ctx: click.Context, query: str, limit: int | None, threshold: float | None
) -> None:
    """Search documents semantically."""
    _execute(ctx, lambda service: service.search_files(query, limit=limit, threshold=threshold))


@cli.command("add-memory")  # type: ignore[misc]
@click.argument("content")  # type: ignore[misc]
@click.option("--agent-id", required=True)  # type: ignore[misc]
@click.option("--session-id", required=True)  # type: ignore[misc]
@click.option("--category", default="general", show_default=True)  # type: ignore[misc]
@click.option("--importance", type=int, default=1, show_default=True)  # type: ignore[misc]
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def add_memory(
    ctx: click.Context,
    content: str,
    agent_id: str,
    session_id: str,
    category: str,
    importance: int,
    tags: tuple[str, ...],
) -> None:
    """Store a memory note for an agent."""
    _execute(
        ctx,
        lambda service: service.add_memory(
            content,
            agent_id=agent_id,
            session_id=session_id,
            category=category,
            importance=importance,
            tags=list(tags),
        ),
    )


@cli.command("search-memory")  # type: ignore[misc]
@click.argument("query")  # type: ignore[misc]
@click.option("--agent-id", default=None)  # type: ignore[misc]
@click.option("--limit", type=int, default=None)  # type: ignore[misc]
@click.option("--threshold", type=float, default=None)  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def search_memory(
    ctx: click.Context,
    query: str,
    agent_id: str | None,
    limit: int | None,
    threshold: float | None,
) -> None:
    """Search agent memory semantically."""
    _execute(
        ctx,
        lambda service: service.search_memory(
            query, agent_id=agent_id, limit=limit, threshold=threshold
        ),
    )


@cli.command("remove-memory")  # type: ignore[misc]
@click.argument("memory_id")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def remove_memory(ctx: click.Context, memory_id: str) -> None:
    _execute(ctx, lambda service: service.remove_memory(memory_id))


@cli.command("get-memory")  # type: ignore[misc]
@click.argument("agent_id")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def get_memory(ctx: click.Context, agent_id: str) -> None:
    """Print every memory note of an agent."""
    _execute(ctx, lambda service: service.get_memory_by_agent(agent_id))


async def _stats_with_status(service: RAGService) -> dict[str, Any]:
    stats = await service.get_stats()
    connected = await service.test_embedding_service()
    return {**stats.model_dump(), "embedding_service": "connected" if connected else "disconnected"}


@cli.command("stats")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def stats(ctx: click.Context) -> None:
    """Print collection counts and embedding service status."""
    _execute(ctx, _stats_with_status)


@cli.command("clear")  # type: ignore[misc]
@click.argument("scope", type=click.Choice(["files", "memory", "all"]))  # type: ignore[misc]
@click.confirmation_option(prompt="This deletes stored vectors. Continue?")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def clear(ctx: click.Context, scope: str) -> None:
    """Delete stored documents, memory, or both."""
    _execute(ctx, lambda service: service.clear_data(scope))  # type: ignore[arg-type]


async def _connection_status(service: RAGService) -> dict[str, Any]:
    healthy = await service.test_embedding_service()
    return {
        "success": healthy,
        "message": "Embedding service is working" if healthy else "Embedding service test failed",
    }


@cli.command("test-connection")  # type: ignore[misc]
@click.pass_context  # type: ignore[misc]
def test_connection(ctx: click.Context) -> None:
    """Check the embedding service."""
    _execute(ctx, _connection_status)


if __name__ == "__main__":
    cli()
