"""MCP server exposing the RAG backend to agents."""

from .mcp_server import register_tools, run, run_server

__all__ = [
    "register_tools",
    "run",
    "run_server",
]
