"""Run the RAG MCP server over stdio: ``python -m rag_mcp``."""

from rag_mcp.mcp_server import run

if __name__ == "__main__":
    run()
