"""Automation backend: the MCP tool client (and, separately, the host app)."""
from goldqa.src.backend.mcp_client import MCPClient, ToolResult

__all__ = ["MCPClient", "ToolResult"]
