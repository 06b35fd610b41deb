"""MCP client infrastructure."""

from slack_mcp_gateway.infrastructure.mcp.client import MCPClient
from slack_mcp_gateway.infrastructure.mcp.tool_registry import ToolRegistry
from slack_mcp_gateway.infrastructure.mcp.validation import ToolArgumentValidator

__all__ = ["MCPClient", "ToolArgumentValidator", "ToolRegistry"]
