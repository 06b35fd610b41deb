"""
MCP (Model Context Protocol) Domain Models.

Key entities:
- ServerSpec: per-server configuration and tool filter
- MCPClientState: client lifecycle states
- MCPToolSchema / MCPToolResult: protocol payloads
- ToolInfo: registry entry tying a tool to its server
- TransportType / TransportConfig: transport configuration
"""

from slack_mcp_gateway.domain.model.mcp.server import MCPClientState, ServerSpec, ToolFilter
from slack_mcp_gateway.domain.model.mcp.tool import MCPToolResult, MCPToolSchema, ToolInfo
from slack_mcp_gateway.domain.model.mcp.transport import TransportConfig, TransportType

__all__ = [
    # Server
    "ServerSpec",
    "ToolFilter",
    "MCPClientState",
    # Tool
    "MCPToolSchema",
    "MCPToolResult",
    "ToolInfo",
    # Transport
    "TransportType",
    "TransportConfig",
]
