"""
MCP Transport Layer.

This package provides transport implementations for MCP protocol communication:
- stdio: Subprocess communication (local MCP servers)
- http: HTTP request/response
- sse: Server-Sent Events (event stream plus companion POST endpoint)
"""

from slack_mcp_gateway.infrastructure.mcp.transport.base import BaseTransport
from slack_mcp_gateway.infrastructure.mcp.transport.factory import (
    TransportFactory,
    register_builtin_transports,
)
from slack_mcp_gateway.infrastructure.mcp.transport.http import HTTPTransport
from slack_mcp_gateway.infrastructure.mcp.transport.sse import SSETransport
from slack_mcp_gateway.infrastructure.mcp.transport.stdio import StdioTransport

__all__ = [
    "BaseTransport",
    "TransportFactory",
    "register_builtin_transports",
    "StdioTransport",
    "HTTPTransport",
    "SSETransport",
]
