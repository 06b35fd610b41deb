"""
Domain exceptions for the gateway.

Typed errors raised by the transport, client, registry and provider layers.
Only the conversational controller turns them into user-visible text.
"""

from slack_mcp_gateway.domain.exceptions.config import ConfigError
from slack_mcp_gateway.domain.exceptions.mcp import (
    BadToolArgsError,
    MCPError,
    MCPInitializationError,
    MCPNotInitializedError,
    MCPStreamReconnectingError,
    MCPToolError,
    MCPTransportClosedError,
    MCPTransportError,
    MCPTransportTimeoutError,
    ToolExecutionError,
    UnknownToolError,
)

__all__ = [
    "ConfigError",
    "MCPError",
    "MCPTransportError",
    "MCPTransportClosedError",
    "MCPTransportTimeoutError",
    "MCPStreamReconnectingError",
    "MCPNotInitializedError",
    "MCPInitializationError",
    "MCPToolError",
    "UnknownToolError",
    "BadToolArgsError",
    "ToolExecutionError",
]
