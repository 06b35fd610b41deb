"""
MCP Server Domain Models.

Defines the per-server definition, tool filter and client lifecycle states.
"""

from dataclasses import dataclass, field
from enum import Enum

from slack_mcp_gateway.domain.model.mcp.transport import TransportConfig, TransportType

DEFAULT_INITIALIZE_TIMEOUT_SECONDS = 30


class MCPClientState(str, Enum):
    """Lifecycle states of an MCP client.

    CREATED -> INITIALIZING -> INITIALIZED -> (CLOSING -> CLOSED)
    CREATED -> FAILED (terminal)
    """

    CREATED = "created"
    INITIALIZING = "initializing"
    INITIALIZED = "initialized"
    CLOSING = "closing"
    CLOSED = "closed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MCPClientState.CLOSED, MCPClientState.FAILED)


@dataclass(frozen=True)
class ToolFilter:
    """Per-server allow/block lists applied when tools are registered."""

    allow_list: tuple[str, ...] = ()
    block_list: tuple[str, ...] = ()

    def allows(self, tool_name: str) -> bool:
        """(allow-list empty OR tool in allow-list) AND tool not in block-list."""
        if self.allow_list and tool_name not in self.allow_list:
            return False
        return tool_name not in self.block_list


@dataclass(frozen=True)
class ServerSpec:
    """
    Configuration for one tool server.

    Immutable at runtime; a reload replaces specs wholesale.
    """

    name: str
    transport: TransportType
    command: str | None = None
    args: tuple[str, ...] = ()
    env: dict[str, str] = field(default_factory=dict)
    url: str | None = None
    headers: dict[str, str] = field(default_factory=dict)
    disabled: bool = False
    initialize_timeout_seconds: int = DEFAULT_INITIALIZE_TIMEOUT_SECONDS
    tool_filter: ToolFilter = field(default_factory=ToolFilter)

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Server name is required")
        if self.transport == TransportType.STDIO and not self.command:
            raise ValueError(f"Server '{self.name}': command is required for stdio transport")
        if self.transport in (TransportType.HTTP, TransportType.SSE) and not self.url:
            raise ValueError(
                f"Server '{self.name}': url is required for {self.transport.value} transport"
            )

    @staticmethod
    def infer_transport(
        transport: str | None, command: str | None, url: str | None
    ) -> TransportType:
        """Explicit transport wins; otherwise command implies stdio and url implies sse."""
        if transport:
            return TransportType.normalize(transport)
        if command:
            return TransportType.STDIO
        if url:
            return TransportType.SSE
        return TransportType.STDIO

    def to_transport_config(
        self,
        request_timeout: float = 30.0,
        shutdown_grace: float = 5.0,
        reconnect_attempts: int = 5,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
    ) -> TransportConfig:
        """Build the transport configuration for this server."""
        timeout_ms = int(request_timeout * 1000)
        if self.transport == TransportType.STDIO:
            return TransportConfig.stdio(
                command=[self.command or "", *self.args],
                environment=dict(self.env) or None,
                timeout=timeout_ms,
                shutdown_grace=shutdown_grace,
            )
        if self.transport == TransportType.HTTP:
            return TransportConfig.http(
                url=self.url or "",
                headers=dict(self.headers) or None,
                timeout=timeout_ms,
            )
        return TransportConfig.sse(
            url=self.url or "",
            headers=dict(self.headers) or None,
            timeout=timeout_ms,
            reconnect_attempts=reconnect_attempts,
            reconnect_base_delay=reconnect_base_delay,
            reconnect_max_delay=reconnect_max_delay,
        )
