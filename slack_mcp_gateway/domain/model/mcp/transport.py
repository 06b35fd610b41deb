"""
MCP Transport Domain Models.

Defines transport protocol types and configuration value objects.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any


class TransportType(str, Enum):
    """MCP transport protocol types."""

    STDIO = "stdio"  # child process, line-delimited JSON-RPC
    HTTP = "http"  # one POST per request
    SSE = "sse"  # event stream + companion POST endpoint

    @classmethod
    def normalize(cls, value: str) -> "TransportType":
        """Normalize transport type string to enum."""
        normalized = value.lower().strip()
        if normalized == "local":
            return cls.STDIO
        return cls(normalized)


@dataclass(frozen=True)
class TransportConfig:
    """
    MCP transport configuration value object.

    Contains all settings needed to establish a connection
    using any supported transport protocol.
    """

    transport_type: TransportType

    # Stdio transport config
    command: list[str] | None = None
    environment: dict[str, str] | None = None

    # Remote transport config (HTTP/SSE)
    url: str | None = None
    headers: dict[str, str] | None = None

    # Common config
    timeout: int = 30000  # milliseconds, per request
    shutdown_grace: float = 5.0  # seconds between SIGINT and SIGKILL

    # SSE reconnection
    reconnect_attempts: int = 5
    reconnect_base_delay: float = 1.0
    reconnect_max_delay: float = 30.0

    def __post_init__(self) -> None:
        """Validate configuration based on transport type."""
        if self.transport_type == TransportType.STDIO:
            if not self.command:
                raise ValueError("Command is required for stdio transport")
        elif not self.url:
            raise ValueError(f"URL is required for {self.transport_type.value} transport")

    @property
    def timeout_seconds(self) -> float:
        """Get timeout in seconds."""
        return self.timeout / 1000.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "type": self.transport_type.value,
            "command": self.command,
            "environment": self.environment,
            "url": self.url,
            "headers": self.headers,
            "timeout": self.timeout,
            "shutdown_grace": self.shutdown_grace,
            "reconnect_attempts": self.reconnect_attempts,
        }

    @classmethod
    def stdio(
        cls,
        command: list[str],
        environment: dict[str, str] | None = None,
        timeout: int = 30000,
        shutdown_grace: float = 5.0,
    ) -> "TransportConfig":
        """Create stdio transport config."""
        return cls(
            transport_type=TransportType.STDIO,
            command=command,
            environment=environment,
            timeout=timeout,
            shutdown_grace=shutdown_grace,
        )

    @classmethod
    def http(
        cls,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: int = 30000,
    ) -> "TransportConfig":
        """Create HTTP transport config."""
        return cls(
            transport_type=TransportType.HTTP,
            url=url,
            headers=headers,
            timeout=timeout,
        )

    @classmethod
    def sse(
        cls,
        url: str,
        headers: dict[str, str] | None = None,
        timeout: int = 30000,
        reconnect_attempts: int = 5,
        reconnect_base_delay: float = 1.0,
        reconnect_max_delay: float = 30.0,
    ) -> "TransportConfig":
        """Create SSE transport config."""
        return cls(
            transport_type=TransportType.SSE,
            url=url,
            headers=headers,
            timeout=timeout,
            reconnect_attempts=reconnect_attempts,
            reconnect_base_delay=reconnect_base_delay,
            reconnect_max_delay=reconnect_max_delay,
        )
