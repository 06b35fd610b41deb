"""
Transport factory for MCP.

Creates appropriate transport instances based on configuration. Built-in
transports are registered explicitly at startup via
``register_builtin_transports``.
"""

import logging

from slack_mcp_gateway.domain.exceptions.mcp import MCPTransportError
from slack_mcp_gateway.domain.model.mcp.transport import TransportConfig, TransportType
from slack_mcp_gateway.infrastructure.mcp.transport.base import BaseTransport

logger = logging.getLogger(__name__)


class TransportFactory:
    """
    Factory for creating MCP transport instances.

    Maps each ``TransportType`` to the class implementing it.
    """

    def __init__(self) -> None:
        self._transports: dict[TransportType, type[BaseTransport]] = {}

    def register(self, transport_type: TransportType, transport_class: type[BaseTransport]) -> None:
        """
        Register a transport implementation.

        Args:
            transport_type: Transport type enum value.
            transport_class: Transport class implementing BaseTransport.
        """
        self._transports[transport_type] = transport_class
        logger.debug(f"Registered transport: {transport_type.value} -> {transport_class.__name__}")

    def create(self, config: TransportConfig, server_name: str = "") -> BaseTransport:
        """
        Create a transport instance from configuration.

        Raises:
            MCPTransportError: If transport type is not registered.
        """
        transport_class = self._transports.get(config.transport_type)
        if not transport_class:
            raise MCPTransportError(
                f"Unsupported transport type: {config.transport_type.value}"
            )
        return transport_class(config, server_name)

    def supports(self, transport_type: str) -> bool:
        """Check if a transport type string is registered."""
        try:
            return TransportType.normalize(transport_type) in self._transports
        except ValueError:
            return False

    def get_supported_types(self) -> list[str]:
        """Get list of supported transport type strings."""
        return [t.value for t in self._transports]


def register_builtin_transports(factory: TransportFactory | None = None) -> TransportFactory:
    """Register the stdio, HTTP and SSE transports on ``factory`` (or a new one)."""
    from slack_mcp_gateway.infrastructure.mcp.transport.http import HTTPTransport
    from slack_mcp_gateway.infrastructure.mcp.transport.sse import SSETransport
    from slack_mcp_gateway.infrastructure.mcp.transport.stdio import StdioTransport

    factory = factory or TransportFactory()
    factory.register(TransportType.STDIO, StdioTransport)
    factory.register(TransportType.HTTP, HTTPTransport)
    factory.register(TransportType.SSE, SSETransport)
    return factory
