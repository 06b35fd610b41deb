"""
Base transport implementation for MCP.

Provides common functionality and abstract interface for transport implementations:
request ID management, the initialize handshake, response demultiplexing and
lifecycle flags shared by the stdio, HTTP and SSE transports.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from types import TracebackType
from typing import Any

from slack_mcp_gateway import __version__
from slack_mcp_gateway.domain.exceptions.mcp import (
    MCPNotInitializedError,
    MCPTransportClosedError,
    MCPTransportError,
)
from slack_mcp_gateway.domain.model.mcp.transport import TransportConfig

logger = logging.getLogger(__name__)

MCP_PROTOCOL_VERSION = "2024-11-05"
CLIENT_INFO = {"name": "slack-mcp-gateway", "version": __version__}


class BaseTransport(ABC):
    """
    Abstract base class for MCP transport implementations.

    Subclasses implement ``start``, ``close``, ``_send_request`` and
    ``_send_notification``. Everything else (handshake, guards, pending
    futures) lives here.
    """

    def __init__(self, config: TransportConfig, server_name: str = "") -> None:
        """
        Initialize base transport.

        Args:
            config: Transport configuration.
            server_name: Owning server name, used in logs and errors.
        """
        self._config = config
        self._server_name = server_name or config.transport_type.value
        self._request_id = 0
        self._is_open = False
        self._initialized = False
        self._server_info: dict[str, Any] = {}
        self._init_lock = asyncio.Lock()
        self._closed_event = asyncio.Event()
        self._pending_requests: dict[int, asyncio.Future] = {}

    @property
    def is_open(self) -> bool:
        """Check if transport is currently open."""
        return self._is_open

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    @property
    def closed_event(self) -> asyncio.Event:
        """Set once the transport is closed or the peer went away."""
        return self._closed_event

    @property
    def config(self) -> TransportConfig:
        """Get transport configuration."""
        return self._config

    @property
    def server_name(self) -> str:
        return self._server_name

    @property
    def server_info(self) -> dict[str, Any]:
        return self._server_info

    def _next_request_id(self) -> int:
        """Generate next request ID."""
        self._request_id += 1
        return self._request_id

    def _build_request(
        self, method: str, params: dict[str, Any] | None
    ) -> tuple[int, dict[str, Any]]:
        request_id = self._next_request_id()
        return request_id, {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params or {},
        }

    @abstractmethod
    async def start(self) -> None:
        """
        Open the underlying channel (spawn the process or open the stream).

        Raises:
            MCPTransportError: If transport fails to start.
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """
        Close the transport.

        Should be idempotent.
        """
        ...

    @abstractmethod
    async def _send_request(
        self,
        method: str,
        params: dict[str, Any] | None,
        timeout: float,
    ) -> dict[str, Any]:
        """Send a JSON-RPC request and wait for its result."""
        ...

    @abstractmethod
    async def _send_notification(self, method: str, params: dict[str, Any]) -> None:
        """Send a JSON-RPC notification (no response expected)."""
        ...

    async def initialize(self, timeout: float | None = None) -> dict[str, Any]:
        """
        Perform the MCP protocol initialization handshake.

        Only one initialization runs at a time; later callers get the cached
        server info.

        Returns:
            The server's ``initialize`` result.
        """
        async with self._init_lock:
            if self._initialized:
                return self._server_info
            if not self._is_open:
                raise MCPTransportClosedError(f"Transport for '{self._server_name}' is not open")

            init_params = {
                "protocolVersion": MCP_PROTOCOL_VERSION,
                "capabilities": {"roots": {"listChanged": True}, "sampling": {}},
                "clientInfo": CLIENT_INFO,
            }
            result = await self._send_request(
                "initialize", init_params, timeout or self._config.timeout_seconds
            )
            await self._send_notification("notifications/initialized", {})

            self._server_info = result
            self._initialized = True
            logger.info(
                f"[MCP:{self._server_name}] Server initialized: {result.get('serverInfo', {})}"
            )
            return result

    async def call(
        self,
        method: str,
        params: dict[str, Any] | None = None,
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """
        Send a request on an initialized transport.

        Raises:
            MCPNotInitializedError: If ``initialize`` has not succeeded.
            MCPTransportError: If the request fails.
        """
        if not self._initialized:
            raise MCPNotInitializedError(self._server_name)
        return await self._send_request(method, params, timeout or self._config.timeout_seconds)

    # High-level API methods

    async def ping(self, timeout: float | None = None) -> None:
        await self.call("ping", None, timeout)

    async def list_tools(self, timeout: float | None = None) -> list[dict[str, Any]]:
        """List all available tools from the MCP server."""
        result = await self.call("tools/list", None, timeout)
        return list(result.get("tools", []))

    async def call_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> dict[str, Any]:
        """Call a tool on the MCP server."""
        params = {"name": tool_name, "arguments": arguments}
        return await self.call("tools/call", params, timeout)

    # Response demultiplexing for transports with a background reader

    def _register_pending(self, request_id: int) -> asyncio.Future:
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future
        return future

    def _handle_message(self, data: Any) -> None:
        """Handle an incoming JSON-RPC message."""
        if not isinstance(data, dict):
            logger.warning(f"[MCP:{self._server_name}] Received unexpected message: {data!r}")
            return

        request_id = data.get("id")

        if request_id is not None and request_id in self._pending_requests:
            future = self._pending_requests.pop(request_id)
            if future.done():
                return

            if "error" in data:
                error = data["error"]
                error_msg = (
                    error.get("message", str(error)) if isinstance(error, dict) else str(error)
                )
                future.set_exception(
                    MCPTransportError(f"MCP server error: {error_msg}", details={"error": error})
                )
            else:
                future.set_result(data.get("result") or {})

        elif "method" in data:
            # Server-initiated notification or request
            logger.debug(f"[MCP:{self._server_name}] Received server message: {data.get('method')}")

        else:
            logger.warning(f"[MCP:{self._server_name}] Received unexpected message: {data}")

    def _fail_pending(self, error: Exception) -> None:
        """Fail every in-flight request with ``error``."""
        for future in self._pending_requests.values():
            if not future.done():
                future.set_exception(error)
        self._pending_requests.clear()

    def _mark_closed(self) -> None:
        self._is_open = False
        self._initialized = False
        self._closed_event.set()

    async def __aenter__(self) -> "BaseTransport":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        """Async context manager exit."""
        await self.close()
