"""
MCP client wrapper.

One ``MCPClient`` per configured server. It owns the transport, tracks the
lifecycle state, serializes dispatch, and notices when the transport dies.
"""

import asyncio
import contextlib
import json
import logging
from collections.abc import Callable
from typing import Any

from slack_mcp_gateway.configuration.config import RetryConfig, TimeoutsConfig
from slack_mcp_gateway.domain.exceptions.mcp import (
    MCPError,
    MCPInitializationError,
    MCPNotInitializedError,
    MCPTransportClosedError,
    MCPTransportError,
    ToolExecutionError,
)
from slack_mcp_gateway.domain.model.mcp.server import MCPClientState, ServerSpec
from slack_mcp_gateway.domain.model.mcp.tool import MCPToolResult, MCPToolSchema
from slack_mcp_gateway.infrastructure.mcp.transport.base import BaseTransport
from slack_mcp_gateway.infrastructure.mcp.transport.factory import TransportFactory

logger = logging.getLogger(__name__)

# Error texts that mean the peer is gone rather than a transient hiccup
_DEAD_TRANSPORT_MARKERS = ("file already closed", "broken pipe", "stream ended", "transport dead")

CloseListener = Callable[["MCPClient"], None]


def _is_dead_transport_error(error: Exception) -> bool:
    if isinstance(error, MCPTransportClosedError):
        return True
    text = str(error).lower()
    return any(marker in text for marker in _DEAD_TRANSPORT_MARKERS)


class MCPClient:
    """
    MCP Client for one configured server.

    States: CREATED -> INITIALIZING -> INITIALIZED -> (CLOSING -> CLOSED),
    or CREATED -> FAILED. Initialization is never retried automatically.
    """

    def __init__(
        self,
        spec: ServerSpec,
        transport_factory: TransportFactory,
        timeouts: TimeoutsConfig | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        self._spec = spec
        self._transport_factory = transport_factory
        self._timeouts = timeouts or TimeoutsConfig()
        self._retry = retry or RetryConfig()
        self._transport: BaseTransport | None = None
        self._state = MCPClientState.CREATED
        self._init_lock = asyncio.Lock()
        self._call_lock = asyncio.Lock()
        self._watch_task: asyncio.Task | None = None
        self._close_listeners: list[CloseListener] = []
        self._tools: list[MCPToolSchema] = []
        self._closed = False

    @property
    def name(self) -> str:
        return self._spec.name

    @property
    def spec(self) -> ServerSpec:
        return self._spec

    @property
    def state(self) -> MCPClientState:
        return self._state

    @property
    def is_initialized(self) -> bool:
        return self._state == MCPClientState.INITIALIZED

    @property
    def transport(self) -> BaseTransport | None:
        return self._transport

    @property
    def tools(self) -> list[MCPToolSchema]:
        """Tools from the last successful ``list_tools``."""
        return list(self._tools)

    def add_close_listener(self, listener: CloseListener) -> Callable[[], None]:
        """Call ``listener`` once if the transport dies while initialized.

        Returns a function to unregister the listener.
        """
        self._close_listeners.append(listener)

        def unregister() -> None:
            if listener in self._close_listeners:
                self._close_listeners.remove(listener)

        return unregister

    async def initialize(self) -> None:
        """
        Start the transport and perform the MCP handshake.

        Idempotent once initialized.

        Raises:
            MCPInitializationError: On timeout or handshake failure. The
                client is left in FAILED.
        """
        async with self._init_lock:
            if self._state == MCPClientState.INITIALIZED:
                logger.debug(f"[MCP:{self.name}] Client already initialized, skipping")
                return
            if self._state != MCPClientState.CREATED:
                raise MCPInitializationError(
                    self.name,
                    f"MCP client '{self.name}' cannot be initialized in state {self._state.value}",
                )

            self._state = MCPClientState.INITIALIZING
            timeout = float(self._spec.initialize_timeout_seconds)
            logger.info(f"[MCP:{self.name}] Initializing ({self._spec.transport.value}, timeout={timeout}s)")

            try:
                config = self._spec.to_transport_config(
                    request_timeout=self._timeouts.http_request,
                    shutdown_grace=self._timeouts.shutdown_grace,
                    reconnect_attempts=self._retry.sse_max_reconnect_attempts,
                    reconnect_base_delay=self._retry.sse_base_backoff,
                    reconnect_max_delay=self._retry.sse_max_backoff,
                )
                self._transport = self._transport_factory.create(config, self.name)
                await asyncio.wait_for(self._connect(self._transport, timeout), timeout=timeout)
            except TimeoutError as e:
                await self._fail()
                raise MCPInitializationError(
                    self.name,
                    f"MCP server '{self.name}' did not initialize within {timeout}s",
                    original_error=e,
                ) from e
            except (MCPError, ValueError, OSError) as e:
                await self._fail()
                raise MCPInitializationError(self.name, original_error=e) from e

            self._state = MCPClientState.INITIALIZED
            self._watch_task = asyncio.create_task(self._watch_transport(self._transport))
            logger.info(f"[MCP:{self.name}] Client initialized")

    async def _connect(self, transport: BaseTransport, timeout: float) -> None:
        await transport.start()
        await transport.initialize(timeout)

    async def _fail(self) -> None:
        self._state = MCPClientState.FAILED
        await self._close_transport()

    def _require_transport(self) -> BaseTransport:
        if self._state != MCPClientState.INITIALIZED or self._transport is None:
            raise MCPNotInitializedError(self.name, self._state.value)
        return self._transport

    async def list_tools(self, timeout: float | None = None) -> list[MCPToolSchema]:
        """
        List all tools the server offers.

        On a transient transport error, one ping and, if it succeeds, one
        retry are attempted.
        """
        timeout = timeout or self._timeouts.mcp_list_tools
        async with self._call_lock:
            transport = self._require_transport()
            try:
                raw_tools = await transport.list_tools(timeout)
            except MCPTransportError as e:
                if _is_dead_transport_error(e):
                    await self._mark_closed(f"transport died during tools/list: {e}")
                    raise
                if not self._retry.list_tools_ping_retry:
                    raise
                logger.warning(f"[MCP:{self.name}] tools/list failed ({e}); pinging before retry")
                try:
                    await transport.ping(self._timeouts.ping)
                except MCPTransportError as ping_error:
                    logger.error(f"[MCP:{self.name}] Ping failed: {ping_error}")
                    raise e from ping_error
                raw_tools = await transport.list_tools(timeout)

        tools = [
            MCPToolSchema.from_dict(tool)
            for tool in raw_tools
            if isinstance(tool, dict) and tool.get("name")
        ]
        self._tools = tools
        logger.info(f"[MCP:{self.name}] Discovered {len(tools)} tools")
        return tools

    async def call_tool(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        timeout: float | None = None,
    ) -> str:
        """
        Call a tool and return the concatenated text parts of the result.

        Calls on one client are serialized.

        Raises:
            MCPNotInitializedError: If the client is not initialized.
            ToolExecutionError: If the server reports ``isError``.
            MCPTransportClosedError: If the transport died; the client is closed.
        """
        timeout = timeout or self._timeouts.mcp_call_tool
        async with self._call_lock:
            transport = self._require_transport()
            logger.info(f"[MCP:{self.name}] Calling tool {tool_name}")
            try:
                raw = await transport.call_tool(tool_name, arguments, timeout)
            except MCPTransportError as e:
                if not _is_dead_transport_error(e):
                    raise
                await self._mark_closed(f"transport died during tools/call: {e}")
                if isinstance(e, MCPTransportClosedError):
                    raise
                raise MCPTransportClosedError(
                    f"MCP server '{self.name}' transport is closed", original_error=e
                ) from e

        result = MCPToolResult.from_dict(raw)
        text = result.get_text_content()
        if result.is_error:
            payload = text or json.dumps(raw.get("content") or raw)
            logger.error(f"[MCP:{self.name}] Tool {tool_name} returned an error: {payload}")
            raise ToolExecutionError(tool_name, self.name, payload)
        return text

    async def _watch_transport(self, transport: BaseTransport) -> None:
        await transport.closed_event.wait()
        if self._state == MCPClientState.INITIALIZED:
            await self._mark_closed("transport closed")

    async def _mark_closed(self, reason: str) -> None:
        """Move to CLOSED after transport death and notify listeners."""
        if self._state != MCPClientState.INITIALIZED:
            return
        self._state = MCPClientState.CLOSED
        logger.warning(f"[MCP:{self.name}] Client closed: {reason}")
        await self._close_transport()
        for listener in list(self._close_listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"[MCP:{self.name}] Close listener failed: {e}", exc_info=True)

    async def _close_transport(self) -> None:
        transport = self._transport
        if transport is None:
            return
        # SIGINT grace + SIGKILL grace, plus slack for task teardown
        bound = self._timeouts.shutdown_grace * 2 + 1.0
        try:
            await asyncio.wait_for(transport.close(), timeout=bound)
        except TimeoutError:
            logger.error(f"[MCP:{self.name}] Transport did not close within {bound}s")
        except MCPError as e:
            logger.error(f"[MCP:{self.name}] Error closing transport: {e}")

    async def close(self) -> None:
        """Close the client and its transport. Idempotent and bounded."""
        if self._closed:
            return
        self._closed = True

        watch_task = self._watch_task
        if watch_task is not None and watch_task is not asyncio.current_task():
            watch_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await watch_task

        previous = self._state
        if previous != MCPClientState.FAILED:
            self._state = MCPClientState.CLOSING
        await self._close_transport()
        if previous != MCPClientState.FAILED:
            self._state = MCPClientState.CLOSED
        logger.info(f"[MCP:{self.name}] Client closed")
