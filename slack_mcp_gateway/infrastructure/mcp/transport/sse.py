"""
SSE transport for MCP.

Subscribes to a server-sent event stream for responses and notifications and
posts requests to the companion endpoint announced by the server. A dropped
stream is re-established with bounded exponential backoff; requests in flight
at the time of the drop fail with a retryable error and are never replayed.
"""

import asyncio
import contextlib
import json
import logging
from typing import Any

import httpx

from slack_mcp_gateway.domain.exceptions.mcp import (
    MCPStreamReconnectingError,
    MCPTransportClosedError,
    MCPTransportError,
    MCPTransportTimeoutError,
)
from slack_mcp_gateway.domain.model.mcp.transport import TransportConfig, TransportType
from slack_mcp_gateway.infrastructure.mcp.transport.base import BaseTransport

logger = logging.getLogger(__name__)


def backoff_delay(attempt: int, base: float, maximum: float) -> float:
    """Exponential backoff for reconnect ``attempt`` (1-based), capped at ``maximum``."""
    return min(base * (2 ** max(0, attempt - 1)), maximum)


class SSETransport(BaseTransport):
    """
    MCP transport using Server-Sent Events.

    - ``endpoint`` events name the URL requests are POSTed to
    - ``message`` events carry JSON-RPC responses, demultiplexed by id
    """

    def __init__(
        self,
        config: TransportConfig,
        server_name: str = "",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize SSE transport."""
        super().__init__(config, server_name)
        self._client = client
        self._owns_client = client is None
        self._post_url: str | None = None
        self._endpoint_ready = asyncio.Event()
        self._stream_task: asyncio.Task | None = None
        self._resubscribe_task: asyncio.Task | None = None
        self._reconnect_attempt = 0
        self._connected_once = False
        self._closing = False

    @property
    def endpoint_url(self) -> str | None:
        return self._post_url

    @property
    def reconnecting(self) -> bool:
        return self._is_open and not self._endpoint_ready.is_set()

    async def start(self) -> None:
        """
        Open the event stream and wait for the endpoint announcement.

        Raises:
            MCPTransportError: If the stream cannot be opened in time.
        """
        if self._is_open:
            logger.debug(f"[MCP:{self._server_name}] SSE transport already started")
            return

        config = self._config
        if config.transport_type != TransportType.SSE:
            raise MCPTransportError(f"Invalid transport type for SSE: {config.transport_type}")
        if not config.url:
            raise MCPTransportError("URL is required for SSE transport")

        if self._client is None:
            # The stream itself has no read deadline; requests use their own
            self._client = httpx.AsyncClient(
                headers=config.headers or {},
                timeout=httpx.Timeout(config.timeout_seconds, read=None),
            )

        self._closing = False
        self._is_open = True
        self._stream_task = asyncio.create_task(self._run_stream())

        ready = asyncio.create_task(self._endpoint_ready.wait())
        try:
            done, _ = await asyncio.wait(
                {ready, self._stream_task},
                timeout=config.timeout_seconds,
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            if not ready.done():
                ready.cancel()

        if ready not in done:
            await self.close()
            raise MCPTransportError(
                f"SSE endpoint for '{self._server_name}' was not announced by {config.url}"
            )

        logger.info(f"[MCP:{self._server_name}] SSE transport connected to: {config.url}")

    async def _run_stream(self) -> None:
        """Keep the event stream open, reconnecting with backoff on drop."""
        config = self._config
        try:
            while not self._closing:
                error: Exception | None = None
                try:
                    await self._consume_stream()
                except httpx.HTTPError as e:
                    error = e

                if self._closing:
                    break

                self._endpoint_ready.clear()
                self._fail_pending(
                    MCPStreamReconnectingError(
                        f"SSE stream for '{self._server_name}' dropped; request may be retried",
                        original_error=error,
                    )
                )

                if not self._connected_once:
                    logger.error(
                        f"[MCP:{self._server_name}] Could not open SSE stream: {error or 'stream ended'}"
                    )
                    break

                self._reconnect_attempt += 1
                if self._reconnect_attempt > config.reconnect_attempts:
                    logger.error(
                        f"[MCP:{self._server_name}] SSE stream lost after "
                        f"{config.reconnect_attempts} reconnect attempts"
                    )
                    break

                delay = backoff_delay(
                    self._reconnect_attempt,
                    config.reconnect_base_delay,
                    config.reconnect_max_delay,
                )
                logger.warning(
                    f"[MCP:{self._server_name}] SSE stream dropped ({error or 'stream ended'}), "
                    f"reconnecting in {delay:.1f}s "
                    f"(attempt {self._reconnect_attempt}/{config.reconnect_attempts})"
                )
                await asyncio.sleep(delay)
        except asyncio.CancelledError:
            logger.debug(f"[MCP:{self._server_name}] SSE stream task cancelled")
            raise
        finally:
            self._fail_pending(MCPTransportClosedError("transport dead: SSE stream ended"))
            if not self._closing:
                self._mark_closed()

    async def _consume_stream(self) -> None:
        """Read one event stream connection until it ends."""
        assert self._client is not None
        async with self._client.stream(
            "GET", self._config.url or "", headers={"Accept": "text/event-stream"}
        ) as response:
            response.raise_for_status()

            event = "message"
            data_lines: list[str] = []
            async for line in response.aiter_lines():
                if not line:
                    if data_lines:
                        self._dispatch_event(event, "\n".join(data_lines))
                    event, data_lines = "message", []
                    continue
                if line.startswith(":"):
                    continue
                field, _, value = line.partition(":")
                if value.startswith(" "):
                    value = value[1:]
                if field == "event":
                    event = value
                elif field == "data":
                    data_lines.append(value)

            if data_lines:
                self._dispatch_event(event, "\n".join(data_lines))

    def _dispatch_event(self, event: str, data: str) -> None:
        if event == "endpoint":
            self._post_url = str(httpx.URL(self._config.url or "").join(data.strip()))
            reconnected = self._connected_once
            self._connected_once = True
            self._reconnect_attempt = 0
            self._endpoint_ready.set()
            logger.debug(f"[MCP:{self._server_name}] SSE endpoint: {self._post_url}")
            if reconnected and self._initialized:
                self._resubscribe_task = asyncio.create_task(self._resubscribe())
        elif event == "message":
            try:
                payload = json.loads(data)
            except json.JSONDecodeError:
                logger.warning(f"[MCP:{self._server_name}] Invalid JSON in SSE event: {data[:200]}")
                return
            self._handle_message(payload)
        else:
            logger.debug(f"[MCP:{self._server_name}] Ignoring SSE event: {event}")

    async def _resubscribe(self) -> None:
        """Repeat the handshake on a fresh stream session."""
        self._initialized = False
        try:
            await self.initialize()
            logger.info(f"[MCP:{self._server_name}] SSE session re-established")
        except MCPTransportError as e:
            logger.error(
                f"[MCP:{self._server_name}] SSE re-initialization failed, closing transport: {e}"
            )
            self._fail_pending(MCPTransportClosedError("transport dead: SSE re-initialization failed"))
            self._mark_closed()
            if self._stream_task is not None and not self._stream_task.done():
                self._stream_task.cancel()

    async def _post(self, payload: dict[str, Any], timeout: float) -> None:
        if not self._is_open or self._client is None:
            raise MCPTransportClosedError("SSE transport not connected")
        if not self._endpoint_ready.is_set() or not self._post_url:
            raise MCPStreamReconnectingError(
                f"SSE stream for '{self._server_name}' is reconnecting"
            )
        try:
            response = await self._client.post(self._post_url, json=payload, timeout=timeout)
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise MCPTransportTimeoutError(
                f"SSE request timed out after {timeout}s", original_error=e
            ) from e
        except httpx.HTTPError as e:
            raise MCPTransportError(f"SSE request failed: {e}", original_error=e) from e

    async def _send_notification(self, method: str, params: dict[str, Any]) -> None:
        await self._post(
            {"jsonrpc": "2.0", "method": method, "params": params},
            self._config.timeout_seconds,
        )

    async def _send_request(
        self,
        method: str,
        params: dict[str, Any] | None,
        timeout: float,
    ) -> dict[str, Any]:
        request_id, request = self._build_request(method, params)
        future = self._register_pending(request_id)

        try:
            logger.debug(f"[MCP:{self._server_name}] Sending SSE request: {method} (id={request_id})")
            await self._post(request, timeout)
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            raise MCPTransportTimeoutError(
                f"Timeout waiting for response to {method} after {timeout}s"
            ) from None
        finally:
            self._pending_requests.pop(request_id, None)

    async def close(self) -> None:
        """Close the event stream and the HTTP client."""
        if self._closing:
            return
        self._closing = True
        self._is_open = False
        self._initialized = False

        for task in (self._resubscribe_task, self._stream_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None

        self._fail_pending(MCPTransportClosedError("Transport closed"))
        self._mark_closed()
        logger.info(f"[MCP:{self._server_name}] SSE transport stopped")
