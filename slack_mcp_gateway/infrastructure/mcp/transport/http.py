"""
HTTP transport for MCP.

Simple HTTP request/response transport for MCP servers.
"""

import json
import logging
from typing import Any

import httpx

from slack_mcp_gateway.domain.exceptions.mcp import (
    MCPTransportClosedError,
    MCPTransportError,
    MCPTransportTimeoutError,
)
from slack_mcp_gateway.domain.model.mcp.transport import TransportConfig, TransportType
from slack_mcp_gateway.infrastructure.mcp.transport.base import BaseTransport

logger = logging.getLogger(__name__)

SESSION_HEADER = "Mcp-Session-Id"


class HTTPTransport(BaseTransport):
    """
    MCP transport using HTTP request/response.

    Each request is a single HTTP POST of the JSON-RPC envelope to the
    configured URL. Servers that answer with an event stream are read
    until the matching response arrives.
    """

    def __init__(
        self,
        config: TransportConfig,
        server_name: str = "",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize HTTP transport."""
        super().__init__(config, server_name)
        self._client = client
        self._owns_client = client is None
        self._session_id: str | None = None

    async def start(self) -> None:
        """Initialize HTTP client."""
        if self._is_open:
            logger.debug(f"[MCP:{self._server_name}] HTTP transport already started")
            return

        config = self._config
        if config.transport_type != TransportType.HTTP:
            raise MCPTransportError(f"Invalid transport type for HTTP: {config.transport_type}")
        if not config.url:
            raise MCPTransportError("URL is required for HTTP transport")

        if self._client is None:
            self._client = httpx.AsyncClient(
                headers=config.headers or {},
                timeout=config.timeout_seconds,
            )

        self._is_open = True
        logger.info(f"[MCP:{self._server_name}] HTTP transport connected to: {config.url}")

    async def close(self) -> None:
        """Close HTTP client."""
        if self._closed_event.is_set():
            return

        if self._client is not None and self._owns_client:
            await self._client.aclose()
        self._client = None
        self._mark_closed()
        logger.info(f"[MCP:{self._server_name}] HTTP transport stopped")

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
        }
        if self._session_id:
            headers[SESSION_HEADER] = self._session_id
        return headers

    async def _post(self, payload: dict[str, Any], timeout: float) -> httpx.Response:
        if not self._is_open or self._client is None:
            raise MCPTransportClosedError("HTTP client not initialized")
        try:
            response = await self._client.post(
                self._config.url or "",
                json=payload,
                headers=self._headers(),
                timeout=timeout,
            )
            response.raise_for_status()
        except httpx.TimeoutException as e:
            raise MCPTransportTimeoutError(
                f"HTTP request timed out after {timeout}s", original_error=e
            ) from e
        except httpx.HTTPError as e:
            logger.error(f"[MCP:{self._server_name}] HTTP request failed: {e}")
            raise MCPTransportError(f"HTTP request failed: {e}", original_error=e) from e

        session_id = response.headers.get(SESSION_HEADER)
        if session_id:
            self._session_id = session_id
        return response

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
        """
        Send HTTP POST request with JSON-RPC payload.

        Raises:
            MCPTransportClosedError: If not connected.
            MCPTransportError: If request fails or the server returns an error.
        """
        request_id, request = self._build_request(method, params)
        logger.debug(f"[MCP:{self._server_name}] Sending HTTP request: {method} (id={request_id})")
        response = await self._post(request, timeout)

        content_type = response.headers.get("content-type", "")
        if "text/event-stream" in content_type:
            data = self._read_event_stream(response.text, request_id)
        else:
            try:
                data = response.json()
            except json.JSONDecodeError as e:
                raise MCPTransportError(
                    f"Invalid JSON response for {method}", original_error=e
                ) from e

        if isinstance(data, list):
            data = next(
                (
                    item
                    for item in data
                    if isinstance(item, dict) and item.get("id") == request_id
                ),
                None,
            )
            if data is None:
                raise MCPTransportError(f"No response for request {request_id} in batch")

        if not isinstance(data, dict):
            raise MCPTransportError(f"Unexpected response for {method}: {data!r}")

        if "error" in data:
            error = data["error"]
            error_msg = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise MCPTransportError(f"MCP server error: {error_msg}", details={"error": error})

        return data.get("result") or {}

    def _read_event_stream(self, body: str, request_id: int) -> dict[str, Any]:
        """Extract the JSON-RPC response with ``request_id`` from an SSE body."""
        for line in body.splitlines():
            line = line.strip()
            if not line.startswith("data:"):
                continue
            try:
                data = json.loads(line[5:].strip())
            except json.JSONDecodeError:
                continue
            if isinstance(data, dict) and data.get("id") == request_id:
                return data
        raise MCPTransportError(f"No response for request {request_id} in event stream")
