"""Tests for the HTTP and SSE MCP transports using httpx.MockTransport."""

import asyncio
import json

import httpx
import pytest

from slack_mcp_gateway.domain.exceptions.mcp import (
    MCPStreamReconnectingError,
    MCPTransportError,
    MCPTransportTimeoutError,
)
from slack_mcp_gateway.domain.model.mcp.transport import TransportConfig
from slack_mcp_gateway.infrastructure.mcp.transport.http import SESSION_HEADER, HTTPTransport
from slack_mcp_gateway.infrastructure.mcp.transport.sse import SSETransport, backoff_delay


def rpc_result(request: dict, result: dict) -> dict:
    return {"jsonrpc": "2.0", "id": request["id"], "result": result}


def answer(request: dict) -> dict | None:
    """Minimal MCP server behaviour shared by both fakes."""
    method = request.get("method")
    if method == "initialize":
        return rpc_result(request, {"serverInfo": {"name": "remote"}, "capabilities": {}})
    if method == "tools/list":
        return rpc_result(request, {"tools": [{"name": "search", "inputSchema": {}}]})
    if method == "tools/call":
        if request["params"]["name"] == "hang":
            return None
        return rpc_result(request, {"content": [{"type": "text", "text": "found"}]})
    if method == "ping":
        return rpc_result(request, {})
    return {"jsonrpc": "2.0", "id": request["id"], "error": {"code": -32601, "message": "nope"}}


# ============================================================================
# HTTPTransport Tests
# ============================================================================


class TestHTTPTransport:
    """Tests for HTTPTransport."""

    def _transport(self, handler) -> HTTPTransport:
        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        config = TransportConfig.http("http://mcp.test/mcp", timeout=2000)
        return HTTPTransport(config, "remote", client=client)

    @pytest.mark.asyncio
    async def test_json_round_trip_and_session_header(self):
        """Test requests are POSTed and the session id is echoed back."""
        seen_sessions = []

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            seen_sessions.append(request.headers.get(SESSION_HEADER))
            if "id" not in body:
                return httpx.Response(202)
            return httpx.Response(
                200, json=answer(body), headers={SESSION_HEADER: "session-1"}
            )

        transport = self._transport(handler)
        await transport.start()
        await transport.initialize()
        tools = await transport.list_tools()
        await transport.close()

        assert tools == [{"name": "search", "inputSchema": {}}]
        assert seen_sessions[0] is None
        assert seen_sessions[-1] == "session-1"
        assert transport.closed_event.is_set()

    @pytest.mark.asyncio
    async def test_event_stream_response(self):
        """Test a text/event-stream body is searched for the matching id."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            if "id" not in body:
                return httpx.Response(202)
            stream = (
                ": keepalive\n"
                f"data: {json.dumps({'jsonrpc': '2.0', 'method': 'notifications/progress'})}\n\n"
                f"data: {json.dumps(answer(body))}\n\n"
            )
            return httpx.Response(
                200, text=stream, headers={"content-type": "text/event-stream"}
            )

        transport = self._transport(handler)
        await transport.start()
        await transport.initialize()
        result = await transport.call_tool("search", {"q": "x"})
        await transport.close()

        assert result["content"][0]["text"] == "found"

    @pytest.mark.asyncio
    async def test_http_status_error(self):
        """Test a 5xx response raises MCPTransportError."""
        transport = self._transport(lambda request: httpx.Response(500, text="down"))
        await transport.start()

        with pytest.raises(MCPTransportError, match="HTTP request failed"):
            await transport.initialize()

    @pytest.mark.asyncio
    async def test_timeout_maps_to_timeout_error(self):
        """Test httpx timeouts raise MCPTransportTimeoutError."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        transport = self._transport(handler)
        await transport.start()

        with pytest.raises(MCPTransportTimeoutError):
            await transport.initialize()

    @pytest.mark.asyncio
    async def test_server_error_member(self):
        """Test a JSON-RPC error in the response is raised."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            if "id" not in body:
                return httpx.Response(202)
            return httpx.Response(200, json=answer(body))

        transport = self._transport(handler)
        await transport.start()
        await transport.initialize()

        with pytest.raises(MCPTransportError, match="MCP server error: nope"):
            await transport.call("resources/list")

    @pytest.mark.asyncio
    async def test_batch_response_skips_non_objects(self):
        """Test the matching reply is picked out of a batch with malformed members."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            if "id" not in body:
                return httpx.Response(202)
            return httpx.Response(200, json=["junk", None, answer(body)])

        transport = self._transport(handler)
        await transport.start()
        await transport.initialize()
        tools = await transport.list_tools()
        await transport.close()

        assert tools == [{"name": "search", "inputSchema": {}}]

    @pytest.mark.asyncio
    async def test_batch_without_matching_id(self):
        """Test a batch lacking the request id raises instead of returning an empty result."""

        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            if "id" not in body:
                return httpx.Response(202)
            if body["method"] == "initialize":
                return httpx.Response(200, json=answer(body))
            return httpx.Response(200, json=["junk", rpc_result({"id": 999}, {"tools": []})])

        transport = self._transport(handler)
        await transport.start()
        await transport.initialize()

        with pytest.raises(MCPTransportError, match="in batch"):
            await transport.list_tools()
        await transport.close()


# ============================================================================
# SSETransport Tests
# ============================================================================


class FakeSSEServer:
    """Event-stream server: each GET opens a stream fed from its own queue."""

    def __init__(self) -> None:
        self.connections = 0
        self.refuse_connections = False
        self.post_status = 202
        self.requests: list[dict] = []
        self.posted = asyncio.Event()
        self._stream: asyncio.Queue | None = None

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if request.method == "GET":
            if self.refuse_connections:
                return httpx.Response(503)
            self.connections += 1
            queue: asyncio.Queue = asyncio.Queue()
            self._stream = queue
            queue.put_nowait(f"event: endpoint\ndata: /messages?session={self.connections}\n\n")
            return httpx.Response(
                200,
                headers={"content-type": "text/event-stream"},
                content=self._events(queue),
            )

        body = json.loads(request.content)
        self.requests.append(body)
        self.posted.set()
        if self.post_status >= 400:
            return httpx.Response(self.post_status)
        if "id" in body:
            response = answer(body)
            if response is not None and self._stream is not None:
                self._stream.put_nowait(f"event: message\ndata: {json.dumps(response)}\n\n")
        return httpx.Response(202)

    async def _events(self, queue: asyncio.Queue):
        while True:
            chunk = await queue.get()
            if chunk is None:
                return
            yield chunk.encode()

    def drop(self) -> None:
        if self._stream is not None:
            self._stream.put_nowait(None)
            self._stream = None

    def methods(self) -> list[str]:
        return [request.get("method") for request in self.requests]


@pytest.fixture
def sse_server() -> FakeSSEServer:
    return FakeSSEServer()


def make_sse_transport(server: FakeSSEServer, attempts: int = 3) -> SSETransport:
    client = httpx.AsyncClient(transport=httpx.MockTransport(server.handler))
    config = TransportConfig.sse(
        "http://mcp.test/sse",
        timeout=2000,
        reconnect_attempts=attempts,
        reconnect_base_delay=0.01,
        reconnect_max_delay=0.05,
    )
    return SSETransport(config, "remote", client=client)


class TestSSETransport:
    """Tests for SSETransport."""

    def test_backoff_delay(self):
        """Test reconnect delays double and are capped."""
        assert backoff_delay(1, 1.0, 30.0) == 1.0
        assert backoff_delay(2, 1.0, 30.0) == 2.0
        assert backoff_delay(4, 1.0, 30.0) == 8.0
        assert backoff_delay(10, 1.0, 30.0) == 30.0

    @pytest.mark.asyncio
    async def test_endpoint_and_round_trip(self, sse_server):
        """Test the endpoint event sets the POST URL and responses arrive on the stream."""
        transport = make_sse_transport(sse_server)
        await transport.start()
        try:
            assert transport.endpoint_url == "http://mcp.test/messages?session=1"
            await transport.initialize()
            tools = await transport.list_tools()
            assert tools[0]["name"] == "search"
        finally:
            await transport.close()

        assert sse_server.methods()[:2] == ["initialize", "notifications/initialized"]

    @pytest.mark.asyncio
    async def test_drop_fails_in_flight_and_reconnects(self, sse_server):
        """Test a dropped stream fails pending calls retryably and re-initializes."""
        transport = make_sse_transport(sse_server)
        await transport.start()
        try:
            await transport.initialize()

            sse_server.posted.clear()
            call = asyncio.create_task(transport.call_tool("hang", {}))
            await asyncio.wait_for(sse_server.posted.wait(), timeout=2)
            sse_server.drop()

            with pytest.raises(MCPStreamReconnectingError) as exc_info:
                await call
            assert exc_info.value.retryable

            for _ in range(100):
                if transport.is_initialized and sse_server.connections == 2:
                    break
                await asyncio.sleep(0.02)

            assert sse_server.connections == 2
            assert transport.endpoint_url == "http://mcp.test/messages?session=2"
            assert sse_server.methods().count("initialize") == 2
            result = await transport.call_tool("search", {})
            assert result["content"][0]["text"] == "found"
        finally:
            await transport.close()

    @pytest.mark.asyncio
    async def test_gives_up_after_reconnect_attempts(self, sse_server):
        """Test the transport closes once reconnect attempts are exhausted."""
        transport = make_sse_transport(sse_server, attempts=1)
        await transport.start()
        await transport.initialize()

        sse_server.refuse_connections = True
        sse_server.drop()

        await asyncio.wait_for(transport.closed_event.wait(), timeout=2)
        assert not transport.is_open
        await transport.close()

    @pytest.mark.asyncio
    async def test_start_fails_when_stream_refused(self, sse_server):
        """Test start raises when the first connection is refused."""
        sse_server.refuse_connections = True
        transport = make_sse_transport(sse_server)

        with pytest.raises(MCPTransportError, match="not announced"):
            await transport.start()

    @pytest.mark.asyncio
    async def test_failed_reinitialize_closes_transport(self, sse_server):
        """Test a reconnect whose handshake fails reports the transport dead."""
        transport = make_sse_transport(sse_server)
        await transport.start()
        try:
            await transport.initialize()

            sse_server.post_status = 500
            sse_server.drop()

            await asyncio.wait_for(transport.closed_event.wait(), timeout=2)
            assert sse_server.connections == 2
            assert not transport.is_open
            assert not transport.is_initialized
        finally:
            await transport.close()
