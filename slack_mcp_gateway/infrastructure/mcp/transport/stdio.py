"""
Stdio transport for MCP.

Communicates with MCP servers via subprocess stdin/stdout using
line-delimited JSON-RPC.
"""

import asyncio
import contextlib
import json
import logging
import os
import signal
from typing import Any

from slack_mcp_gateway.domain.exceptions.mcp import (
    MCPTransportClosedError,
    MCPTransportError,
    MCPTransportTimeoutError,
)
from slack_mcp_gateway.domain.model.mcp.transport import TransportConfig, TransportType
from slack_mcp_gateway.infrastructure.mcp.transport.base import BaseTransport
from slack_mcp_gateway.infrastructure.security.redaction import redact_env

logger = logging.getLogger(__name__)

# Tool results can be large single lines
STREAM_LIMIT = 16 * 1024 * 1024


class StdioTransport(BaseTransport):
    """
    MCP transport using stdio (subprocess communication).

    Launches an MCP server as a subprocess. A reader task demultiplexes
    responses by request id, a drain task logs stderr, and a watcher task
    fails in-flight requests when the process exits.
    """

    def __init__(self, config: TransportConfig, server_name: str = "") -> None:
        """Initialize stdio transport."""
        super().__init__(config, server_name)
        self._process: asyncio.subprocess.Process | None = None
        self._reader_task: asyncio.Task | None = None
        self._stderr_task: asyncio.Task | None = None
        self._watch_task: asyncio.Task | None = None
        self._write_lock = asyncio.Lock()
        self._closing = False

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    async def start(self) -> None:
        """
        Start subprocess and wire up the background tasks.

        Raises:
            MCPTransportError: If subprocess fails to start.
        """
        if self._is_open:
            logger.debug(f"[MCP:{self._server_name}] Stdio transport already started")
            return

        config = self._config
        if config.transport_type != TransportType.STDIO:
            raise MCPTransportError(f"Invalid transport type for stdio: {config.transport_type}")
        if not config.command:
            raise MCPTransportError("Command is required for stdio transport")

        command = list(config.command)
        overrides = config.environment or {}
        env = {**os.environ, **overrides}

        logger.info(f"[MCP:{self._server_name}] Starting server: {' '.join(command)}")
        if overrides:
            logger.debug(
                f"[MCP:{self._server_name}] Environment overrides: {redact_env(overrides)}"
            )

        try:
            self._process = await asyncio.create_subprocess_exec(
                command[0],
                *command[1:],
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=env,
                limit=STREAM_LIMIT,
            )
        except (OSError, ValueError) as e:
            logger.error(f"[MCP:{self._server_name}] Failed to start server process: {e}")
            raise MCPTransportError(
                f"Failed to start subprocess: {e}", original_error=e
            ) from e

        self._is_open = True
        self._closing = False
        self._reader_task = asyncio.create_task(self._read_loop())
        self._stderr_task = asyncio.create_task(self._drain_stderr())
        self._watch_task = asyncio.create_task(self._watch_process())
        logger.info(f"[MCP:{self._server_name}] Started server process (pid={self._process.pid})")

    async def _read_loop(self) -> None:
        """Background task to read and dispatch stdout frames."""
        assert self._process is not None and self._process.stdout is not None
        stdout = self._process.stdout
        try:
            while True:
                line = await stdout.readline()
                if not line:
                    break
                text = line.decode(errors="replace").strip()
                if not text:
                    continue
                try:
                    data = json.loads(text)
                except json.JSONDecodeError:
                    logger.debug(f"[MCP:{self._server_name}] Ignoring non-JSON output: {text[:200]}")
                    continue
                self._handle_message(data)
        except asyncio.CancelledError:
            logger.debug(f"[MCP:{self._server_name}] Stdio reader cancelled")
            raise
        except ValueError as e:
            # Line longer than the stream limit
            logger.error(f"[MCP:{self._server_name}] Failed to read server output: {e}")
            # Framing is lost; the watcher reports the transport dead once the process exits
            self._is_open = False
            self._initialized = False
            if self._process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    self._process.kill()
        finally:
            self._fail_pending(MCPTransportClosedError("transport dead: stdout closed"))

    async def _drain_stderr(self) -> None:
        assert self._process is not None and self._process.stderr is not None
        stderr = self._process.stderr
        while True:
            line = await stderr.readline()
            if not line:
                return
            logger.debug(f"[MCP:{self._server_name}] stderr: {line.decode(errors='replace').rstrip()}")

    async def _watch_process(self) -> None:
        """Wait for the process to exit and report the transport dead."""
        assert self._process is not None
        returncode = await self._process.wait()

        # Let the reader consume whatever the process wrote before exiting
        if self._reader_task is not None:
            await asyncio.wait({self._reader_task}, timeout=1.0)

        if not self._closing:
            logger.warning(
                f"[MCP:{self._server_name}] Server process exited unexpectedly (code={returncode})"
            )
        self._fail_pending(MCPTransportClosedError("transport dead: server process exited"))
        self._mark_closed()

    async def _write(self, message: dict[str, Any]) -> None:
        process = self._process
        if not self._is_open or process is None or process.stdin is None:
            raise MCPTransportClosedError("Transport not connected")
        if process.stdin.is_closing() or process.returncode is not None:
            raise MCPTransportClosedError("transport dead: file already closed")

        payload = (json.dumps(message) + "\n").encode()
        logger.debug(
            f"[MCP:{self._server_name}] Sending: {message.get('method', 'response')} "
            f"(id={message.get('id')})"
        )
        try:
            async with self._write_lock:
                process.stdin.write(payload)
                await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise MCPTransportClosedError(
                "transport dead: file already closed", original_error=e
            ) from e

    async def _send_notification(self, method: str, params: dict[str, Any]) -> None:
        await self._write({"jsonrpc": "2.0", "method": method, "params": params})

    async def _send_request(
        self,
        method: str,
        params: dict[str, Any] | None,
        timeout: float,
    ) -> dict[str, Any]:
        request_id, request = self._build_request(method, params)
        future = self._register_pending(request_id)

        try:
            await self._write(request)
            return await asyncio.wait_for(future, timeout=timeout)
        except TimeoutError:
            raise MCPTransportTimeoutError(
                f"Timeout waiting for response to {method} after {timeout}s"
            ) from None
        finally:
            self._pending_requests.pop(request_id, None)

    async def close(self) -> None:
        """Stop the server: SIGINT, wait the grace window, then SIGKILL."""
        if self._closing:
            await self._closed_event.wait()
            return
        self._closing = True
        self._is_open = False
        self._initialized = False

        process = self._process
        grace = self._config.shutdown_grace
        if process is not None and process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.send_signal(signal.SIGINT)
            try:
                await asyncio.wait_for(process.wait(), timeout=grace)
            except TimeoutError:
                logger.warning(
                    f"[MCP:{self._server_name}] Server did not exit within {grace}s, killing"
                )
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                try:
                    await asyncio.wait_for(process.wait(), timeout=grace)
                except TimeoutError:
                    logger.error(
                        f"[MCP:{self._server_name}] Server process {process.pid} did not exit after SIGKILL"
                    )

        for task in (self._reader_task, self._stderr_task, self._watch_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        if process is not None and process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        self._fail_pending(MCPTransportClosedError("Transport closed"))
        self._mark_closed()
        logger.info(f"[MCP:{self._server_name}] Stdio transport stopped")
