"""
MCP domain exceptions.

Exception hierarchy for MCP-related operations: transport, client lifecycle,
tool lookup, argument validation and tool execution.

Exception Hierarchy:
    MCPError (base)
    ├── MCPTransportError                - Underlying process/socket failure
    │   ├── MCPTransportClosedError      - Transport is dead (EOF, stream ended)
    │   ├── MCPTransportTimeoutError     - No response within the deadline
    │   └── MCPStreamReconnectingError   - SSE stream dropped, call may be retried
    ├── MCPNotInitializedError           - Call outside the client's lifecycle window
    ├── MCPInitializationError           - MCP handshake failed
    └── MCPToolError
        ├── UnknownToolError             - Tool name not in the registry
        ├── BadToolArgsError             - Arguments failed schema validation
        └── ToolExecutionError           - Tool server returned an error payload
"""

from typing import Any


class MCPError(Exception):
    """Base exception for all MCP-related errors."""

    def __init__(
        self,
        message: str,
        original_error: Exception | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.original_error = original_error
        self.details = details or {}

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message} (caused by: {self.original_error})"
        return self.message

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            **self.details,
        }


class MCPTransportError(MCPError):
    """Raised when the underlying process or socket fails."""

    retryable: bool = False


class MCPTransportClosedError(MCPTransportError):
    """Raised when the transport is closed or the peer went away."""


class MCPTransportTimeoutError(MCPTransportError):
    """Raised when a request does not get a response in time."""


class MCPStreamReconnectingError(MCPTransportError):
    """Raised for in-flight calls when an SSE stream drops and is re-established."""

    retryable = True


class MCPNotInitializedError(MCPError):
    """Raised when a client is used before initialization or after it closed."""

    def __init__(self, server_name: str, state: str | None = None) -> None:
        self.server_name = server_name
        self.state = state
        msg = f"MCP client '{server_name}' is not initialized"
        if state:
            msg += f" (state: {state})"
        super().__init__(msg, details={"server_name": server_name, "state": state})


class MCPInitializationError(MCPError):
    """Raised when the MCP initialize handshake fails or times out."""

    def __init__(
        self,
        server_name: str,
        message: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        self.server_name = server_name
        msg = message or f"Failed to initialize MCP server '{server_name}'"
        super().__init__(msg, original_error=original_error, details={"server_name": server_name})


class MCPToolError(MCPError):
    """Base exception for MCP tool errors."""


class UnknownToolError(MCPToolError):
    """Raised when the LLM names a tool that is not in the registry."""

    def __init__(self, tool_name: str) -> None:
        self.tool_name = tool_name
        super().__init__(f"unknown tool '{tool_name}'", details={"tool_name": tool_name})


def _format_error(error: dict[str, Any]) -> str:
    location = ".".join(str(part) for part in error.get("loc", ())) or "<root>"
    return f"{location}: {error.get('msg', 'invalid')}"


class BadToolArgsError(MCPToolError):
    """Raised when tool arguments fail validation against the input schema."""

    def __init__(self, tool_name: str, errors: list[dict[str, Any]]) -> None:
        self.tool_name = tool_name
        self.errors = errors
        problems = "; ".join(_format_error(e) for e in errors)
        super().__init__(
            f"invalid arguments for tool '{tool_name}': {problems}",
            details={"tool_name": tool_name, "errors": errors},
        )


class ToolExecutionError(MCPToolError):
    """Raised when a tool server reports an error for a call."""

    def __init__(
        self,
        tool_name: str,
        server_name: str | None = None,
        payload: str | None = None,
        original_error: Exception | None = None,
    ) -> None:
        self.tool_name = tool_name
        self.server_name = server_name
        self.payload = payload
        msg = f"tool '{tool_name}' returned an error"
        if payload:
            msg += f": {payload}"
        super().__init__(
            msg,
            original_error=original_error,
            details={"tool_name": tool_name, "server_name": server_name},
        )
