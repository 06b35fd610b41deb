"""
MCP Tool Domain Models.

Defines the tool schema reported by servers, the call result, and the
registry entry that ties a tool to its owning server.
"""

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass(frozen=True)
class MCPToolSchema:
    """
    MCP tool schema definition.

    Describes a tool's interface including its name, description,
    and JSON Schema for input parameters.
    """

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (MCP protocol format)."""
        return {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MCPToolSchema":
        """Create from dictionary (MCP protocol format)."""
        return cls(
            name=data.get("name", ""),
            description=data.get("description"),
            input_schema=data.get("inputSchema", data.get("input_schema")) or {},
        )


@dataclass
class MCPToolResult:
    """
    MCP tool execution result.

    Only text content blocks are consumed; images and other block types
    are ignored by the gateway.
    """

    content: list[dict[str, Any]] = field(default_factory=list)
    is_error: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "MCPToolResult":
        """Create from dictionary (MCP protocol format)."""
        content = data.get("content") or []
        if not isinstance(content, list):
            content = [content]
        return cls(
            content=content,
            is_error=bool(data.get("isError", data.get("is_error", False))),
        )

    def get_text_content(self) -> str:
        """Concatenate all text parts."""
        texts = [
            str(item.get("text") or "")
            for item in self.content
            if isinstance(item, dict) and item.get("type") == "text"
        ]
        return "".join(texts)


@dataclass(frozen=True)
class ToolInfo:
    """
    A discovered tool as listed in the global registry.

    ``tool_name`` is unique across the registry; ``server_name`` names the
    MCP client that owns the tool.
    """

    server_name: str
    tool_name: str
    description: str = ""
    input_schema: dict[str, Any] = field(default_factory=dict)

    @property
    def schema_json(self) -> str:
        return json.dumps(self.input_schema or {}, indent=2, sort_keys=True)

    @classmethod
    def from_schema(cls, server_name: str, schema: MCPToolSchema) -> "ToolInfo":
        return cls(
            server_name=server_name,
            tool_name=schema.name,
            description=schema.description or "",
            input_schema=schema.input_schema or {},
        )
