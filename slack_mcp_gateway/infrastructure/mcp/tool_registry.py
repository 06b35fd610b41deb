"""Tool registry.

Maps every discovered tool name to the server that owns it. Tool names are
global: when two servers expose the same name the first registration wins.
The registry also owns the argument validator so that schemas are compiled
exactly once, when a tool is inserted.
"""

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from slack_mcp_gateway.domain.model.mcp.server import ToolFilter
from slack_mcp_gateway.domain.model.mcp.tool import MCPToolSchema, ToolInfo
from slack_mcp_gateway.infrastructure.mcp.validation import ToolArgumentValidator

logger = logging.getLogger(__name__)


@dataclass
class RegistryStats:
    """Counters from the registrations so far."""

    registered: int = 0
    filtered: int = 0
    collisions: int = 0


class ToolRegistry:
    """Registry of tools across all initialized MCP clients.

    Key: tool name
    Value: ``ToolInfo`` naming the owning server
    """

    def __init__(self, validator: ToolArgumentValidator | None = None) -> None:
        self._tools: dict[str, ToolInfo] = {}
        self._validator = validator or ToolArgumentValidator()
        self._stats = RegistryStats()

    @property
    def validator(self) -> ToolArgumentValidator:
        return self._validator

    @property
    def stats(self) -> RegistryStats:
        return self._stats

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, tool_name: object) -> bool:
        return tool_name in self._tools

    def __iter__(self) -> Iterator[ToolInfo]:
        return iter(list(self._tools.values()))

    def register_server_tools(
        self,
        server_name: str,
        tools: Iterable[MCPToolSchema],
        tool_filter: ToolFilter | None = None,
    ) -> list[str]:
        """Insert the tools of one server.

        A tool is inserted only if the filter allows it. On a name collision
        the existing entry is kept and a warning names both servers.

        Returns:
            Names of the tools that were inserted.
        """
        tool_filter = tool_filter or ToolFilter()
        inserted: list[str] = []

        for tool in tools:
            if not tool.name:
                continue
            if not tool_filter.allows(tool.name):
                self._stats.filtered += 1
                logger.debug(f"[MCP:{server_name}] Tool {tool.name} excluded by filter")
                continue

            existing = self._tools.get(tool.name)
            if existing is not None:
                self._stats.collisions += 1
                logger.warning(
                    f"Tool name collision: '{tool.name}' from server '{server_name}' "
                    f"ignored, already provided by server '{existing.server_name}'"
                )
                continue

            self._tools[tool.name] = ToolInfo.from_schema(server_name, tool)
            self._validator.register_schema(tool.name, tool.input_schema)
            self._stats.registered += 1
            inserted.append(tool.name)

        logger.info(f"[MCP:{server_name}] Registered {len(inserted)} tools")
        return inserted

    def get(self, tool_name: str) -> ToolInfo | None:
        return self._tools.get(tool_name)

    def list_tools(self) -> list[ToolInfo]:
        """All tools, in registration order."""
        return list(self._tools.values())

    def tools_for_server(self, server_name: str) -> list[ToolInfo]:
        return [info for info in self._tools.values() if info.server_name == server_name]

    def remove_server(self, server_name: str) -> int:
        """Drop every tool owned by ``server_name``.

        Returns:
            Number of tools removed.
        """
        names = [name for name, info in self._tools.items() if info.server_name == server_name]
        for name in names:
            del self._tools[name]
            self._validator.unregister(name)
        if names:
            logger.info(f"[MCP:{server_name}] Removed {len(names)} tools from registry")
        return len(names)
