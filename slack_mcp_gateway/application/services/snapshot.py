"""Immutable view of everything a turn needs, swapped wholesale on reload."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from types import MappingProxyType

from slack_mcp_gateway.application.services.bridge import ToolSnapshot
from slack_mcp_gateway.configuration.config import GatewayConfig
from slack_mcp_gateway.infrastructure.llm.registry import ProviderRegistry
from slack_mcp_gateway.infrastructure.mcp.client import MCPClient
from slack_mcp_gateway.infrastructure.mcp.tool_registry import ToolRegistry
from slack_mcp_gateway.infrastructure.mcp.validation import ToolArgumentValidator


@dataclass(frozen=True)
class RuntimeSnapshot:
    """
    Config, providers, clients and tools of one generation.

    Turns read the snapshot once at the start and keep it until they finish,
    so a concurrent reload never changes tools mid-turn.
    """

    config: GatewayConfig
    providers: ProviderRegistry
    clients: Mapping[str, MCPClient]
    tools: ToolRegistry
    system_prompt: str = ""
    generation: int = 0
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "clients", MappingProxyType(dict(self.clients)))

    @property
    def validator(self) -> ToolArgumentValidator:
        return self.tools.validator

    def tool_snapshot(self) -> ToolSnapshot:
        return ToolSnapshot(
            registry=self.tools,
            clients=self.clients,
            timeouts=self.config.timeouts,
            max_chars=self.config.llm.tool_result_max_chars,
        )
