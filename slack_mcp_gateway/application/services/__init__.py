"""Application services."""

from slack_mcp_gateway.application.services.access import AccessController, AccessDecision
from slack_mcp_gateway.application.services.agent_loop import AgentTurnRunner, MCPAgentTool
from slack_mcp_gateway.application.services.bridge import (
    BridgeResult,
    LLMMCPBridge,
    ParsedToolCall,
    ToolSnapshot,
)
from slack_mcp_gateway.application.services.controller import (
    ChannelController,
    ConversationManager,
)
from slack_mcp_gateway.application.services.snapshot import RuntimeSnapshot

__all__ = [
    "AccessController",
    "AccessDecision",
    "AgentTurnRunner",
    "BridgeResult",
    "ChannelController",
    "ConversationManager",
    "LLMMCPBridge",
    "MCPAgentTool",
    "ParsedToolCall",
    "RuntimeSnapshot",
    "ToolSnapshot",
]
