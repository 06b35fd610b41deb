"""
Agent-mode turns.

When ``llm.use_agent`` is set, the controller hands the turn to the
provider's ReAct agent instead of doing a single completion. MCP tools are
exposed to the agent through ``MCPAgentTool`` adapters over the bridge, and
intermediate agent steps are streamed back to the channel.
"""

import json
import logging
import re
from collections.abc import Awaitable, Callable, Iterable

from slack_mcp_gateway.application.services import prompts
from slack_mcp_gateway.application.services.bridge import LLMMCPBridge, ToolSnapshot
from slack_mcp_gateway.domain.exceptions.mcp import BadToolArgsError, MCPTransportTimeoutError
from slack_mcp_gateway.domain.llm_providers.llm_types import (
    AgentCallback,
    Message,
    ProviderOptions,
)
from slack_mcp_gateway.domain.model.conversation.session import HistoryEntry, HistoryRole
from slack_mcp_gateway.domain.model.mcp.tool import ToolInfo
from slack_mcp_gateway.infrastructure.llm.registry import ProviderRegistry

logger = logging.getLogger(__name__)

TOOL_NEEDED_PATTERN = re.compile(r"Do I need to use a tool\? Yes")
NO_TOOL_MARKER = "Do I need to use a tool? No"
ANSWER_MARKER = "AI:"

PostFunc = Callable[[str], Awaitable[object]]


class MCPAgentTool:
    """Exposes one registered MCP tool to the agent."""

    def __init__(self, info: ToolInfo, bridge: LLMMCPBridge, snapshot: ToolSnapshot) -> None:
        self._info = info
        self._bridge = bridge
        self._snapshot = snapshot

    @property
    def name(self) -> str:
        return self._info.tool_name

    @property
    def description(self) -> str:
        return prompts.agent_tool_description(self._info)

    def _parse_input(self, tool_input: str) -> dict:
        text = (tool_input or "").strip()
        if not text:
            return {}
        try:
            arguments = json.loads(text)
        except json.JSONDecodeError as e:
            raise BadToolArgsError(
                self.name, [{"loc": (), "msg": f"input is not valid JSON: {e.msg}"}]
            ) from e
        if not isinstance(arguments, dict):
            raise BadToolArgsError(self.name, [{"loc": (), "msg": "input must be a JSON object"}])
        return arguments

    async def call(self, tool_input: str) -> str:
        arguments = self._parse_input(tool_input)
        try:
            result = await self._bridge.execute(self.name, arguments, self._snapshot)
        except TimeoutError as e:
            raise MCPTransportTimeoutError(
                f"tool '{self.name}' timed out after {self._snapshot.timeouts.mcp_call_tool}s",
                original_error=e,
            ) from e
        return result.text


def clean_agent_step(step: str) -> str | None:
    """Return the user-visible part of an agent step, or None to drop it.

    Steps that decide to use a tool are dropped; otherwise the
    ``Do I need to use a tool? No`` and ``AI:`` markers are removed.
    """
    if TOOL_NEEDED_PATTERN.search(step):
        return None
    cleaned = step.replace(NO_TOOL_MARKER, "", 1).replace(ANSWER_MARKER, "", 1).strip()
    return cleaned or None


def make_step_callback(post: PostFunc) -> AgentCallback:
    """Wrap ``post`` so only cleaned, non-empty steps reach the channel."""

    async def callback(step: str) -> None:
        cleaned = clean_agent_step(step)
        if cleaned is None:
            logger.debug("Dropping agent tool-selection step")
            return
        await post(cleaned)

    return callback


def history_to_messages(entries: Iterable[HistoryEntry]) -> list[Message]:
    messages = []
    for entry in entries:
        if entry.role == HistoryRole.USER:
            messages.append(Message.user(entry.content))
        elif entry.role == HistoryRole.ASSISTANT:
            messages.append(Message.assistant(entry.content))
        else:
            messages.append(Message.assistant(f"Tool Result: {entry.content}"))
    return messages


class AgentTurnRunner:
    """Runs one agent-mode turn against a provider from the registry."""

    def __init__(self, bridge: LLMMCPBridge | None = None) -> None:
        self._bridge = bridge or LLMMCPBridge()

    def build_tools(self, snapshot: ToolSnapshot) -> list[MCPAgentTool]:
        return [MCPAgentTool(info, self._bridge, snapshot) for info in snapshot.tools]

    async def run(
        self,
        providers: ProviderRegistry,
        provider_name: str | None,
        system_prompt: str,
        user_prompt: str,
        history: Iterable[HistoryEntry],
        snapshot: ToolSnapshot,
        post: PostFunc,
        max_iterations: int,
        options: ProviderOptions | None = None,
    ) -> str:
        """
        Run the agent and return its final answer.

        Raises:
            LLMError: If the provider fails.
        """
        tools = self.build_tools(snapshot)
        logger.info(
            f"Running agent with {len(tools)} tools (max {max_iterations} iterations)"
        )
        return await providers.generate_agent_completion(
            provider_name,
            system_prompt,
            user_prompt,
            history_to_messages(history),
            tools,
            callback=make_step_callback(post),
            max_iterations=max_iterations,
            options=options,
        )
