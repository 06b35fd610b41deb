"""
LLM-MCP bridge.

Detects a tool-call request in an LLM response, validates it against the
tool registry, dispatches it to the owning MCP client and returns the
textual result. The bridge holds no state; everything it needs for a call
comes in a ``ToolSnapshot`` taken from the current runtime snapshot.
"""

import asyncio
import json
import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from slack_mcp_gateway.application.services import prompts
from slack_mcp_gateway.configuration.config import DEFAULT_TOOL_RESULT_MAX_CHARS, TimeoutsConfig
from slack_mcp_gateway.domain.exceptions.mcp import (
    BadToolArgsError,
    MCPError,
    MCPNotInitializedError,
    UnknownToolError,
)
from slack_mcp_gateway.domain.llm_providers.llm_types import LLMResponse
from slack_mcp_gateway.domain.model.mcp.tool import ToolInfo
from slack_mcp_gateway.infrastructure.mcp.client import MCPClient
from slack_mcp_gateway.infrastructure.mcp.tool_registry import ToolRegistry
from slack_mcp_gateway.infrastructure.telemetry.metrics import record_tool_invocation

logger = logging.getLogger(__name__)

CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*(\{[\s\S]*?\})\s*```")
EMPTY_RESULT = "{}"
RAW_ARGUMENTS_KEY = "__raw__"


@dataclass(frozen=True)
class ParsedToolCall:
    """A tool-call envelope found in a response."""

    tool: str
    args: dict[str, Any]
    native: bool = False


@dataclass(frozen=True)
class ToolSnapshot:
    """Tools and clients visible to one turn."""

    registry: ToolRegistry
    clients: Mapping[str, MCPClient]
    timeouts: TimeoutsConfig = field(default_factory=TimeoutsConfig)
    max_chars: int = DEFAULT_TOOL_RESULT_MAX_CHARS

    @property
    def tools(self) -> list[ToolInfo]:
        return self.registry.list_tools()


@dataclass
class BridgeResult:
    """Outcome of ``process_response``.

    When ``tool_invoked`` is False, ``text`` is the LLM text unchanged.
    Otherwise it is the (possibly truncated) tool result.
    """

    tool_invoked: bool
    text: str
    tool_name: str | None = None
    server_name: str | None = None
    arguments: dict[str, Any] = field(default_factory=dict)


def _as_envelope(candidate: Any) -> ParsedToolCall | None:
    if not isinstance(candidate, dict):
        return None
    tool = candidate.get("tool")
    args = candidate.get("args")
    if not isinstance(tool, str) or not tool or not isinstance(args, dict):
        return None
    return ParsedToolCall(tool=tool, args=args)


def _loads(text: str) -> Any:
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def _balanced_objects(text: str) -> Iterable[str]:
    """Yield every balanced ``{...}`` substring, outermost first, skipping string literals."""
    for start, char in enumerate(text):
        if char != "{":
            continue
        depth = 0
        in_string = False
        escaped = False
        for index in range(start, len(text)):
            current = text[index]
            if in_string:
                if escaped:
                    escaped = False
                elif current == "\\":
                    escaped = True
                elif current == '"':
                    in_string = False
                continue
            if current == '"':
                in_string = True
            elif current == "{":
                depth += 1
            elif current == "}":
                depth -= 1
                if depth == 0:
                    yield text[start : index + 1]
                    break


def truncate_result(text: str, max_chars: int) -> str:
    """Cut ``text`` to ``max_chars``; a limit of 0 disables truncation."""
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    dropped = len(text) - max_chars
    return f"{text[:max_chars]}\n...[truncated {dropped} characters]"


class LLMMCPBridge:
    """
    Routes LLM tool-call requests to MCP servers.

    Example:
        bridge = LLMMCPBridge()
        result = await bridge.process_response(response, snapshot)
        if result.tool_invoked:
            ...
    """

    def parse_tool_call(self, response: LLMResponse | str) -> ParsedToolCall | None:
        """
        Find a tool-call request in a response.

        Tried in order: a native tool call, the whole text as JSON, a
        code-fenced JSON object, then any embedded JSON object. Only objects
        with a string ``tool`` and an object ``args`` count.

        Raises:
            BadToolArgsError: If a native tool call carries arguments that are
                not valid JSON.
        """
        if isinstance(response, LLMResponse):
            native = response.tool_call
            if native is not None:
                if RAW_ARGUMENTS_KEY in native.arguments:
                    raise BadToolArgsError(
                        native.name,
                        [{"loc": (), "msg": "native tool call arguments are not valid JSON"}],
                    )
                return ParsedToolCall(tool=native.name, args=dict(native.arguments), native=True)
            text = response.content
        else:
            text = response

        text = (text or "").strip()
        if not text:
            return None

        parsed = _as_envelope(_loads(text))
        if parsed is not None:
            logger.debug(f"Tool call found as direct JSON: {parsed.tool}")
            return parsed

        for match in CODE_FENCE_PATTERN.finditer(text):
            parsed = _as_envelope(_loads(match.group(1)))
            if parsed is not None:
                logger.debug(f"Tool call found in code fence: {parsed.tool}")
                return parsed

        for candidate in _balanced_objects(text):
            parsed = _as_envelope(_loads(candidate))
            if parsed is not None:
                logger.debug(f"Tool call found embedded in text: {parsed.tool}")
                return parsed

        return None

    async def process_response(
        self,
        response: LLMResponse | str,
        snapshot: ToolSnapshot,
    ) -> BridgeResult:
        """
        Execute the tool call in ``response``, if there is one.

        Raises:
            UnknownToolError: The named tool is not registered.
            BadToolArgsError: The arguments do not match the input schema.
            MCPError: The owning client failed or the tool reported an error.
            TimeoutError: The call exceeded ``timeouts.mcp_call_tool``.
        """
        text = response.content if isinstance(response, LLMResponse) else response
        parsed = self.parse_tool_call(response)
        if parsed is None:
            return BridgeResult(tool_invoked=False, text=text or "")

        return await self.execute(parsed.tool, parsed.args, snapshot)

    async def execute(
        self,
        tool_name: str,
        arguments: dict[str, Any],
        snapshot: ToolSnapshot,
    ) -> BridgeResult:
        """Validate and dispatch one tool call."""
        info = snapshot.registry.get(tool_name)
        if info is None:
            logger.warning(f"LLM requested unknown tool '{tool_name}'")
            raise UnknownToolError(tool_name)

        arguments = snapshot.registry.validator.validate(tool_name, arguments)

        client = snapshot.clients.get(info.server_name)
        if client is None:
            raise MCPNotInitializedError(info.server_name)

        timeout = snapshot.timeouts.mcp_call_tool
        logger.info(f"Executing tool '{tool_name}' on server '{info.server_name}'")
        try:
            raw = await asyncio.wait_for(
                client.call_tool(tool_name, arguments, timeout=timeout), timeout=timeout
            )
        except (MCPError, TimeoutError):
            record_tool_invocation(tool_name, info.server_name, error=True)
            raise
        record_tool_invocation(tool_name, info.server_name, error=False)

        result = raw if raw.strip() else EMPTY_RESULT
        result = truncate_result(result, snapshot.max_chars)
        logger.debug(f"Tool '{tool_name}' returned {len(raw)} characters")
        return BridgeResult(
            tool_invoked=True,
            text=result,
            tool_name=tool_name,
            server_name=info.server_name,
            arguments=arguments,
        )

    def generate_tool_prompt(self, tools: Iterable[ToolInfo]) -> str:
        return prompts.generate_tool_prompt(tools)

    def native_tool_definitions(self, tools: Iterable[ToolInfo]) -> list[dict]:
        return prompts.native_tool_definitions(tools)
