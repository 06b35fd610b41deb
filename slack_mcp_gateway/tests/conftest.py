"""Pytest configuration and shared fixtures for testing."""

import asyncio
import sys
from pathlib import Path
from typing import Any

import pytest

from slack_mcp_gateway.configuration.config import (
    GatewayConfig,
    LLMConfig,
    LLMProviderConfig,
    SlackConfig,
    TimeoutsConfig,
)
from slack_mcp_gateway.domain.llm_providers.llm_types import (
    LLMProvider,
    LLMResponse,
    Message,
    ProviderInfo,
    ProviderOptions,
)
from slack_mcp_gateway.domain.model.channels.message import SenderInfo
from slack_mcp_gateway.domain.model.mcp.server import ServerSpec
from slack_mcp_gateway.domain.model.mcp.transport import TransportType
from slack_mcp_gateway.domain.model.mcp.tool import MCPToolSchema

# A tiny MCP server speaking line-delimited JSON-RPC on stdio.
FAKE_SERVER_SOURCE = r'''
import json
import os
import signal
import sys
import time

if os.environ.get("FAKE_IGNORE_SIGINT") == "1":
    signal.signal(signal.SIGINT, signal.SIG_IGN)

TOOLS = [
    {
        "name": "list_dir",
        "description": "List files in a directory",
        "inputSchema": {
            "type": "object",
            "properties": {"relative_workspace_path": {"type": "string"}},
            "required": ["relative_workspace_path"],
        },
    },
    {
        "name": "echo",
        "description": "Echo the arguments back",
        "inputSchema": {"type": "object", "properties": {"text": {"type": "string"}}},
    },
    {"name": "fail", "description": "Always fails", "inputSchema": {"type": "object"}},
    {"name": "crash", "description": "Exits the server", "inputSchema": {"type": "object"}},
    {"name": "slow", "description": "Sleeps", "inputSchema": {"type": "object"}},
    {"name": "secret_env", "description": "Reports FAKE_TOKEN", "inputSchema": {"type": "object"}},
]

sys.stderr.write("fake server starting\n")
sys.stderr.flush()
print("not json, ignored", flush=True)


def reply(request_id, result=None, error=None):
    message = {"jsonrpc": "2.0", "id": request_id}
    if error is not None:
        message["error"] = error
    else:
        message["result"] = result
    sys.stdout.write(json.dumps(message) + "\n")
    sys.stdout.flush()


for line in sys.stdin:
    line = line.strip()
    if not line:
        continue
    message = json.loads(line)
    if "id" not in message:
        continue
    method = message.get("method")
    request_id = message["id"]
    if method == "initialize":
        print(json.dumps({"jsonrpc": "2.0", "method": "notifications/message", "params": {}}), flush=True)
        reply(request_id, {
            "protocolVersion": message["params"]["protocolVersion"],
            "capabilities": {"tools": {}},
            "serverInfo": {"name": "fake", "version": "1.0"},
        })
    elif method == "ping":
        reply(request_id, {})
    elif method == "tools/list":
        reply(request_id, {"tools": TOOLS})
    elif method == "tools/call":
        name = message["params"]["name"]
        arguments = message["params"].get("arguments", {})
        if name == "crash":
            sys.exit(3)
        if name == "slow":
            time.sleep(5)
        if name == "fail":
            reply(request_id, {"content": [{"type": "text", "text": "boom"}], "isError": True})
        elif name == "list_dir":
            reply(request_id, {"content": [{"type": "text", "text": "a\nb"}]})
        elif name == "secret_env":
            reply(request_id, {"content": [{"type": "text", "text": os.environ.get("FAKE_TOKEN", "")}]})
        else:
            reply(request_id, {"content": [{"type": "text", "text": json.dumps(arguments, sort_keys=True)}]})
    else:
        reply(request_id, error={"code": -32601, "message": "Method not found: %s" % method})
'''

LIST_DIR_SCHEMA = {
    "type": "object",
    "properties": {"relative_workspace_path": {"type": "string"}},
    "required": ["relative_workspace_path"],
}


@pytest.fixture
def fake_server_script(tmp_path: Path) -> Path:
    """Write the fake MCP server to a temporary file."""
    script = tmp_path / "fake_mcp_server.py"
    script.write_text(FAKE_SERVER_SOURCE)
    return script


@pytest.fixture
def make_stdio_spec(fake_server_script: Path):
    """Factory for ServerSpecs that run the fake server."""

    def _make(name: str = "fs", env: dict[str, str] | None = None, **kwargs: Any) -> ServerSpec:
        return ServerSpec(
            name=name,
            transport=TransportType.STDIO,
            command=sys.executable,
            args=("-u", str(fake_server_script)),
            env=env or {},
            **kwargs,
        )

    return _make


@pytest.fixture
def fast_timeouts() -> TimeoutsConfig:
    return TimeoutsConfig(
        mcp_initialize=10.0,
        mcp_list_tools=10.0,
        mcp_call_tool=10.0,
        llm_request=5.0,
        ping=2.0,
        http_request=10.0,
        shutdown_grace=1.0,
    )


@pytest.fixture
def list_dir_schema() -> MCPToolSchema:
    return MCPToolSchema(
        name="list_dir", description="List files in a directory", input_schema=LIST_DIR_SCHEMA
    )


class ScriptedProvider(LLMProvider):
    """Provider returning queued responses and recording every request."""

    def __init__(
        self,
        name: str = "openai",
        responses: list[LLMResponse | str | Exception] | None = None,
        available: bool = True,
    ) -> None:
        self.name = name
        self.responses = list(responses or [])
        self.available = available
        self.requests: list[list[Message]] = []
        self.options: list[ProviderOptions | None] = []

    def queue(self, *responses: LLMResponse | str | Exception) -> None:
        self.responses.extend(responses)

    async def _next(self) -> LLMResponse:
        if not self.responses:
            raise AssertionError(f"provider {self.name} received an unexpected request")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        if isinstance(response, str):
            return LLMResponse(content=response)
        return response

    async def generate_completion(self, prompt, options=None):
        self.requests.append([Message.user(prompt)])
        self.options.append(options)
        return await self._next()

    async def generate_chat_completion(self, messages, options=None):
        self.requests.append(list(messages))
        self.options.append(options)
        return await self._next()

    async def generate_agent_completion(
        self,
        system_prompt,
        user_prompt,
        history,
        tools,
        callback=None,
        max_iterations=20,
        options=None,
    ):
        from slack_mcp_gateway.infrastructure.llm.agent import ConversationalAgent

        agent = ConversationalAgent(self, tools, max_iterations=max_iterations, options=options)
        return await agent.run(system_prompt, user_prompt, history, callback)

    def get_info(self) -> ProviderInfo:
        return ProviderInfo(
            name=self.name,
            display_name=self.name,
            description="scripted test provider",
            configured=True,
            available=self.available,
        )

    def is_available(self) -> bool:
        return self.available


class FakeChannelAdapter:
    """In-memory chat frontend."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, str | None]] = []
        self.deleted: list[tuple[str, str]] = []
        self.connected = False
        self._handlers = []
        self._counter = 0

    @property
    def id(self) -> str:
        return "fake"

    async def connect(self) -> None:
        self.connected = True

    async def disconnect(self) -> None:
        self.connected = False

    async def send_text(self, to: str, text: str, thread_ts: str | None = None) -> str:
        self._counter += 1
        self.sent.append((to, text, thread_ts))
        return f"ts-{self._counter}"

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        self.deleted.append((channel_id, message_id))
        return True

    def on_message(self, handler):
        self._handlers.append(handler)
        return lambda: self._handlers.remove(handler) if handler in self._handlers else None

    def on_error(self, handler):
        return lambda: None

    async def get_user_info(self, user_id: str) -> SenderInfo | None:
        return SenderInfo(id=user_id, name=user_id)

    async def deliver(self, message) -> None:
        for handler in list(self._handlers):
            await handler(message)

    def texts(self) -> list[str]:
        return [text for _, text, _ in self.sent]


@pytest.fixture
def make_provider():
    """Factory for scripted providers."""
    return ScriptedProvider


@pytest.fixture
def scripted_provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture
def fake_adapter() -> FakeChannelAdapter:
    return FakeChannelAdapter()


@pytest.fixture
def gateway_config(fast_timeouts: TimeoutsConfig) -> GatewayConfig:
    """A valid config with a single OpenAI provider and no MCP servers."""
    return GatewayConfig(
        slack=SlackConfig(bot_token="xoxb-test", app_token="xapp-test", message_history=50),
        llm=LLMConfig(
            provider="openai",
            providers={"openai": LLMProviderConfig(model="gpt-4o", api_key="sk-test")},
        ),
        timeouts=fast_timeouts,
    )


class FakeMCPClient:
    """Duck-typed MCP client returning canned tool results."""

    def __init__(
        self,
        name: str = "fs",
        results: dict[str, str | Exception] | None = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.results = dict(results or {})
        self.delay = delay
        self.calls: list[tuple[str, dict[str, Any]]] = []
        self.closed = False

    async def call_tool(self, tool_name: str, arguments: dict[str, Any], timeout: float | None = None) -> str:
        self.calls.append((tool_name, arguments))
        if self.delay:
            await asyncio.sleep(self.delay)
        result = self.results.get(tool_name, "a\nb")
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fs_client() -> FakeMCPClient:
    return FakeMCPClient("fs")


@pytest.fixture
def tool_registry(list_dir_schema: MCPToolSchema):
    """Registry with list_dir and echo on the 'fs' server."""
    from slack_mcp_gateway.infrastructure.mcp.tool_registry import ToolRegistry

    registry = ToolRegistry()
    registry.register_server_tools(
        "fs",
        [
            list_dir_schema,
            MCPToolSchema(
                name="echo",
                description="Echo the arguments back",
                input_schema={"type": "object", "properties": {"text": {"type": "string"}}},
            ),
        ],
    )
    return registry


@pytest.fixture
def make_snapshot(gateway_config, scripted_provider, fs_client, tool_registry):
    """Factory for RuntimeSnapshots over fake clients and a scripted provider."""
    from slack_mcp_gateway.application.services.snapshot import RuntimeSnapshot
    from slack_mcp_gateway.infrastructure.llm.registry import ProviderRegistry

    def _make(
        config: GatewayConfig | None = None,
        providers: ProviderRegistry | None = None,
        clients: dict[str, Any] | None = None,
        tools=None,
        system_prompt: str = "",
        generation: int = 1,
    ) -> RuntimeSnapshot:
        if providers is None:
            providers = ProviderRegistry({scripted_provider.name: scripted_provider}, scripted_provider.name)
        return RuntimeSnapshot(
            config=config or gateway_config,
            providers=providers,
            clients={"fs": fs_client} if clients is None else clients,
            tools=tool_registry if tools is None else tools,
            system_prompt=system_prompt,
            generation=generation,
        )

    return _make
