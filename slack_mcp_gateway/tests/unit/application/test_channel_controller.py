"""Tests for ChannelController turns."""

import asyncio
import json

import pytest

from slack_mcp_gateway.application.services import prompts
from slack_mcp_gateway.application.services.controller import (
    CANCELLED_MESSAGE,
    EMPTY_RESPONSE_MESSAGE,
    FOLLOW_UP_TOOL_NOTE,
    INTERNAL_ERROR_MESSAGE,
    ChannelController,
    llm_error_message,
    reprompt_error_message,
)
from slack_mcp_gateway.configuration.config import TimeoutsConfig
from slack_mcp_gateway.domain.exceptions.mcp import ToolExecutionError
from slack_mcp_gateway.domain.llm_providers.exceptions import LLMError
from slack_mcp_gateway.domain.llm_providers.llm_types import LLMResponse, ToolCall
from slack_mcp_gateway.domain.model.channels.message import InboundMessage
from slack_mcp_gateway.domain.model.conversation.session import (
    ChannelSession,
    HistoryRole,
    TurnState,
)
from slack_mcp_gateway.infrastructure.llm.registry import ProviderRegistry
from slack_mcp_gateway.infrastructure.mcp.tool_registry import ToolRegistry

LIST_DIR_CALL = '{"tool": "list_dir", "args": {"relative_workspace_path": "."}}'


def inbound(text="list files", channel="C1", thread_ts="100.1"):
    return InboundMessage(channel_id=channel, user_id="U1", text=text, thread_ts=thread_ts)


def with_llm(config, **changes):
    return config.model_copy(update={"llm": config.llm.model_copy(update=changes)})


def roles(session):
    return [entry.role for entry in session.history]


@pytest.fixture
def session():
    return ChannelSession("C1", limit=50, provider_name="openai")


@pytest.fixture
def make_controller(fake_adapter, make_snapshot):
    """Build a controller over a snapshot made from keyword overrides."""

    def _make(model_override=None, **snapshot_kwargs):
        snapshot = make_snapshot(**snapshot_kwargs)
        return ChannelController(fake_adapter, lambda: snapshot, model_override=model_override)

    return _make


class HangingProvider:
    """Wraps a scripted provider and blocks forever on the n-th request."""

    def __init__(self, provider, hang_on: int) -> None:
        self._provider = provider
        self._hang_on = hang_on
        self.hanging = asyncio.Event()

    def __getattr__(self, name):
        return getattr(self._provider, name)

    async def generate_chat_completion(self, messages, options=None):
        if len(self._provider.requests) + 1 == self._hang_on:
            self._provider.requests.append(list(messages))
            self.hanging.set()
            await asyncio.Event().wait()
        return await self._provider.generate_chat_completion(messages, options)


# ============================================================================
# Tool round trip
# ============================================================================


class TestToolTurn:
    """Tests for turns that invoke an MCP tool."""

    @pytest.mark.asyncio
    async def test_list_files_round_trip(self, make_controller, scripted_provider, fake_adapter, fs_client, session):
        """Test request, tool call, re-prompt and final reply."""
        scripted_provider.queue(LIST_DIR_CALL, "There are two files: a and b.")
        controller = make_controller()

        reply = await controller.handle_turn(inbound(), session)

        assert reply == "There are two files: a and b."
        assert fs_client.calls == [("list_dir", {"relative_workspace_path": "."})]
        assert fake_adapter.sent == [
            ("C1", "Thinking...", "100.1"),
            ("C1", "There are two files: a and b.", "100.1"),
        ]
        assert fake_adapter.deleted == [("C1", "ts-1")]
        assert roles(session) == [
            HistoryRole.USER,
            HistoryRole.ASSISTANT,
            HistoryRole.TOOL,
            HistoryRole.ASSISTANT,
        ]
        assert session.history[1].content == LIST_DIR_CALL
        assert session.history[2].content == "a\nb"
        assert session.state == TurnState.IDLE

        reprompt = scripted_provider.requests[1]
        assert len(reprompt) == 1
        assert reprompt[0].role == "user"
        assert reprompt[0].content == prompts.build_reprompt("list files", "a\nb")

    @pytest.mark.asyncio
    async def test_first_request_carries_tool_prompt(self, make_controller, scripted_provider, session):
        """Test the system message has the custom prompt followed by the tool prompt."""
        scripted_provider.queue("Hi!")
        controller = make_controller(system_prompt="You are terse.")

        await controller.handle_turn(inbound("hello"), session)

        system, user = scripted_provider.requests[0]
        assert system.role == "system"
        assert system.content.startswith("You are terse.\n\n")
        assert "Tool Name: list_dir" in system.content
        assert user.content == "hello"

    @pytest.mark.asyncio
    async def test_replace_tool_prompt(self, make_controller, gateway_config, scripted_provider, session):
        """Test the custom prompt is dropped when the tool prompt replaces it."""
        scripted_provider.queue("Hi!")
        controller = make_controller(
            config=with_llm(gateway_config, replace_tool_prompt=True), system_prompt="You are terse."
        )

        await controller.handle_turn(inbound("hello"), session)

        system = scripted_provider.requests[0][0]
        assert "You are terse." not in system.content
        assert system.content.startswith(prompts.TOOL_PROMPT_HEADER)

    @pytest.mark.asyncio
    async def test_native_tool_call(self, make_controller, gateway_config, scripted_provider, fs_client, session):
        """Test native tool definitions are sent and native calls are executed."""
        scripted_provider.queue(
            LLMResponse(
                content="",
                tool_calls=[ToolCall(name="list_dir", arguments={"relative_workspace_path": "."})],
            ),
            "Two files.",
        )
        controller = make_controller(config=with_llm(gateway_config, use_native_tools=True))

        reply = await controller.handle_turn(inbound(), session)

        assert reply == "Two files."
        tools = scripted_provider.options[0].tools
        assert [tool["function"]["name"] for tool in tools] == ["list_dir", "echo"]
        assert fs_client.calls == [("list_dir", {"relative_workspace_path": "."})]
        assert json.loads(session.history[1].content) == {
            "tool": "list_dir",
            "args": {"relative_workspace_path": "."},
        }

    @pytest.mark.asyncio
    async def test_follow_up_tool_call_not_executed(self, make_controller, scripted_provider, fs_client, session):
        """Test a tool call in the re-prompt answer is returned with a note."""
        scripted_provider.queue(LIST_DIR_CALL, '{"tool": "echo", "args": {"text": "again"}}')
        controller = make_controller()

        reply = await controller.handle_turn(inbound(), session)

        assert reply.endswith(FOLLOW_UP_TOOL_NOTE)
        assert reply.startswith('{"tool": "echo"')
        assert len(fs_client.calls) == 1


# ============================================================================
# Plain turns and history
# ============================================================================


class TestPlainTurn:
    """Tests for turns answered without tools."""

    @pytest.mark.asyncio
    async def test_plain_answer(self, make_controller, scripted_provider, fs_client, session):
        """Test a natural-language answer is posted and recorded."""
        scripted_provider.queue("  Hello there!  ")
        controller = make_controller()

        reply = await controller.handle_turn(inbound("hi"), session)

        assert reply == "Hello there!"
        assert fs_client.calls == []
        assert [(e.role, e.content) for e in session.history] == [
            (HistoryRole.USER, "hi"),
            (HistoryRole.ASSISTANT, "Hello there!"),
        ]

    @pytest.mark.asyncio
    async def test_history_context_on_next_turn(self, make_controller, scripted_provider, session):
        """Test earlier turns are sent as a separate context message."""
        scripted_provider.queue("Hi Ada.", "Your name is Ada.")
        controller = make_controller(tools=ToolRegistry())

        await controller.handle_turn(inbound("my name is Ada"), session)
        await controller.handle_turn(inbound("what is my name?"), session)

        first, second = scripted_provider.requests
        assert [m.role for m in first] == ["user"]
        assert [m.role for m in second] == ["system", "user"]
        assert second[0].content == (
            "Previous conversation context:\n---\n"
            "User: my name is Ada\n"
            "Assistant: Hi Ada.\n"
            "---\n"
        )
        assert second[1].content == "what is my name?"

    @pytest.mark.asyncio
    async def test_empty_answer(self, make_controller, scripted_provider, session):
        scripted_provider.queue("   ")

        reply = await make_controller().handle_turn(inbound("hi"), session)

        assert reply == EMPTY_RESPONSE_MESSAGE

    @pytest.mark.asyncio
    async def test_model_override_and_session_provider(self, make_controller, make_provider, session):
        """Test the session's provider and the model override are used."""
        primary = make_provider("openai")
        backup = make_provider("ollama", responses=["from ollama"])
        session.provider_name = "ollama"
        controller = make_controller(
            model_override="llama3", providers=ProviderRegistry({"openai": primary, "ollama": backup}, "openai")
        )

        reply = await controller.handle_turn(inbound("hi"), session)

        assert reply == "from ollama"
        assert primary.requests == []
        assert backup.options[0].model == "llama3"

    @pytest.mark.asyncio
    async def test_turns_on_one_channel_are_serialized(self, make_controller, scripted_provider, session):
        """Test concurrent turns on a channel run one after the other."""
        scripted_provider.queue("one", "two")
        controller = make_controller(tools=ToolRegistry())

        await asyncio.gather(
            controller.handle_turn(inbound("first"), session),
            controller.handle_turn(inbound("second"), session),
        )

        assert [e.content for e in session.history] == ["first", "one", "second", "two"]


# ============================================================================
# Failures
# ============================================================================


class TestTurnFailures:
    """Tests for error replies, deadlines and cancellation."""

    @pytest.mark.asyncio
    async def test_llm_error(self, make_controller, scripted_provider, fake_adapter, session):
        """Test a provider failure is reported and recorded."""
        error = LLMError("rate limited", provider="openai")
        scripted_provider.queue(error)

        reply = await make_controller().handle_turn(inbound("hi"), session)

        assert reply == llm_error_message("openai", error)
        assert "rate limited" in reply
        assert fake_adapter.texts()[-1] == reply
        assert session.history[-1].content == reply

    @pytest.mark.asyncio
    async def test_unknown_tool(self, make_controller, scripted_provider, fs_client, session):
        """Test a call to an unregistered tool is reported without dispatch."""
        scripted_provider.queue('{"tool": "delete_all", "args": {}}')

        reply = await make_controller().handle_turn(inbound("delete everything"), session)

        assert reply.startswith("Sorry, I encountered an error while trying to use a tool:")
        assert "delete_all" in reply
        assert fs_client.calls == []
        assert len(scripted_provider.requests) == 1

    @pytest.mark.asyncio
    async def test_tool_execution_error(self, make_controller, scripted_provider, fs_client, session):
        """Test a tool error payload is reported to the user."""
        fs_client.results["list_dir"] = ToolExecutionError("list_dir", "fs", "permission denied")
        scripted_provider.queue(LIST_DIR_CALL)

        reply = await make_controller().handle_turn(inbound(), session)

        assert "permission denied" in reply
        assert roles(session) == [HistoryRole.USER, HistoryRole.ASSISTANT]

    @pytest.mark.asyncio
    async def test_unexpected_error_still_replies(
        self, make_controller, scripted_provider, fake_adapter, fs_client, session
    ):
        """Test a non-MCP failure posts an error reply and clears the thinking message."""
        fs_client.results["list_dir"] = TypeError("sequence item 0: expected str instance")
        scripted_provider.queue(LIST_DIR_CALL)

        reply = await make_controller().handle_turn(inbound(), session)

        assert reply == INTERNAL_ERROR_MESSAGE
        assert fake_adapter.sent == [
            ("C1", "Thinking...", "100.1"),
            ("C1", INTERNAL_ERROR_MESSAGE, "100.1"),
        ]
        assert fake_adapter.deleted == [("C1", "ts-1")]
        assert roles(session) == [HistoryRole.USER]
        assert session.state == TurnState.IDLE
        assert not session.lock.locked()

    @pytest.mark.asyncio
    async def test_reprompt_error(self, make_controller, scripted_provider, session):
        """Test a failed re-prompt still shows the raw tool result."""
        error = LLMError("overloaded")
        scripted_provider.queue(LIST_DIR_CALL, error)

        reply = await make_controller().handle_turn(inbound(), session)

        assert reply == reprompt_error_message("a\nb", error)
        assert reply.startswith("Tool Result:\n```a\nb```")

    @pytest.mark.asyncio
    async def test_tool_deadline_rolls_back(self, make_controller, gateway_config, scripted_provider, fs_client, session):
        """Test a tool deadline cancels the turn and keeps only the user entry."""
        fs_client.delay = 1.0
        config = gateway_config.model_copy(update={"timeouts": TimeoutsConfig(mcp_call_tool=0.05)})
        scripted_provider.queue(LIST_DIR_CALL)

        reply = await make_controller(config=config).handle_turn(inbound(), session)

        assert reply == CANCELLED_MESSAGE
        assert [(e.role, e.content) for e in session.history] == [(HistoryRole.USER, "list files")]
        assert session.state == TurnState.IDLE

    @pytest.mark.asyncio
    async def test_cancellation_rolls_back(self, fake_adapter, make_snapshot, scripted_provider, session):
        """Test a cancelled turn removes everything after the user entry."""
        scripted_provider.queue(LIST_DIR_CALL)
        hanging = HangingProvider(scripted_provider, hang_on=2)
        snapshot = make_snapshot(providers=ProviderRegistry({"openai": hanging}, "openai"))
        controller = ChannelController(fake_adapter, lambda: snapshot)

        task = asyncio.create_task(controller.handle_turn(inbound(), session))
        await asyncio.wait_for(hanging.hanging.wait(), timeout=5)
        assert len(session) == 3
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert roles(session) == [HistoryRole.USER]
        assert session.state == TurnState.IDLE
        assert not session.lock.locked()

    @pytest.mark.asyncio
    async def test_post_failure_does_not_abort_turn(self, make_controller, scripted_provider, fake_adapter, session):
        """Test a failing thinking message still lets the reply through."""
        original = fake_adapter.send_text
        calls = []

        async def flaky_send(to, text, thread_ts=None):
            calls.append(text)
            if len(calls) == 1:
                raise RuntimeError("channel_not_found")
            return await original(to, text, thread_ts)

        fake_adapter.send_text = flaky_send
        scripted_provider.queue("Hello")

        reply = await make_controller().handle_turn(inbound("hi"), session)

        assert reply == "Hello"
        assert fake_adapter.texts() == ["Hello"]
        assert fake_adapter.deleted == []


class TestAgentTurn:
    """Tests for agent-mode turns through the controller."""

    @pytest.mark.asyncio
    async def test_agent_mode(self, make_controller, gateway_config, scripted_provider, fake_adapter, fs_client, session):
        """Test agent steps are posted and the final answer is recorded."""
        scripted_provider.queue(
            'Thought: I should look.\nAction: list_dir\nAction Input: {"relative_workspace_path": "."}',
            " Do I need to use a tool? No\nAI: Found a and b.",
        )
        controller = make_controller(config=with_llm(gateway_config, use_agent=True, max_agent_iterations=4))

        reply = await controller.handle_turn(inbound(), session)

        assert reply == "Found a and b."
        assert fs_client.calls == [("list_dir", {"relative_workspace_path": "."})]
        texts = fake_adapter.texts()
        assert texts[0] == "Thinking..."
        assert texts[1].startswith("Thought: I should look.")
        assert texts[-1] == "Found a and b."
        assert roles(session) == [HistoryRole.USER, HistoryRole.ASSISTANT]

    @pytest.mark.asyncio
    async def test_agent_llm_error(self, make_controller, gateway_config, scripted_provider, session):
        error = LLMError("boom")
        scripted_provider.queue(error)
        controller = make_controller(config=with_llm(gateway_config, use_agent=True))

        reply = await controller.handle_turn(inbound(), session)

        assert reply == llm_error_message("openai", error)
