"""Tests for ConversationManager dispatch, access checks and draining."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from slack_mcp_gateway.application.services.controller import ConversationManager
from slack_mcp_gateway.configuration.config import SecurityConfig
from slack_mcp_gateway.domain.model.channels.message import InboundMessage
from slack_mcp_gateway.domain.model.conversation.session import HistoryRole


def inbound(text="hi", user="U1", channel="C1"):
    return InboundMessage(channel_id=channel, user_id=user, text=text, thread_ts="1.0")


@pytest.fixture
def snapshot(make_snapshot):
    return make_snapshot()


@pytest.fixture
def manager(fake_adapter, snapshot):
    return ConversationManager(fake_adapter, lambda: snapshot)


class TestConversationManager:
    """Tests for ConversationManager."""

    @pytest.mark.asyncio
    async def test_message_runs_a_turn(self, manager, fake_adapter, scripted_provider):
        """Test a delivered message is answered in its channel session."""
        scripted_provider.queue("Hello!")
        manager.start()

        await fake_adapter.deliver(inbound())
        await manager.drain(timeout=5)

        assert fake_adapter.texts() == ["Thinking...", "Hello!"]
        session = manager.sessions.get("C1")
        assert [entry.role for entry in session.history] == [HistoryRole.USER, HistoryRole.ASSISTANT]
        assert session.provider_name == "openai"
        assert manager.pending == 0

    @pytest.mark.asyncio
    async def test_channels_have_separate_sessions(self, manager, fake_adapter, scripted_provider):
        """Test each channel keeps its own history."""
        scripted_provider.queue("one", "two")
        manager.start()

        await fake_adapter.deliver(inbound("first", channel="C1"))
        await fake_adapter.deliver(inbound("second", channel="C2"))
        await manager.drain(timeout=5)

        assert len(manager.sessions) == 2
        assert manager.sessions.get("C1").history[0].content == "first"
        assert manager.sessions.get("C2").history[0].content == "second"

    @pytest.mark.asyncio
    async def test_rejected_user(self, fake_adapter, make_snapshot, gateway_config, scripted_provider):
        """Test unauthorized messages get the rejection text and no LLM call."""
        config = gateway_config.model_copy(
            update={
                "security": SecurityConfig(
                    enabled=True, allowed_users=["U1"], rejection_message="Not allowed here."
                )
            }
        )
        snapshot = make_snapshot(config=config)
        manager = ConversationManager(fake_adapter, lambda: snapshot)
        manager.start()

        await fake_adapter.deliver(inbound(user="U9", channel="C9"))
        await manager.drain(timeout=5)

        assert fake_adapter.sent == [("C9", "Not allowed here.", "1.0")]
        assert scripted_provider.requests == []
        assert "C9" not in manager.sessions

    @pytest.mark.asyncio
    async def test_configure_applies_reload(self, manager, make_snapshot, gateway_config):
        """Test a new snapshot resizes history and swaps security settings."""
        session = manager.sessions.get("C1")
        config = gateway_config.model_copy(
            update={
                "slack": gateway_config.slack.model_copy(update={"message_history": 5}),
                "security": SecurityConfig(enabled=True, allowed_users=["U1"]),
            }
        )

        manager.configure(make_snapshot(config=config, generation=2))

        assert session.limit == 5
        assert manager.sessions.get("C2").limit == 5

    @pytest.mark.asyncio
    async def test_turn_errors_are_contained(self, fake_adapter, snapshot):
        """Test an unexpected controller failure does not stop the consumer."""
        controller = MagicMock()
        controller.handle_turn = AsyncMock(side_effect=[RuntimeError("bug"), "ok"])
        manager = ConversationManager(fake_adapter, lambda: snapshot, controller=controller)
        manager.start()

        await fake_adapter.deliver(inbound("one"))
        await fake_adapter.deliver(inbound("two"))
        await manager.drain(timeout=5)

        assert controller.handle_turn.await_count == 2

    @pytest.mark.asyncio
    async def test_drain_cancels_unfinished_turns(self, fake_adapter, snapshot):
        """Test turns still running after the drain timeout are cancelled."""
        started = asyncio.Event()
        cancelled = asyncio.Event()

        async def slow_turn(message, session):
            started.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                cancelled.set()
                raise

        controller = MagicMock()
        controller.handle_turn = slow_turn
        manager = ConversationManager(fake_adapter, lambda: snapshot, controller=controller)
        manager.start()

        await fake_adapter.deliver(inbound())
        await asyncio.wait_for(started.wait(), timeout=5)
        await manager.drain(timeout=0.1)

        assert cancelled.is_set()
        assert manager.pending == 0

    @pytest.mark.asyncio
    async def test_drain_unsubscribes(self, manager, fake_adapter, scripted_provider):
        """Test messages delivered after draining are ignored."""
        manager.start()
        await manager.drain(timeout=5)

        await fake_adapter.deliver(inbound())

        assert manager.pending == 0
        assert scripted_provider.requests == []
