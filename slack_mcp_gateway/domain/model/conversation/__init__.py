"""Conversation domain model."""

from slack_mcp_gateway.domain.model.conversation.session import (
    DEFAULT_HISTORY_LIMIT,
    ChannelSession,
    HistoryEntry,
    HistoryRole,
    SessionStore,
    TurnState,
)

__all__ = [
    "DEFAULT_HISTORY_LIMIT",
    "ChannelSession",
    "HistoryEntry",
    "HistoryRole",
    "SessionStore",
    "TurnState",
]
