"""Channels domain model."""

from slack_mcp_gateway.domain.model.channels.message import (
    ChannelAdapter,
    ErrorHandler,
    InboundMessage,
    MessageHandler,
    SenderInfo,
)

__all__ = [
    "ChannelAdapter",
    "ErrorHandler",
    "InboundMessage",
    "MessageHandler",
    "SenderInfo",
]
