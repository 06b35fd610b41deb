"""Channels domain model - inbound messages and the chat frontend port."""

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Protocol


@dataclass(frozen=True)
class SenderInfo:
    """Sender information value object."""

    id: str
    name: str | None = None
    real_name: str | None = None
    is_bot: bool = False


@dataclass(frozen=True)
class InboundMessage:
    """A user-typed message delivered by the chat frontend.

    ``is_direct`` is True for direct messages and False for mentions in a
    shared channel.
    """

    channel_id: str
    user_id: str
    text: str
    thread_ts: str | None = None
    is_direct: bool = False
    raw_data: dict[str, Any] | None = field(default=None, repr=False, compare=False)
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC), compare=False)


MessageHandler = Callable[[InboundMessage], Awaitable[None]]
ErrorHandler = Callable[[Exception], None]


class ChannelAdapter(Protocol):
    """Chat frontend interface (Port in Hexagonal Architecture).

    Adapters connect to a chat platform and translate between its native
    events and ``InboundMessage``.
    """

    @property
    def id(self) -> str:
        """Unique identifier for this frontend (e.g., 'slack')."""
        ...

    @property
    def connected(self) -> bool:
        """Whether the frontend is currently connected."""
        ...

    async def connect(self) -> None:
        """Establish the persistent event connection."""
        ...

    async def disconnect(self) -> None:
        """Close the event connection."""
        ...

    async def send_text(self, to: str, text: str, thread_ts: str | None = None) -> str:
        """Post a text message and return its message id (timestamp)."""
        ...

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        """Delete a previously posted message. Returns False if unsupported."""
        ...

    def on_message(self, handler: MessageHandler) -> Callable[[], None]:
        """Register a message handler callback.

        Returns a function to unregister the handler.
        """
        ...

    def on_error(self, handler: ErrorHandler) -> Callable[[], None]:
        """Register an error handler callback."""
        ...

    async def get_user_info(self, user_id: str) -> SenderInfo | None:
        """Get user information by ID."""
        ...
