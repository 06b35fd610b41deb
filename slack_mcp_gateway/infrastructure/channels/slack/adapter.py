"""Slack channel adapter over Socket Mode."""

import logging
import re
from collections.abc import Callable
from typing import Any

from slack_mcp_gateway.configuration.config import SlackConfig
from slack_mcp_gateway.domain.model.channels.message import (
    ErrorHandler,
    InboundMessage,
    MessageHandler,
    SenderInfo,
)

logger = logging.getLogger(__name__)

MENTION_PATTERN = re.compile(r"<@[A-Z0-9]+>")


class SlackAdapter:
    """Slack channel adapter.

    Implements the ChannelAdapter protocol using slack_bolt's ``AsyncApp``
    and ``AsyncSocketModeHandler``. Handles ``app_mention`` events in shared
    channels and plain messages in direct-message channels.

    Usage:
        adapter = SlackAdapter(config.slack)
        adapter.on_message(handler)
        await adapter.connect()
        await adapter.send_text("C123", "Hello!")
    """

    def __init__(self, config: SlackConfig, client: Any | None = None) -> None:
        self._config = config
        self._client = client
        self._app: Any | None = None
        self._handler: Any | None = None
        self._connected = False
        self._bot_user_id: str | None = None
        self._message_handlers: list[MessageHandler] = []
        self._error_handlers: list[ErrorHandler] = []

    @property
    def id(self) -> str:
        return "slack"

    @property
    def connected(self) -> bool:
        return self._connected

    @property
    def bot_user_id(self) -> str | None:
        return self._bot_user_id

    async def connect(self) -> None:
        """Open the Socket Mode connection."""
        if self._connected:
            logger.info("[Slack] Already connected")
            return

        try:
            from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
            from slack_bolt.async_app import AsyncApp
        except ImportError as e:
            raise ImportError(
                f"Slack SDK not installed or import error: {e}. "
                "Install with: pip install slack_bolt aiohttp"
            ) from e

        try:
            self._app = AsyncApp(token=self._config.bot_token)
            self._app.event("app_mention")(self._on_app_mention)
            self._app.event("message")(self._on_message)
            if self._client is None:
                self._client = self._app.client

            auth = await self._client.auth_test()
            self._bot_user_id = auth.get("user_id")
            logger.info(f"[Slack] Authenticated as bot user {self._bot_user_id}")

            self._handler = AsyncSocketModeHandler(self._app, self._config.app_token)
            await self._handler.connect_async()
            self._connected = True
            logger.info("[Slack] Connected via Socket Mode")
        except Exception as e:
            logger.error(f"[Slack] Connection failed: {e}")
            self._handle_error(e)
            raise

    async def disconnect(self) -> None:
        """Close the Socket Mode connection."""
        self._connected = False
        if self._handler is not None:
            await self._handler.close_async()
            self._handler = None
        logger.info("[Slack] Disconnected")

    async def _on_app_mention(self, event: dict[str, Any]) -> None:
        message = self.parse_app_mention(event)
        if message is not None:
            await self._dispatch(message)

    async def _on_message(self, event: dict[str, Any]) -> None:
        message = self.parse_direct_message(event)
        if message is not None:
            await self._dispatch(message)

    def _strip_mention(self, text: str) -> str:
        if self._bot_user_id:
            text = text.replace(f"<@{self._bot_user_id}>", "")
        else:
            text = MENTION_PATTERN.sub("", text, count=1)
        return text.strip()

    def _is_bot_event(self, event: dict[str, Any]) -> bool:
        if event.get("bot_id"):
            return True
        user = event.get("user")
        return bool(user) and user == self._bot_user_id

    def parse_app_mention(self, event: dict[str, Any]) -> InboundMessage | None:
        """Build an inbound message from an ``app_mention`` event.

        Replies go to the thread of the mentioning message.
        """
        if self._is_bot_event(event):
            return None
        text = self._strip_mention(event.get("text") or "")
        if not text:
            logger.debug("[Slack] Ignoring empty mention")
            return None
        return InboundMessage(
            channel_id=event.get("channel", ""),
            user_id=event.get("user", ""),
            text=text,
            thread_ts=event.get("thread_ts") or event.get("ts"),
            is_direct=False,
            raw_data=event,
        )

    def parse_direct_message(self, event: dict[str, Any]) -> InboundMessage | None:
        """Build an inbound message from a ``message`` event in a DM channel.

        Messages in shared channels, edits, deletions and bot messages are ignored.
        """
        channel = event.get("channel", "")
        is_im = event.get("channel_type") == "im" or channel.startswith("D")
        if not is_im:
            return None
        if event.get("subtype"):
            return None
        if self._is_bot_event(event):
            return None
        text = (event.get("text") or "").strip()
        if not text:
            return None
        return InboundMessage(
            channel_id=channel,
            user_id=event.get("user", ""),
            text=text,
            thread_ts=event.get("thread_ts"),
            is_direct=True,
            raw_data=event,
        )

    async def _dispatch(self, message: InboundMessage) -> None:
        logger.info(
            f"[Slack] Message from {message.user_id} in {message.channel_id} "
            f"({'dm' if message.is_direct else 'mention'})"
        )
        for handler in list(self._message_handlers):
            try:
                await handler(message)
            except Exception as e:
                logger.error(f"[Slack] Message handler error: {e}", exc_info=True)
                self._handle_error(e)

    def _require_client(self) -> Any:
        if self._client is None:
            raise RuntimeError("Slack adapter not connected")
        return self._client

    async def send_text(self, to: str, text: str, thread_ts: str | None = None) -> str:
        client = self._require_client()
        kwargs: dict[str, Any] = {"channel": to, "text": text}
        if thread_ts:
            kwargs["thread_ts"] = thread_ts
        response = await client.chat_postMessage(**kwargs)
        return response.get("ts", "")

    async def delete_message(self, channel_id: str, message_id: str) -> bool:
        client = self._require_client()
        try:
            response = await client.chat_delete(channel=channel_id, ts=message_id)
        except Exception as e:
            logger.warning(f"[Slack] Delete message failed: {e}")
            return False
        return bool(response.get("ok", False))

    def on_message(self, handler: MessageHandler) -> Callable[[], None]:
        """Register message handler."""
        self._message_handlers.append(handler)

        def unregister() -> None:
            if handler in self._message_handlers:
                self._message_handlers.remove(handler)

        return unregister

    def on_error(self, handler: ErrorHandler) -> Callable[[], None]:
        """Register error handler."""
        self._error_handlers.append(handler)

        def unregister() -> None:
            if handler in self._error_handlers:
                self._error_handlers.remove(handler)

        return unregister

    def _handle_error(self, error: Exception) -> None:
        for handler in self._error_handlers:
            try:
                handler(error)
            except Exception as e:
                logger.warning(f"[Slack] Error handler raised: {e}")

    async def get_user_info(self, user_id: str) -> SenderInfo | None:
        """Get user info through ``users.info``."""
        client = self._require_client()
        try:
            response = await client.users_info(user=user_id)
        except Exception as e:
            logger.warning(f"[Slack] Get user info failed: {e}")
            return None
        user = response.get("user") or {}
        if not user:
            return None
        return SenderInfo(
            id=user.get("id", user_id),
            name=user.get("name"),
            real_name=user.get("real_name"),
            is_bot=bool(user.get("is_bot", False)),
        )
