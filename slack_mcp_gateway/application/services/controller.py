"""
Conversational controller.

``ChannelController`` runs one user turn per call:
IDLE -> THINKING -> (TOOLING -> SYNTHESIZING)? -> REPLYING -> IDLE.
``ConversationManager`` receives inbound messages from the chat frontend,
checks access, and runs each turn as its own task.
"""

import asyncio
import json
import logging
from collections.abc import Callable

from slack_mcp_gateway.application.services import prompts
from slack_mcp_gateway.application.services.access import AccessController
from slack_mcp_gateway.application.services.agent_loop import AgentTurnRunner
from slack_mcp_gateway.application.services.bridge import LLMMCPBridge
from slack_mcp_gateway.application.services.snapshot import RuntimeSnapshot
from slack_mcp_gateway.domain.exceptions.mcp import MCPError
from slack_mcp_gateway.domain.llm_providers.exceptions import LLMError
from slack_mcp_gateway.domain.llm_providers.llm_types import (
    LLMResponse,
    Message,
    ProviderOptions,
)
from slack_mcp_gateway.domain.model.channels.message import ChannelAdapter, InboundMessage
from slack_mcp_gateway.domain.model.conversation.session import (
    ChannelSession,
    HistoryEntry,
    HistoryRole,
    SessionStore,
    TurnState,
)

logger = logging.getLogger(__name__)

EMPTY_RESPONSE_MESSAGE = "(LLM returned an empty response)"
CANCELLED_MESSAGE = "Sorry, the request was cancelled before it completed."
INTERNAL_ERROR_MESSAGE = "Sorry, something went wrong while handling your message."
FOLLOW_UP_TOOL_NOTE = (
    "(Note: the model requested another tool call; follow-up tool calls are not executed.)"
)
DEFAULT_DRAIN_TIMEOUT = 10.0

SnapshotGetter = Callable[[], RuntimeSnapshot]


def llm_error_message(provider_name: str, error: Exception) -> str:
    return f"Sorry, I encountered an error with the LLM provider '{provider_name}': {error}"


def tool_error_message(error: Exception) -> str:
    return f"Sorry, I encountered an error while trying to use a tool: {error}"


def reprompt_error_message(result: str, error: Exception) -> str:
    return f"Tool Result:\n```{result}```\n\n(Error re-prompting LLM: {error})"


class ChannelController:
    """
    Runs user turns for channel sessions.

    The session lock is held for the whole turn, so turns on one channel are
    serialized while different channels proceed concurrently.
    """

    def __init__(
        self,
        adapter: ChannelAdapter,
        get_snapshot: SnapshotGetter,
        bridge: LLMMCPBridge | None = None,
        agent_runner: AgentTurnRunner | None = None,
        model_override: str | None = None,
    ) -> None:
        self._adapter = adapter
        self._get_snapshot = get_snapshot
        self._bridge = bridge or LLMMCPBridge()
        self._agent_runner = agent_runner or AgentTurnRunner(self._bridge)
        self._model_override = model_override

    async def handle_turn(self, message: InboundMessage, session: ChannelSession) -> str:
        """
        Run one turn and post the reply. Returns the posted reply.

        Raises:
            asyncio.CancelledError: On shutdown; history is rolled back to
                just after the user message.
        """
        async with session.lock:
            snapshot = self._get_snapshot()
            prior = session.history
            session.append(HistoryRole.USER, message.text)
            marker = session.checkpoint()
            session.state = TurnState.THINKING

            try:
                thinking_id = await self._post(message, snapshot.config.slack.thinking_message)
                try:
                    reply = await self._produce_reply(session, message, snapshot, prior)
                except TimeoutError:
                    removed = session.rollback(marker)
                    logger.warning(
                        f"Turn in channel {session.channel_id} hit its deadline; "
                        f"rolled back {removed} history entries"
                    )
                    reply = CANCELLED_MESSAGE
                except Exception as e:
                    removed = session.rollback(marker)
                    logger.error(
                        f"Turn in channel {session.channel_id} failed: {e}; "
                        f"rolled back {removed} history entries",
                        exc_info=True,
                    )
                    reply = INTERNAL_ERROR_MESSAGE

                session.state = TurnState.REPLYING
                await self._post(message, reply)
                if thinking_id:
                    await self._delete(message.channel_id, thinking_id)
                return reply
            except asyncio.CancelledError:
                session.rollback(marker)
                logger.info(f"Turn in channel {session.channel_id} cancelled")
                raise
            finally:
                session.state = TurnState.IDLE

    def build_messages(
        self,
        snapshot: RuntimeSnapshot,
        prior: list[HistoryEntry],
        user_text: str,
    ) -> list[Message]:
        """System prompt, tool prompt, previous context, then the user message."""
        llm = snapshot.config.llm
        tool_prompt = prompts.generate_tool_prompt(snapshot.tools.list_tools())
        if tool_prompt and llm.replace_tool_prompt:
            system_prompt = tool_prompt
        else:
            system_prompt = "\n\n".join(p for p in (snapshot.system_prompt, tool_prompt) if p)

        messages = []
        if system_prompt:
            messages.append(Message.system(system_prompt))
        history_context = prompts.build_history_context(prior)
        if history_context:
            messages.append(Message.system(history_context))
        messages.append(Message.user(user_text))
        return messages

    def _options(self, snapshot: RuntimeSnapshot) -> ProviderOptions:
        tools = None
        if snapshot.config.llm.use_native_tools and len(snapshot.tools):
            tools = prompts.native_tool_definitions(snapshot.tools.list_tools())
        return ProviderOptions(model=self._model_override, tools=tools)

    async def _complete(
        self,
        snapshot: RuntimeSnapshot,
        provider_name: str,
        messages: list[Message],
        options: ProviderOptions,
    ) -> LLMResponse:
        return await asyncio.wait_for(
            snapshot.providers.generate_chat_completion(provider_name, messages, options),
            timeout=snapshot.config.timeouts.llm_request,
        )

    async def _produce_reply(
        self,
        session: ChannelSession,
        message: InboundMessage,
        snapshot: RuntimeSnapshot,
        prior: list[HistoryEntry],
    ) -> str:
        provider_name = session.provider_name or snapshot.providers.primary_name
        if snapshot.config.llm.use_agent:
            return await self._produce_agent_reply(session, message, snapshot, prior, provider_name)

        messages = self.build_messages(snapshot, prior, message.text)
        try:
            response = await self._complete(
                snapshot, provider_name, messages, self._options(snapshot)
            )
        except LLMError as e:
            logger.error(f"LLM provider {provider_name} failed: {e}")
            return self._record(session, llm_error_message(provider_name, e))

        session.state = TurnState.TOOLING
        try:
            result = await self._bridge.process_response(response, snapshot.tool_snapshot())
        except MCPError as e:
            logger.error(f"Tool call failed in channel {session.channel_id}: {e}")
            return self._record(session, tool_error_message(e))

        if not result.tool_invoked:
            return self._record(session, result.text.strip() or EMPTY_RESPONSE_MESSAGE)

        request_text = response.content.strip() or json.dumps(
            {"tool": result.tool_name, "args": result.arguments}
        )
        session.append(HistoryRole.ASSISTANT, request_text)
        session.append(HistoryRole.TOOL, result.text)

        session.state = TurnState.SYNTHESIZING
        reprompt = [Message.user(prompts.build_reprompt(message.text, result.text))]
        try:
            final = await self._complete(
                snapshot, provider_name, reprompt, ProviderOptions(model=self._model_override)
            )
        except LLMError as e:
            logger.error(f"Re-prompt after tool {result.tool_name} failed: {e}")
            return self._record(session, reprompt_error_message(result.text, e))

        reply = final.content.strip()
        if reply and self._bridge.parse_tool_call(reply) is not None:
            logger.warning("Model requested a follow-up tool call; returning it verbatim")
            reply = f"{reply}\n\n{FOLLOW_UP_TOOL_NOTE}"
        return self._record(session, reply or EMPTY_RESPONSE_MESSAGE)

    async def _produce_agent_reply(
        self,
        session: ChannelSession,
        message: InboundMessage,
        snapshot: RuntimeSnapshot,
        prior: list[HistoryEntry],
        provider_name: str,
    ) -> str:
        async def post_step(text: str) -> None:
            await self._post(message, text)

        try:
            answer = await self._agent_runner.run(
                snapshot.providers,
                provider_name,
                snapshot.system_prompt,
                message.text,
                prior,
                snapshot.tool_snapshot(),
                post=post_step,
                max_iterations=snapshot.config.llm.max_agent_iterations,
                options=ProviderOptions(model=self._model_override),
            )
        except LLMError as e:
            logger.error(f"Agent run on provider {provider_name} failed: {e}")
            return self._record(session, llm_error_message(provider_name, e))
        return self._record(session, answer.strip() or EMPTY_RESPONSE_MESSAGE)

    @staticmethod
    def _record(session: ChannelSession, reply: str) -> str:
        session.append(HistoryRole.ASSISTANT, reply)
        return reply

    async def _post(self, message: InboundMessage, text: str) -> str | None:
        if not text:
            return None
        try:
            return await self._adapter.send_text(message.channel_id, text, message.thread_ts)
        except Exception as e:
            logger.error(f"Failed to post to channel {message.channel_id}: {e}")
            return None

    async def _delete(self, channel_id: str, message_id: str) -> None:
        try:
            await self._adapter.delete_message(channel_id, message_id)
        except Exception as e:
            logger.warning(f"Failed to delete message {message_id} in {channel_id}: {e}")


class ConversationManager:
    """
    Dispatches inbound messages to turns.

    A single consumer drains the inbound queue and spawns one task per turn.
    Running tasks are tracked so ``drain`` can wait for them on shutdown.
    """

    def __init__(
        self,
        adapter: ChannelAdapter,
        get_snapshot: SnapshotGetter,
        controller: ChannelController | None = None,
        access: AccessController | None = None,
        model_override: str | None = None,
    ) -> None:
        self._adapter = adapter
        self._get_snapshot = get_snapshot
        self._controller = controller or ChannelController(
            adapter, get_snapshot, model_override=model_override
        )
        snapshot = get_snapshot()
        self._access = access or AccessController(snapshot.config.security)
        self._sessions = SessionStore(
            limit=snapshot.config.slack.message_history,
            provider_name=snapshot.providers.primary_name,
        )
        self._queue: asyncio.Queue[InboundMessage | None] = asyncio.Queue()
        self._tasks: set[asyncio.Task] = set()
        self._consumer: asyncio.Task | None = None
        self._unregister: Callable[[], None] | None = None

    @property
    def sessions(self) -> SessionStore:
        return self._sessions

    @property
    def pending(self) -> int:
        return len(self._tasks) + self._queue.qsize()

    def start(self) -> None:
        """Subscribe to the frontend and start the consumer."""
        if self._consumer is not None:
            return
        self._unregister = self._adapter.on_message(self.enqueue)
        self._consumer = asyncio.create_task(self._consume(), name="conversation-consumer")
        logger.info("[Conversations] Started")

    async def enqueue(self, message: InboundMessage) -> None:
        await self._queue.put(message)

    def configure(self, snapshot: RuntimeSnapshot) -> None:
        """Apply reloaded history limit, primary provider and security settings."""
        self._sessions.configure(
            snapshot.config.slack.message_history, snapshot.providers.primary_name
        )
        self._access.update(snapshot.config.security)

    async def _consume(self) -> None:
        while True:
            message = await self._queue.get()
            if message is None:
                self._queue.task_done()
                break
            task = asyncio.create_task(self._dispatch(message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            self._queue.task_done()

    async def _dispatch(self, message: InboundMessage) -> None:
        try:
            decision = self._access.check(message.user_id, message.channel_id)
            if not decision.allowed:
                await self._adapter.send_text(
                    message.channel_id, self._access.rejection_message, message.thread_ts
                )
                return

            session = self._sessions.get(message.channel_id)
            await self._controller.handle_turn(message, session)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(
                f"[Conversations] Error handling message in {message.channel_id}: {e}",
                exc_info=True,
            )

    async def drain(self, timeout: float = DEFAULT_DRAIN_TIMEOUT) -> None:
        """Stop accepting messages and wait up to ``timeout`` for turns in flight.

        Turns still running afterwards are cancelled.
        """
        if self._unregister is not None:
            self._unregister()
            self._unregister = None

        if self._consumer is not None:
            await self._queue.put(None)
            try:
                await asyncio.wait_for(self._consumer, timeout=timeout)
            except TimeoutError:
                logger.warning("[Conversations] Consumer did not stop in time")
            self._consumer = None

        tasks = list(self._tasks)
        if not tasks:
            return
        logger.info(f"[Conversations] Draining {len(tasks)} turns in flight")
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning(f"[Conversations] Cancelled {len(still_running)} unfinished turns")
            await asyncio.gather(*still_running, return_exceptions=True)
