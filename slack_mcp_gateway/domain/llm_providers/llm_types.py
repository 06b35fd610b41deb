"""
LLM type definitions for the gateway.

This module is the provider-neutral abstraction layer: chat messages, request
options, structured responses and the ``LLMProvider`` contract every backend
implements.
"""

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol, runtime_checkable

# Constants
DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 2048
DEFAULT_AGENT_ITERATIONS = 20
MAX_AGENT_ITERATIONS = 100


class MessageRole(str, Enum):
    """Role enumeration for chat messages."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass
class Message:
    """Chat message for LLM interactions."""

    role: str  # "system", "user", "assistant"
    content: str

    @classmethod
    def system(cls, content: str) -> "Message":
        """Create a system message."""
        return cls(role=MessageRole.SYSTEM.value, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        """Create a user message."""
        return cls(role=MessageRole.USER.value, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        """Create an assistant message."""
        return cls(role=MessageRole.ASSISTANT.value, content=content)

    def to_dict(self) -> dict[str, str]:
        return {"role": self.role, "content": self.content}


@dataclass
class ProviderOptions:
    """Generic request options, translated to provider knobs by each backend.

    ``temperature`` and ``max_tokens`` are only applied when greater than zero.
    ``target_provider`` lets a gateway provider pick its underlying backend.
    """

    model: str | None = None
    temperature: float = 0.0
    max_tokens: int = 0
    target_provider: str | None = None
    stop: list[str] | None = None
    tools: list[dict[str, Any]] | None = None


@dataclass
class ProviderInfo:
    """Information about an LLM provider."""

    name: str
    display_name: str = ""
    description: str = ""
    configured: bool = False
    available: bool = False
    # Non-sensitive configuration details (model, base URL)
    configuration: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class ToolCall:
    """A native tool-call request returned by the provider."""

    name: str
    arguments: dict[str, Any]
    id: str | None = None


@dataclass
class LLMResponse:
    """Response from a completion call.

    Either plain assistant text, or text plus one or more native tool calls.
    """

    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)
    finish_reason: str | None = None
    usage: dict[str, int] = field(default_factory=dict)
    model: str | None = None

    @property
    def tool_call(self) -> ToolCall | None:
        """First native tool call, if any."""
        return self.tool_calls[0] if self.tool_calls else None


@runtime_checkable
class AgentTool(Protocol):
    """A tool the agent driver can invoke with a raw string input."""

    @property
    def name(self) -> str: ...

    @property
    def description(self) -> str: ...

    async def call(self, tool_input: str) -> str: ...


# Receives each intermediate agent step as plain text
AgentCallback = Callable[[str], Awaitable[None]]


def clamp_agent_iterations(value: int | None) -> int:
    """Clamp an iteration budget to [1, MAX_AGENT_ITERATIONS]; None means default."""
    if value is None:
        return DEFAULT_AGENT_ITERATIONS
    return max(1, min(MAX_AGENT_ITERATIONS, int(value)))


class LLMProvider(ABC):
    """
    Abstract base class for LLM providers.

    Implementations own their client library and are responsible for their
    own internal concurrency.
    """

    @abstractmethod
    async def generate_completion(
        self,
        prompt: str,
        options: ProviderOptions | None = None,
    ) -> LLMResponse:
        """Generate a completion for a single prompt."""

    @abstractmethod
    async def generate_chat_completion(
        self,
        messages: list[Message],
        options: ProviderOptions | None = None,
    ) -> LLMResponse:
        """Generate a chat completion from a message sequence."""

    @abstractmethod
    async def generate_agent_completion(
        self,
        system_prompt: str,
        user_prompt: str,
        history: list[Message],
        tools: list[AgentTool],
        callback: AgentCallback | None = None,
        max_iterations: int = DEFAULT_AGENT_ITERATIONS,
        options: ProviderOptions | None = None,
    ) -> str:
        """Run a provider-driven agent loop and return the final answer."""

    @abstractmethod
    def get_info(self) -> ProviderInfo:
        """Return information about this provider."""

    @abstractmethod
    def is_available(self) -> bool:
        """Return True when the provider is configured and ready."""
