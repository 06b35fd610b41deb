"""LLM provider contracts and exceptions."""

from slack_mcp_gateway.domain.llm_providers.exceptions import (
    FactoryAlreadyRegisteredError,
    LLMError,
    ProviderError,
    ProviderNotAvailableError,
    ProviderNotFoundError,
)
from slack_mcp_gateway.domain.llm_providers.llm_types import (
    DEFAULT_AGENT_ITERATIONS,
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    MAX_AGENT_ITERATIONS,
    AgentCallback,
    AgentTool,
    LLMProvider,
    LLMResponse,
    Message,
    MessageRole,
    ProviderInfo,
    ProviderOptions,
    ToolCall,
    clamp_agent_iterations,
)

__all__ = [
    "DEFAULT_AGENT_ITERATIONS",
    "DEFAULT_MAX_TOKENS",
    "DEFAULT_TEMPERATURE",
    "MAX_AGENT_ITERATIONS",
    "AgentCallback",
    "AgentTool",
    "FactoryAlreadyRegisteredError",
    "LLMError",
    "LLMProvider",
    "LLMResponse",
    "Message",
    "MessageRole",
    "ProviderError",
    "ProviderInfo",
    "ProviderNotAvailableError",
    "ProviderNotFoundError",
    "ProviderOptions",
    "ToolCall",
    "clamp_agent_iterations",
]
