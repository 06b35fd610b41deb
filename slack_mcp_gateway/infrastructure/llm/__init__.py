"""
LLM provider infrastructure.

All providers go through LiteLLM. Factories build them from configuration,
the registry selects the primary, and ``ConversationalAgent`` drives the
agent mode on top of any provider.
"""

from slack_mcp_gateway.infrastructure.llm.agent import ConversationalAgent
from slack_mcp_gateway.infrastructure.llm.factories import (
    AnthropicModelFactory,
    OllamaModelFactory,
    OpenAIModelFactory,
    ProviderFactoryRegistry,
    register_default_factories,
)
from slack_mcp_gateway.infrastructure.llm.litellm.litellm_provider import LiteLLMProvider
from slack_mcp_gateway.infrastructure.llm.registry import ProviderRegistry

__all__ = [
    "AnthropicModelFactory",
    "ConversationalAgent",
    "LiteLLMProvider",
    "OllamaModelFactory",
    "OpenAIModelFactory",
    "ProviderFactoryRegistry",
    "ProviderRegistry",
    "register_default_factories",
]
