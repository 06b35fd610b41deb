"""
Provider model factories.

Each factory validates one provider type's configuration and builds a
``LiteLLMProvider`` for it. Factories are registered explicitly at startup
by ``register_default_factories``.
"""

import logging
from typing import Protocol

from slack_mcp_gateway.configuration.config import (
    DEFAULT_OLLAMA_BASE_URL,
    PROVIDER_ANTHROPIC,
    PROVIDER_OLLAMA,
    PROVIDER_OPENAI,
    LLMProviderConfig,
    TimeoutsConfig,
)
from slack_mcp_gateway.domain.llm_providers.exceptions import (
    FactoryAlreadyRegisteredError,
    ProviderError,
)
from slack_mcp_gateway.domain.llm_providers.llm_types import LLMProvider
from slack_mcp_gateway.infrastructure.llm.litellm.litellm_provider import LiteLLMProvider

logger = logging.getLogger(__name__)


class ModelFactory(Protocol):
    """Builds providers of one type."""

    def validate(self, name: str, config: LLMProviderConfig) -> None:
        """Raise ``ProviderError`` if ``config`` cannot produce a provider."""
        ...

    def create(
        self, name: str, config: LLMProviderConfig, timeouts: TimeoutsConfig
    ) -> LLMProvider:
        ...


def _require_model(name: str, config: LLMProviderConfig) -> None:
    if not config.model:
        raise ProviderError(f"provider '{name}' config requires 'model'", provider=name)


class OpenAIModelFactory:
    """OpenAI and OpenAI-compatible endpoints. The key is optional when a base URL is set."""

    route = PROVIDER_OPENAI

    def validate(self, name: str, config: LLMProviderConfig) -> None:
        _require_model(name, config)
        if not config.api_key and not config.base_url:
            raise ProviderError(
                f"OpenAI provider '{name}' requires 'api_key' or 'base_url'", provider=name
            )

    def create(
        self, name: str, config: LLMProviderConfig, timeouts: TimeoutsConfig
    ) -> LLMProvider:
        self.validate(name, config)
        if config.base_url:
            logger.info(f"Configuring OpenAI provider {name} (base_url={config.base_url}, model={config.model})")
        else:
            logger.info(f"Configuring OpenAI provider {name} (default endpoint, model={config.model})")
        return LiteLLMProvider(
            name=name,
            route=self.route,
            model=config.model,
            api_key=config.api_key,
            api_base=config.base_url,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            completion_only=config.completion_only,
            request_timeout=timeouts.llm_request,
            display_name="OpenAI",
        )


class OllamaModelFactory:
    """Local inference through Ollama."""

    route = PROVIDER_OLLAMA

    def validate(self, name: str, config: LLMProviderConfig) -> None:
        _require_model(name, config)

    def create(
        self, name: str, config: LLMProviderConfig, timeouts: TimeoutsConfig
    ) -> LLMProvider:
        self.validate(name, config)
        base_url = config.base_url or DEFAULT_OLLAMA_BASE_URL
        logger.info(f"Configuring Ollama provider {name} (base_url={base_url}, model={config.model})")
        return LiteLLMProvider(
            name=name,
            route=self.route,
            model=config.model,
            api_base=base_url,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            completion_only=config.completion_only,
            request_timeout=timeouts.llm_request,
            display_name="Ollama",
        )


class AnthropicModelFactory:
    """Anthropic models. The API key is required."""

    route = PROVIDER_ANTHROPIC

    def validate(self, name: str, config: LLMProviderConfig) -> None:
        _require_model(name, config)
        if not config.api_key:
            raise ProviderError(
                f"Anthropic provider '{name}' config requires 'api_key'", provider=name
            )

    def create(
        self, name: str, config: LLMProviderConfig, timeouts: TimeoutsConfig
    ) -> LLMProvider:
        self.validate(name, config)
        logger.info(f"Configuring Anthropic provider {name} (model={config.model})")
        return LiteLLMProvider(
            name=name,
            route=self.route,
            model=config.model,
            api_key=config.api_key,
            api_base=config.base_url,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            completion_only=config.completion_only,
            request_timeout=timeouts.llm_request,
            display_name="Anthropic",
        )


class ProviderFactoryRegistry:
    """Maps provider type names to factories."""

    def __init__(self) -> None:
        self._factories: dict[str, ModelFactory] = {}

    def register(self, name: str, factory: ModelFactory) -> None:
        """
        Register a factory for a provider type.

        Raises:
            FactoryAlreadyRegisteredError: If ``name`` is already registered.
        """
        if name in self._factories:
            raise FactoryAlreadyRegisteredError(name)
        self._factories[name] = factory
        logger.debug(f"Registered provider factory for {name}")

    def get(self, name: str) -> ModelFactory | None:
        return self._factories.get(name)

    def names(self) -> list[str]:
        return list(self._factories)

    def __contains__(self, name: object) -> bool:
        return name in self._factories


def register_default_factories(
    registry: ProviderFactoryRegistry | None = None,
) -> ProviderFactoryRegistry:
    """Register the OpenAI, Ollama and Anthropic factories."""
    registry = registry or ProviderFactoryRegistry()
    registry.register(PROVIDER_OPENAI, OpenAIModelFactory())
    registry.register(PROVIDER_OLLAMA, OllamaModelFactory())
    registry.register(PROVIDER_ANTHROPIC, AnthropicModelFactory())
    return registry
