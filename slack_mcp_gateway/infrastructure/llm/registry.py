"""
LLM Provider Registry.

Holds every provider built from configuration and the selected primary.
Read-only once built; a reload builds a new registry.

Primary selection order:
    1. the configured provider, if it was created and is available
    2. the default provider (``openai``), if available
    3. the first available provider in configuration order
    4. otherwise ``ProviderError``
"""

import logging

from slack_mcp_gateway.configuration.config import (
    DEFAULT_PROVIDER,
    LLMConfig,
    TimeoutsConfig,
)
from slack_mcp_gateway.domain.llm_providers.exceptions import (
    LLMError,
    ProviderError,
    ProviderNotAvailableError,
    ProviderNotFoundError,
)
from slack_mcp_gateway.domain.llm_providers.llm_types import (
    AgentCallback,
    AgentTool,
    LLMProvider,
    LLMResponse,
    Message,
    ProviderInfo,
    ProviderOptions,
)
from slack_mcp_gateway.infrastructure.llm.factories import ProviderFactoryRegistry

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of initialized LLM providers."""

    def __init__(self, providers: dict[str, LLMProvider], primary: str) -> None:
        if primary not in providers:
            raise ProviderNotFoundError(primary)
        self._providers = dict(providers)
        self._primary = primary

    @classmethod
    def from_config(
        cls,
        llm_config: LLMConfig,
        factories: ProviderFactoryRegistry,
        timeouts: TimeoutsConfig | None = None,
    ) -> "ProviderRegistry":
        """
        Create every configured provider and select the primary.

        Providers whose factory is missing or fails are logged and skipped.

        Raises:
            ProviderError: If no provider could be created or none is available.
        """
        timeouts = timeouts or TimeoutsConfig()
        providers: dict[str, LLMProvider] = {}

        logger.info("Initializing LLM providers from configuration...")
        for name, provider_config in llm_config.providers.items():
            provider_type = provider_config.type or name
            factory = factories.get(provider_type)
            if factory is None:
                logger.error(
                    f"No provider factory registered for type '{provider_type}' "
                    f"(provider {name}); available: {factories.names()}"
                )
                continue
            try:
                providers[name] = factory.create(name, provider_config, timeouts)
            except (LLMError, ValueError) as e:
                logger.warning(f"Failed to initialize LLM provider {name}: {e}")
                continue
            logger.info(f"Initialized LLM provider {name}")

        if not providers:
            raise ProviderError("no LLM providers initialized")

        primary = cls._select_primary(llm_config.provider, providers)
        return cls(providers, primary)

    @staticmethod
    def _select_primary(configured: str, providers: dict[str, LLMProvider]) -> str:
        def available(name: str) -> bool:
            provider = providers.get(name)
            return provider is not None and provider.is_available()

        if configured and available(configured):
            logger.info(f"Set primary LLM provider: {configured}")
            return configured

        if configured:
            logger.error(
                f"Primary LLM provider '{configured}' could not be initialized or is not available"
            )
        if available(DEFAULT_PROVIDER):
            logger.warning(f"Falling back to {DEFAULT_PROVIDER} as primary provider")
            return DEFAULT_PROVIDER

        for name in providers:
            if available(name):
                logger.warning(f"Falling back to available provider as primary: {name}")
                return name

        raise ProviderError("failed to set a primary LLM provider, none are available")

    @property
    def primary_name(self) -> str:
        return self._primary

    def get_primary(self) -> LLMProvider:
        return self._providers[self._primary]

    def get(self, name: str | None = None) -> LLMProvider:
        """Return a provider by name; an empty name means the primary."""
        if not name:
            return self.get_primary()
        provider = self._providers.get(name)
        if provider is None:
            raise ProviderNotFoundError(name)
        return provider

    def get_available(self, name: str | None = None) -> LLMProvider:
        """Like ``get`` but raises ``ProviderNotAvailableError`` if not available."""
        provider = self.get(name)
        if not provider.is_available():
            info = provider.get_info()
            logger.warning(f"Requested provider is not available: {info.name}")
            raise ProviderNotAvailableError(info.name)
        return provider

    def list_providers(self) -> list[ProviderInfo]:
        return [provider.get_info() for provider in self._providers.values()]

    def names(self) -> list[str]:
        return list(self._providers)

    def __contains__(self, name: object) -> bool:
        return name in self._providers

    def __len__(self) -> int:
        return len(self._providers)

    async def generate_chat_completion(
        self,
        provider_name: str | None,
        messages: list[Message],
        options: ProviderOptions | None = None,
    ) -> LLMResponse:
        provider = self.get_available(provider_name)
        logger.debug(f"Using provider {provider.get_info().name} for chat completion")
        return await provider.generate_chat_completion(messages, options)

    async def generate_agent_completion(
        self,
        provider_name: str | None,
        system_prompt: str,
        user_prompt: str,
        history: list[Message],
        tools: list[AgentTool],
        callback: AgentCallback | None = None,
        max_iterations: int = 20,
        options: ProviderOptions | None = None,
    ) -> str:
        provider = self.get_available(provider_name)
        logger.debug(f"Using provider {provider.get_info().name} for agent completion")
        return await provider.generate_agent_completion(
            system_prompt,
            user_prompt,
            history,
            tools,
            callback=callback,
            max_iterations=max_iterations,
            options=options,
        )
