"""
LLM Provider Exceptions.

Unified exception hierarchy for LLM provider operations.

Example:
    try:
        response = await provider.generate_chat_completion(messages, options)
    except ProviderNotAvailableError:
        logger.warning("Provider not reachable")
    except LLMError as e:
        logger.error(f"LLM error: {e}")
"""

from typing import Any


class LLMError(Exception):
    """
    Base exception for all LLM-related errors.

    All LLM exceptions inherit from this base class.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        model: str | None = None,
        request_id: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.provider = provider
        self.model = model
        self.request_id = request_id
        self.extra = kwargs

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logging."""
        return {
            "type": self.__class__.__name__,
            "message": self.message,
            "provider": self.provider,
            "model": self.model,
            "request_id": self.request_id,
            **self.extra,
        }


class ProviderError(LLMError):
    """
    Exception for provider-level errors.

    Used for errors related to specific LLM providers:
    - Factory failed to build the provider
    - No primary provider could be selected
    - Invalid provider configuration
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(message=message, provider=provider, **kwargs)


class ProviderNotFoundError(ProviderError):
    """Raised when a provider name is not present in the registry."""

    def __init__(self, provider: str) -> None:
        super().__init__(f"provider '{provider}' not found in registry", provider=provider)


class ProviderNotAvailableError(ProviderError):
    """
    Exception when provider is unavailable.

    Raised when:
    - Client library failed to initialize
    - Required credentials are missing
    """

    def __init__(self, provider: str) -> None:
        super().__init__(f"provider '{provider}' is not available", provider=provider)


class FactoryAlreadyRegisteredError(ProviderError):
    """Raised when a provider factory name is registered twice."""

    def __init__(self, name: str) -> None:
        super().__init__(f"provider factory for '{name}' already registered", provider=name)
