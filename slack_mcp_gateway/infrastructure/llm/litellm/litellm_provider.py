"""
LiteLLM Provider Adapter.

Implements ``LLMProvider`` on top of LiteLLM, which routes to OpenAI-compatible
endpoints, Ollama, and Anthropic from one call signature. The model string is
prefixed with the route (``openai/``, ``ollama/``, ``anthropic/``) so LiteLLM
picks the right backend.
"""

import asyncio
import json
import logging
import warnings
from typing import Any

import litellm

from slack_mcp_gateway.domain.llm_providers.exceptions import LLMError, ProviderError
from slack_mcp_gateway.domain.llm_providers.llm_types import (
    AgentCallback,
    AgentTool,
    LLMProvider,
    LLMResponse,
    Message,
    ProviderInfo,
    ProviderOptions,
    ToolCall,
)
from slack_mcp_gateway.infrastructure.telemetry.metrics import record_llm_tokens

# Suppress Pydantic serialization warnings from litellm's ModelResponse when
# providers inject fields that are not in the declared schema.
warnings.filterwarnings(
    "ignore",
    message=r"Pydantic serializer warnings",
    category=UserWarning,
)

logger = logging.getLogger(__name__)

ROUTE_PREFIXES = {
    "openai": "openai",
    "ollama": "ollama",
    "anthropic": "anthropic",
}

DEFAULT_REQUEST_TIMEOUT = 180.0


def _get_attr(obj: Any, key: str, default: Any = None) -> Any:
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def flatten_messages(messages: list[Message]) -> str:
    """Render chat messages as one prompt for completion-only backends.

    Each message becomes ``"ROLE: content"`` on its own line, followed by a
    final ``"ASSISTANT: "`` marker.
    """
    lines = [f"{message.role.upper()}: {message.content}\n" for message in messages]
    return "".join(lines) + "ASSISTANT: "


class LiteLLMProvider(LLMProvider):
    """
    LiteLLM-based implementation of ``LLMProvider``.

    Usage:
        provider = LiteLLMProvider(name="openai", route="openai", model="gpt-4o", api_key="sk-...")
        response = await provider.generate_chat_completion([Message.user("hi")])
    """

    def __init__(
        self,
        name: str,
        route: str,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float = 0.0,
        max_tokens: int = 0,
        completion_only: bool = False,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        display_name: str = "",
    ) -> None:
        """
        Initialize the provider.

        Args:
            name: Provider name as configured (``openai``, ``my-proxy``, ...).
            route: LiteLLM route, one of ``openai``, ``ollama``, ``anthropic``.
            model: Default model.
            api_key: API key passed per request.
            api_base: Base URL override.
            temperature: Default temperature, applied only when > 0.
            max_tokens: Default max tokens, applied only when > 0.
            completion_only: Flatten chat messages into a single prompt.
            request_timeout: Deadline for one request, in seconds.
        """
        if route not in ROUTE_PREFIXES:
            raise ValueError(f"Unsupported LiteLLM route '{route}'")
        self._name = name
        self._route = route
        self._model = model
        self._api_key = api_key or None
        self._api_base = api_base or None
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._completion_only = completion_only
        self._request_timeout = request_timeout
        self._display_name = display_name or name

    @property
    def name(self) -> str:
        return self._name

    @property
    def model(self) -> str:
        return self._model

    def qualified_model(self, model: str | None = None, route: str | None = None) -> str:
        """Return the model with its LiteLLM route prefix.

        ``route`` overrides the configured backend, e.g. from
        ``ProviderOptions.target_provider``.
        """
        model = model or self._model
        route = route or self._route
        if route not in ROUTE_PREFIXES:
            raise ProviderError(f"Unsupported target provider '{route}'", provider=self._name)
        prefix = f"{ROUTE_PREFIXES[route]}/"
        return model if model.startswith(prefix) else f"{prefix}{model}"

    def _build_completion_kwargs(
        self,
        messages: list[dict[str, Any]],
        options: ProviderOptions,
    ) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": self.qualified_model(options.model, options.target_provider),
            "messages": messages,
        }

        temperature = options.temperature if options.temperature > 0 else self._temperature
        if temperature > 0:
            kwargs["temperature"] = min(temperature, 1.0)
        max_tokens = options.max_tokens if options.max_tokens > 0 else self._max_tokens
        if max_tokens > 0:
            kwargs["max_tokens"] = max_tokens
        if options.stop:
            kwargs["stop"] = list(options.stop)
        if options.tools:
            kwargs["tools"] = options.tools

        if self._api_key:
            kwargs["api_key"] = self._api_key
        if self._api_base:
            kwargs["api_base"] = self._api_base
        return kwargs

    async def _complete(
        self,
        messages: list[dict[str, Any]],
        options: ProviderOptions | None,
    ) -> LLMResponse:
        options = options or ProviderOptions()
        kwargs = self._build_completion_kwargs(messages, options)
        model = kwargs["model"]
        logger.debug(f"Calling {model} via LiteLLM with {len(messages)} messages")

        try:
            response = await asyncio.wait_for(
                litellm.acompletion(**kwargs), timeout=self._request_timeout
            )
        except TimeoutError as e:
            raise LLMError(
                f"LLM request timed out after {self._request_timeout}s",
                provider=self._name,
                model=model,
            ) from e
        except Exception as e:
            logger.error(f"LiteLLM request failed for provider {self._name}: {e}")
            raise LLMError(str(e), provider=self._name, model=model) from e

        choices = _get_attr(response, "choices", None) or []
        if not choices:
            raise LLMError("No choices in response", provider=self._name, model=model)

        choice = choices[0]
        message = _get_attr(choice, "message", {})
        content = _get_attr(message, "content", "") or ""
        tool_calls = self._parse_tool_calls(_get_attr(message, "tool_calls", None))
        usage = self._extract_usage(_get_attr(response, "usage", None))
        response_model = _get_attr(response, "model", None) or model
        if usage:
            record_llm_tokens(response_model, usage)

        logger.debug(f"Received response of length {len(content)} from {response_model}")
        return LLMResponse(
            content=content,
            tool_calls=tool_calls,
            finish_reason=_get_attr(choice, "finish_reason", None),
            usage=usage,
            model=response_model,
        )

    def _parse_tool_calls(self, raw_calls: Any) -> list[ToolCall]:
        calls: list[ToolCall] = []
        for raw in raw_calls or []:
            function = _get_attr(raw, "function", None)
            name = _get_attr(function, "name", None)
            if not name:
                continue
            arguments = _get_attr(function, "arguments", None) or "{}"
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments)
                except json.JSONDecodeError:
                    logger.warning(f"Native tool call '{name}' carried invalid JSON arguments")
                    arguments = {"__raw__": arguments}
            calls.append(ToolCall(name=name, arguments=arguments, id=_get_attr(raw, "id", None)))
        return calls

    @staticmethod
    def _extract_usage(usage: Any) -> dict[str, int]:
        if not usage:
            return {}
        completion_details = _get_attr(usage, "completion_tokens_details", None)
        prompt_details = _get_attr(usage, "prompt_tokens_details", None)
        return {
            "prompt": int(_get_attr(usage, "prompt_tokens", 0) or 0),
            "completion": int(_get_attr(usage, "completion_tokens", 0) or 0),
            "reasoning": int(_get_attr(completion_details, "reasoning_tokens", 0) or 0),
            "cached": int(_get_attr(prompt_details, "cached_tokens", 0) or 0),
        }

    async def generate_completion(
        self,
        prompt: str,
        options: ProviderOptions | None = None,
    ) -> LLMResponse:
        return await self._complete([Message.user(prompt).to_dict()], options)

    async def generate_chat_completion(
        self,
        messages: list[Message],
        options: ProviderOptions | None = None,
    ) -> LLMResponse:
        if self._completion_only:
            return await self.generate_completion(flatten_messages(messages), options)
        return await self._complete([message.to_dict() for message in messages], options)

    async def generate_agent_completion(
        self,
        system_prompt: str,
        user_prompt: str,
        history: list[Message],
        tools: list[AgentTool],
        callback: AgentCallback | None = None,
        max_iterations: int = 20,
        options: ProviderOptions | None = None,
    ) -> str:
        from slack_mcp_gateway.infrastructure.llm.agent import ConversationalAgent

        agent = ConversationalAgent(self, tools, max_iterations=max_iterations, options=options)
        return await agent.run(system_prompt, user_prompt, history, callback)

    def get_info(self) -> ProviderInfo:
        configuration = {"model": self._model, "route": self._route}
        if self._api_base:
            configuration["base_url"] = self._api_base
        return ProviderInfo(
            name=self._name,
            display_name=self._display_name,
            description=f"LiteLLM gateway ({self._route})",
            configured=True,
            available=self.is_available(),
            configuration=configuration,
        )

    def is_available(self) -> bool:
        if not self._model:
            return False
        if self._route == "anthropic":
            return bool(self._api_key)
        if self._route == "openai":
            return bool(self._api_key or self._api_base)
        return True
