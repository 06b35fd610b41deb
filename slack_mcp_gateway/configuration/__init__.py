"""Configuration loading and models."""

from slack_mcp_gateway.configuration.config import (
    EnvironmentOverrides,
    GatewayConfig,
    LLMConfig,
    LLMProviderConfig,
    MCPServerConfig,
    RetryConfig,
    SecurityConfig,
    SlackConfig,
    TimeoutsConfig,
    load_config,
)

__all__ = [
    "EnvironmentOverrides",
    "GatewayConfig",
    "LLMConfig",
    "LLMProviderConfig",
    "MCPServerConfig",
    "RetryConfig",
    "SecurityConfig",
    "SlackConfig",
    "TimeoutsConfig",
    "load_config",
]
