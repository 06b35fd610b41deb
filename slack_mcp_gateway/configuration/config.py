"""Configuration management for the gateway.

The configuration document (YAML or JSON) is parsed into pydantic models.
Keys may be written in camelCase (``botToken``) or snake_case (``bot_token``).
Loading applies defaults, environment overrides and ``${VAR}`` substitution,
then validates the result.
"""

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

from slack_mcp_gateway.domain.exceptions.config import ConfigError
from slack_mcp_gateway.domain.llm_providers.llm_types import (
    DEFAULT_AGENT_ITERATIONS,
    DEFAULT_TEMPERATURE,
    clamp_agent_iterations,
)
from slack_mcp_gateway.domain.model.mcp.server import (
    DEFAULT_INITIALIZE_TIMEOUT_SECONDS,
    ServerSpec,
    ToolFilter,
)

logger = logging.getLogger(__name__)

CONFIG_VERSION = "2.0"

PROVIDER_OPENAI = "openai"
PROVIDER_ANTHROPIC = "anthropic"
PROVIDER_OLLAMA = "ollama"

DEFAULT_PROVIDER = PROVIDER_OPENAI
DEFAULT_OPENAI_MODEL = "gpt-4o"
DEFAULT_ANTHROPIC_MODEL = "claude-3-5-sonnet-20241022"
DEFAULT_OLLAMA_MODEL = "llama3"
DEFAULT_OLLAMA_BASE_URL = "http://localhost:11434"

DEFAULT_THINKING_MESSAGE = "Thinking..."
DEFAULT_MESSAGE_HISTORY = 50
DEFAULT_TOOL_RESULT_MAX_CHARS = 16000
DEFAULT_REJECTION_MESSAGE = "Sorry, you are not authorized to use this assistant here."

BOT_TOKEN_PREFIX = "xoxb-"
APP_TOKEN_PREFIX = "xapp-"

MIN_RELOAD_INTERVAL_SECONDS = 10

_ENV_PLACEHOLDER = re.compile(r"^\$\{([A-Za-z_][A-Za-z0-9_]*)\}$")


class _ConfigModel(BaseModel):
    """Base for config sections: camelCase aliases, snake_case accepted."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="forbid",
    )


class SlackConfig(_ConfigModel):
    bot_token: str = ""
    app_token: str = ""
    message_history: int = Field(default=DEFAULT_MESSAGE_HISTORY, ge=1)
    thinking_message: str = DEFAULT_THINKING_MESSAGE


class LLMProviderConfig(_ConfigModel):
    """Per-provider settings. ``type`` selects the factory when it differs from the name."""

    type: str | None = None
    model: str = ""
    api_key: str = ""
    base_url: str = ""
    temperature: float = 0.0
    max_tokens: int = 0
    completion_only: bool = False


class LLMConfig(_ConfigModel):
    provider: str = DEFAULT_PROVIDER
    use_native_tools: bool = False
    use_agent: bool = False
    custom_prompt: str = ""
    custom_prompt_file: str = ""
    replace_tool_prompt: bool = False
    max_agent_iterations: int = DEFAULT_AGENT_ITERATIONS
    tool_result_max_chars: int = Field(default=DEFAULT_TOOL_RESULT_MAX_CHARS, ge=0)
    providers: dict[str, LLMProviderConfig] = Field(default_factory=dict)

    @field_validator("max_agent_iterations", mode="before")
    @classmethod
    def clamp_iterations(cls, value: Any) -> int:
        """Clamp the agent iteration budget to [1, 100]."""
        if value is None:
            return DEFAULT_AGENT_ITERATIONS
        return clamp_agent_iterations(int(value))


class ToolsFilterConfig(_ConfigModel):
    allow_list: list[str] = Field(default_factory=list)
    block_list: list[str] = Field(default_factory=list)


class MCPServerConfig(_ConfigModel):
    command: str = ""
    args: list[str] = Field(default_factory=list)
    url: str = ""
    transport: str = ""
    env: dict[str, str] = Field(default_factory=dict)
    headers: dict[str, str] = Field(default_factory=dict)
    disabled: bool = False
    initialize_timeout_seconds: int | None = Field(default=None, gt=0)
    tools: ToolsFilterConfig = Field(default_factory=ToolsFilterConfig)

    def to_server_spec(
        self, name: str, default_timeout: float = DEFAULT_INITIALIZE_TIMEOUT_SECONDS
    ) -> ServerSpec:
        """Build the immutable runtime spec, inferring the transport if unset."""
        return ServerSpec(
            name=name,
            transport=ServerSpec.infer_transport(self.transport, self.command, self.url),
            command=self.command or None,
            args=tuple(self.args),
            env=dict(self.env),
            url=self.url or None,
            headers=dict(self.headers),
            disabled=self.disabled,
            initialize_timeout_seconds=int(self.initialize_timeout_seconds or default_timeout),
            tool_filter=ToolFilter(
                allow_list=tuple(self.tools.allow_list),
                block_list=tuple(self.tools.block_list),
            ),
        )


class RAGConfig(_ConfigModel):
    """Retrieval settings, passed through to the external RAG collaborator."""

    enabled: bool = False
    provider: str = "simple"
    chunk_size: int = 1000
    providers: dict[str, dict[str, Any]] = Field(default_factory=dict)


class MonitoringConfig(_ConfigModel):
    enabled: bool = True
    otlp_endpoint: str | None = None
    export_interval_ms: int = Field(default=60000, gt=0)
    logging_level: str = "info"
    # Accepted for older documents; metrics are exported over OTLP only
    metrics_port: int | None = None


class TimeoutsConfig(_ConfigModel):
    """Deadlines in seconds."""

    mcp_initialize: float = Field(default=30.0, gt=0)
    mcp_list_tools: float = Field(default=20.0, gt=0)
    mcp_call_tool: float = Field(default=180.0, gt=0)
    llm_request: float = Field(default=180.0, gt=0)
    ping: float = Field(default=5.0, gt=0)
    http_request: float = Field(default=30.0, gt=0)
    shutdown_grace: float = Field(default=5.0, gt=0)


class RetryConfig(_ConfigModel):
    sse_max_reconnect_attempts: int = Field(default=5, ge=0)
    sse_base_backoff: float = Field(default=1.0, gt=0)
    sse_max_backoff: float = Field(default=30.0, gt=0)
    list_tools_ping_retry: bool = True


class SecurityConfig(_ConfigModel):
    enabled: bool = False
    strict_mode: bool = False
    allowed_users: list[str] = Field(default_factory=list)
    allowed_channels: list[str] = Field(default_factory=list)
    admin_users: list[str] = Field(default_factory=list)
    rejection_message: str = DEFAULT_REJECTION_MESSAGE
    log_unauthorized: bool = True


class ReloadConfig(_ConfigModel):
    enabled: bool = False
    interval_seconds: int = Field(default=0, ge=0)


class GatewayConfig(_ConfigModel):
    """Root configuration document."""

    version: str = CONFIG_VERSION
    slack: SlackConfig = Field(default_factory=SlackConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    mcp_servers: dict[str, MCPServerConfig] = Field(default_factory=dict)
    rag: RAGConfig = Field(default_factory=RAGConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)
    timeouts: TimeoutsConfig = Field(default_factory=TimeoutsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    reload: ReloadConfig = Field(default_factory=ReloadConfig)

    def enabled_server_specs(self) -> list[ServerSpec]:
        """Specs for every non-disabled server, in document order."""
        return [
            server.to_server_spec(name, self.timeouts.mcp_initialize)
            for name, server in self.mcp_servers.items()
            if not server.disabled
        ]

    def primary_provider_config(self) -> LLMProviderConfig | None:
        return self.llm.providers.get(self.llm.provider)


class EnvironmentOverrides(BaseSettings):
    """Environment variables that override values from the config file."""

    slack_bot_token: str | None = Field(default=None, alias="SLACK_BOT_TOKEN")
    slack_app_token: str | None = Field(default=None, alias="SLACK_APP_TOKEN")
    llm_provider: str | None = Field(default=None, alias="LLM_PROVIDER")
    custom_prompt: str | None = Field(default=None, alias="CUSTOM_PROMPT")

    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_model: str | None = Field(default=None, alias="OPENAI_MODEL")
    openai_base_url: str | None = Field(default=None, alias="OPENAI_BASE_URL")
    anthropic_api_key: str | None = Field(default=None, alias="ANTHROPIC_API_KEY")
    anthropic_model: str | None = Field(default=None, alias="ANTHROPIC_MODEL")
    ollama_base_url: str | None = Field(default=None, alias="OLLAMA_BASE_URL")
    ollama_model: str | None = Field(default=None, alias="OLLAMA_MODEL")

    monitoring_enabled: bool | None = Field(default=None, alias="MONITORING_ENABLED")
    log_level: str | None = Field(default=None, alias="LOG_LEVEL")

    security_enabled: bool | None = Field(default=None, alias="SECURITY_ENABLED")
    security_strict_mode: bool | None = Field(default=None, alias="SECURITY_STRICT_MODE")
    security_allowed_users: str | None = Field(default=None, alias="SECURITY_ALLOWED_USERS")
    security_allowed_channels: str | None = Field(default=None, alias="SECURITY_ALLOWED_CHANNELS")
    security_admin_users: str | None = Field(default=None, alias="SECURITY_ADMIN_USERS")
    security_rejection_message: str | None = Field(default=None, alias="SECURITY_REJECTION_MESSAGE")
    security_log_unauthorized: bool | None = Field(default=None, alias="SECURITY_LOG_UNAUTHORIZED")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("*", mode="before")
    @classmethod
    def empty_as_unset(cls, value: Any) -> Any:
        """Treat empty variables as unset."""
        if isinstance(value, str) and not value.strip():
            return None
        return value


def apply_defaults(config: GatewayConfig) -> GatewayConfig:
    """Fill in the version and the built-in providers when absent."""
    if not config.version:
        config.version = CONFIG_VERSION
    if not config.llm.provider:
        config.llm.provider = DEFAULT_PROVIDER

    providers = config.llm.providers
    providers.setdefault(
        PROVIDER_OPENAI,
        LLMProviderConfig(model=DEFAULT_OPENAI_MODEL, temperature=DEFAULT_TEMPERATURE),
    )
    providers.setdefault(
        PROVIDER_ANTHROPIC,
        LLMProviderConfig(model=DEFAULT_ANTHROPIC_MODEL, temperature=DEFAULT_TEMPERATURE),
    )
    providers.setdefault(
        PROVIDER_OLLAMA,
        LLMProviderConfig(
            model=DEFAULT_OLLAMA_MODEL,
            base_url=DEFAULT_OLLAMA_BASE_URL,
            temperature=DEFAULT_TEMPERATURE,
        ),
    )
    config.rag.providers.setdefault("simple", {"databasePath": "./rag.db"})
    config.rag.providers.setdefault("openai", {"indexName": "slack-mcp-rag", "dimensions": 1536})
    return config


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def apply_environment_overrides(
    config: GatewayConfig, overrides: EnvironmentOverrides | None = None
) -> GatewayConfig:
    """Environment variables take precedence over file values."""
    env = overrides or EnvironmentOverrides()

    if env.slack_bot_token:
        config.slack.bot_token = env.slack_bot_token
    if env.slack_app_token:
        config.slack.app_token = env.slack_app_token
    if env.llm_provider:
        config.llm.provider = env.llm_provider
    if env.custom_prompt:
        config.llm.custom_prompt = env.custom_prompt
    if env.monitoring_enabled is not None:
        config.monitoring.enabled = env.monitoring_enabled
    if env.log_level:
        config.monitoring.logging_level = env.log_level

    security = config.security
    if env.security_enabled is not None:
        security.enabled = env.security_enabled
    if env.security_strict_mode is not None:
        security.strict_mode = env.security_strict_mode
    if env.security_allowed_users:
        security.allowed_users = _split_csv(env.security_allowed_users)
    if env.security_allowed_channels:
        security.allowed_channels = _split_csv(env.security_allowed_channels)
    if env.security_admin_users:
        security.admin_users = _split_csv(env.security_admin_users)
    if env.security_rejection_message:
        security.rejection_message = env.security_rejection_message
    if env.security_log_unauthorized is not None:
        security.log_unauthorized = env.security_log_unauthorized

    providers = config.llm.providers
    if PROVIDER_OPENAI in providers:
        openai_config = providers[PROVIDER_OPENAI]
        if env.openai_api_key:
            openai_config.api_key = env.openai_api_key
        if env.openai_model:
            openai_config.model = env.openai_model
        if env.openai_base_url:
            openai_config.base_url = env.openai_base_url
    if PROVIDER_ANTHROPIC in providers:
        anthropic_config = providers[PROVIDER_ANTHROPIC]
        if env.anthropic_api_key:
            anthropic_config.api_key = env.anthropic_api_key
        if env.anthropic_model:
            anthropic_config.model = env.anthropic_model
    if PROVIDER_OLLAMA in providers:
        ollama_config = providers[PROVIDER_OLLAMA]
        if env.ollama_base_url:
            ollama_config.base_url = env.ollama_base_url
        if env.ollama_model:
            ollama_config.model = env.ollama_model
    return config


def substitute_env_var(value: str) -> str:
    """Replace a whole-value ``${VAR}`` placeholder with the variable, if set."""
    if not value:
        return value
    match = _ENV_PLACEHOLDER.match(value.strip())
    if match:
        env_value = os.environ.get(match.group(1))
        if env_value:
            return env_value
    return value


def substitute_environment_variables(config: GatewayConfig) -> GatewayConfig:
    """Expand placeholders in tokens, keys, URLs and server environments."""
    config.slack.bot_token = substitute_env_var(config.slack.bot_token)
    config.slack.app_token = substitute_env_var(config.slack.app_token)

    for provider in config.llm.providers.values():
        provider.api_key = substitute_env_var(provider.api_key)
        provider.base_url = substitute_env_var(provider.base_url)

    for server in config.mcp_servers.values():
        server.url = substitute_env_var(server.url)
        server.env = {key: substitute_env_var(value) for key, value in server.env.items()}
        server.headers = {key: substitute_env_var(value) for key, value in server.headers.items()}

    if config.monitoring.otlp_endpoint:
        config.monitoring.otlp_endpoint = substitute_env_var(config.monitoring.otlp_endpoint)
    return config


def _is_unset(value: str) -> bool:
    return not value or value.startswith("${")


def validate_after_defaults(config: GatewayConfig) -> None:
    """Validate required credentials once defaults and substitution are applied.

    Raises:
        ConfigError: On the first problem found.
    """
    if _is_unset(config.slack.bot_token):
        raise ConfigError("SLACK_BOT_TOKEN environment variable not set")
    if _is_unset(config.slack.app_token):
        raise ConfigError("SLACK_APP_TOKEN environment variable not set")
    if not config.slack.bot_token.startswith(BOT_TOKEN_PREFIX):
        raise ConfigError(f"Slack bot token must start with '{BOT_TOKEN_PREFIX}'")
    if not config.slack.app_token.startswith(APP_TOKEN_PREFIX):
        raise ConfigError(f"Slack app token must start with '{APP_TOKEN_PREFIX}'")

    provider_name = config.llm.provider
    provider = config.llm.providers.get(provider_name)
    if provider is None:
        raise ConfigError(f"LLM provider '{provider_name}' not configured")

    provider_type = provider.type or provider_name
    if provider_type == PROVIDER_OPENAI and _is_unset(provider.api_key) and not provider.base_url:
        raise ConfigError("OPENAI_API_KEY environment variable not set")
    if provider_type == PROVIDER_ANTHROPIC and _is_unset(provider.api_key):
        raise ConfigError("ANTHROPIC_API_KEY environment variable not set")

    for name, server in config.mcp_servers.items():
        if server.disabled:
            continue
        try:
            server.to_server_spec(name, config.timeouts.mcp_initialize)
        except ValueError as e:
            raise ConfigError(f"Invalid MCP server configuration: {e}", {"server": name}) from e


def _parse_document(path: Path, text: str) -> Any:
    if path.suffix.lower() in (".yaml", ".yml"):
        return yaml.safe_load(text)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # Extensionless or mislabeled files are tried as YAML, a superset of JSON
        return yaml.safe_load(text)


def is_legacy_format(document: dict[str, Any]) -> bool:
    """A legacy document only lists ``mcpServers`` (no version, slack or llm)."""
    return "mcpServers" in document and not any(
        key in document for key in ("version", "slack", "llm")
    )


def parse_config_document(document: Any, source: str = "<config>") -> GatewayConfig:
    """Turn a parsed document into a ``GatewayConfig`` (no defaults or env applied)."""
    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise ConfigError(f"Configuration in {source} must be a mapping")

    document = {key: value for key, value in document.items() if key != "$schema"}
    if is_legacy_format(document):
        logger.info(f"Detected legacy configuration format in {source}, converting automatically")
        document = {"mcpServers": document["mcpServers"]}

    try:
        return GatewayConfig.model_validate(document)
    except ValidationError as e:
        raise ConfigError(
            f"Failed to parse config file {source}: {e}", {"errors": e.errors()}
        ) from e


def load_config(
    path: str | os.PathLike[str] | None,
    overrides: EnvironmentOverrides | None = None,
    validate: bool = True,
) -> GatewayConfig:
    """
    Load configuration from file and environment variables.

    Steps: load ``.env``, parse the file, apply defaults, apply environment
    overrides, substitute ``${VAR}`` placeholders, validate.

    Raises:
        ConfigError: If the file is missing, unreadable or invalid.
    """
    if load_dotenv(override=False):
        logger.info("Loaded environment variables from .env file")

    if path:
        config_path = Path(path)
        if not config_path.exists():
            raise ConfigError(f"config file does not exist: {config_path}")
        try:
            text = config_path.read_text(encoding="utf-8")
            document = _parse_document(config_path, text)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigError(f"failed to read config file {config_path}: {e}") from e
        config = parse_config_document(document, str(config_path))
        logger.info(f"Loaded configuration from file {config_path}")
    else:
        config = GatewayConfig()

    apply_defaults(config)
    apply_environment_overrides(config, overrides)
    substitute_environment_variables(config)

    if validate:
        validate_after_defaults(config)
    return config


def load_custom_prompt(llm: LLMConfig) -> str:
    """Return the system prompt; ``custom_prompt_file`` wins over ``custom_prompt``."""
    if llm.custom_prompt_file:
        try:
            return Path(llm.custom_prompt_file).read_text(encoding="utf-8").strip()
        except OSError as e:
            logger.warning(
                f"Could not read custom prompt file {llm.custom_prompt_file}: {e}; "
                "falling back to inline prompt"
            )
    return llm.custom_prompt
