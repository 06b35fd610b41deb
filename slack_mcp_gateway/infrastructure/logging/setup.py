"""Logging configuration for the gateway process."""

import logging

from slack_mcp_gateway.infrastructure.security.redaction import RedactingFilter

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Per-component debug toggles
COMPONENT_LOGGERS = {
    "mcp": "slack_mcp_gateway.infrastructure.mcp",
    "llm": "slack_mcp_gateway.infrastructure.llm",
    "slack": "slack_mcp_gateway.infrastructure.channels",
    "bridge": "slack_mcp_gateway.application",
}

# Third-party loggers that are too chatty at DEBUG
QUIET_LOGGERS = ("httpx", "httpcore", "LiteLLM", "slack_bolt", "slack_sdk")


def parse_level(level: str | int | None, default: int = logging.INFO) -> int:
    if level is None or level == "":
        return default
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else default


def setup_logging(
    level: str | int | None = "info",
    component_levels: dict[str, str | int] | None = None,
) -> None:
    """
    Configure root logging and install the redacting filter.

    Args:
        level: Root log level name or number.
        component_levels: Map of component toggle (``mcp``, ``llm``, ``slack``,
            ``bridge``) to a level that overrides the root level for it.
    """
    root_level = parse_level(level)
    logging.basicConfig(level=root_level, format=LOG_FORMAT, force=True)

    redacting = RedactingFilter()
    for handler in logging.getLogger().handlers:
        if not any(isinstance(f, RedactingFilter) for f in handler.filters):
            handler.addFilter(redacting)

    for component, component_level in (component_levels or {}).items():
        logger_name = COMPONENT_LOGGERS.get(component)
        if logger_name is None:
            continue
        logging.getLogger(logger_name).setLevel(parse_level(component_level))

    if root_level > logging.DEBUG:
        for name in QUIET_LOGGERS:
            logging.getLogger(name).setLevel(max(root_level, logging.WARNING))
