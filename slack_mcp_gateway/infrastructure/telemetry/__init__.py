"""OpenTelemetry metrics for the gateway."""

from slack_mcp_gateway.infrastructure.telemetry.config import (
    configure_meter_provider,
    get_meter,
    shutdown_telemetry,
)
from slack_mcp_gateway.infrastructure.telemetry.metrics import (
    record_llm_tokens,
    record_reload,
    record_tool_invocation,
)

__all__ = [
    "configure_meter_provider",
    "get_meter",
    "record_llm_tokens",
    "record_reload",
    "record_tool_invocation",
    "shutdown_telemetry",
]
