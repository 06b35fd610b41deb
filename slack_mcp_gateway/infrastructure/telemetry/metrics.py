"""Gateway metrics.

Instruments are created lazily from the configured meter provider and are
no-ops when monitoring is disabled.
"""

from collections.abc import Mapping
from typing import Any

from opentelemetry.metrics import Counter, Histogram

from slack_mcp_gateway.infrastructure.telemetry.config import get_meter, get_meter_provider

TOOL_INVOCATIONS = "slackmcp_tool_invocations_total"
LLM_TOKENS = "slackmcp_llm_tokens"
RELOADS = "slackmcp_reloads_total"

TOKEN_TYPES = ("prompt", "completion", "reasoning", "cached")

_instruments: dict[str, Any] = {}
_bound_provider: Any = None


def reset_instruments() -> None:
    """Drop cached instruments (for testing)."""
    global _bound_provider
    _instruments.clear()
    _bound_provider = None


def _cached(name: str) -> Any:
    global _bound_provider
    provider = get_meter_provider()
    if provider is not _bound_provider:
        # Provider was replaced or shut down; rebind on next creation
        _instruments.clear()
        _bound_provider = provider
    return _instruments.get(name)


def create_counter(name: str, description: str, unit: str = "") -> Counter | None:
    """Create (or reuse) a counter metric.

    Returns:
        Counter instance or None if telemetry is disabled
    """
    cached = _cached(name)
    if cached is not None:
        return cached
    meter = get_meter()
    if meter is None:
        return None
    counter = meter.create_counter(name=name, description=description, unit=unit)
    _instruments[name] = counter
    return counter


def create_histogram(name: str, description: str, unit: str = "") -> Histogram | None:
    """Create (or reuse) a histogram metric.

    Returns:
        Histogram instance or None if telemetry is disabled
    """
    cached = _cached(name)
    if cached is not None:
        return cached
    meter = get_meter()
    if meter is None:
        return None
    histogram = meter.create_histogram(name=name, description=description, unit=unit)
    _instruments[name] = histogram
    return histogram


def record_tool_invocation(tool: str, server: str, error: bool) -> None:
    """Count one tool call, successful or not."""
    counter = create_counter(TOOL_INVOCATIONS, "Total number of MCP tool invocations")
    if counter is not None:
        counter.add(1, {"tool": tool, "server": server, "error": str(bool(error)).lower()})


def record_llm_tokens(model: str, usage: Mapping[str, int]) -> None:
    """Record token usage of one LLM call, one observation per non-zero type.

    Args:
        model: Model name.
        usage: Map of token type (``prompt``, ``completion``, ``reasoning``,
            ``cached``) to count.
    """
    histogram = create_histogram(LLM_TOKENS, "Tokens used per LLM call", unit="tokens")
    if histogram is None:
        return
    for token_type in TOKEN_TYPES:
        count = usage.get(token_type, 0)
        if count:
            histogram.record(count, {"type": token_type, "model": model})


def record_reload(trigger: str) -> None:
    """Count one configuration reload."""
    counter = create_counter(RELOADS, "Total number of configuration reloads")
    if counter is not None:
        counter.add(1, {"trigger": trigger})
