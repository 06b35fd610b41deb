"""Slack frontend."""

from slack_mcp_gateway.infrastructure.channels.slack.adapter import SlackAdapter

__all__ = ["SlackAdapter"]
