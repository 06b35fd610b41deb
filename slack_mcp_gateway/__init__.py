"""Slack chat gateway that lets an LLM call tools on MCP servers."""

__version__ = "0.1.0"
