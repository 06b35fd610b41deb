from slack_mcp_gateway.infrastructure.logging.setup import setup_logging

__all__ = ["setup_logging"]
