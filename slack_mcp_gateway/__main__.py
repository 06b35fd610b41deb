"""Allow ``python -m slack_mcp_gateway``."""

from slack_mcp_gateway.cli.main import run

if __name__ == "__main__":
    run()
