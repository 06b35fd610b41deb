#!/usr/bin/env python3
"""
slack-mcp-gateway command line.

Usage:
    slack-mcp-gateway --config config.yaml
    slack-mcp-gateway --config config.yaml --debug --mcp-debug
    slack-mcp-gateway --config config.yaml --config-validate
    python -m slack_mcp_gateway --model gpt-4o-mini

Exit codes:
    0  normal shutdown, or a valid config with --config-validate
    1  fatal startup error (unreadable config, no providers, no MCP clients)
"""

import argparse
import asyncio
import logging
import sys

from slack_mcp_gateway import __version__
from slack_mcp_gateway.application.supervisor import Supervisor
from slack_mcp_gateway.configuration.config import EnvironmentOverrides, load_config
from slack_mcp_gateway.domain.exceptions.config import ConfigError
from slack_mcp_gateway.domain.llm_providers.exceptions import LLMError
from slack_mcp_gateway.infrastructure.logging.setup import setup_logging

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"
EXIT_OK = 0
EXIT_FATAL = 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="slack-mcp-gateway",
        description="Slack chat gateway that lets an LLM call tools on MCP servers",
    )
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to the YAML or JSON config file (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--mcp-debug", action="store_true", help="Debug logging for MCP clients")
    parser.add_argument("--llm-debug", action="store_true", help="Debug logging for LLM providers")
    parser.add_argument("--slack-debug", action="store_true", help="Debug logging for Slack")
    parser.add_argument("--model", default=None, help="Override the model for every request")
    parser.add_argument(
        "--config-validate",
        action="store_true",
        help="Load and validate the config, then exit",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def configure_logging(args: argparse.Namespace) -> None:
    level = "debug" if args.debug else (EnvironmentOverrides().log_level or "info")
    components = {
        name: "debug"
        for name, enabled in (
            ("mcp", args.mcp_debug),
            ("llm", args.llm_debug),
            ("slack", args.slack_debug),
        )
        if enabled
    }
    setup_logging(level, components)


def validate_config(path: str) -> int:
    try:
        config = load_config(path)
    except ConfigError as e:
        print(f"Configuration invalid: {e}", file=sys.stderr)
        return EXIT_FATAL

    servers = config.enabled_server_specs()
    print(f"Configuration valid: {path}")
    print(f"  LLM provider: {config.llm.provider}")
    print(f"  Providers: {', '.join(config.llm.providers)}")
    print(f"  MCP servers: {', '.join(spec.name for spec in servers) or '(none)'}")
    return EXIT_OK


async def serve(args: argparse.Namespace) -> int:
    supervisor = Supervisor(args.config, model_override=args.model)
    try:
        return await supervisor.run()
    except (ConfigError, LLMError) as e:
        logger.error(f"Fatal startup error: {e}")
        await supervisor.shutdown()
        return EXIT_FATAL


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args)

    if args.config_validate:
        return validate_config(args.config)

    logger.info(f"Starting slack-mcp-gateway {__version__}")
    try:
        return asyncio.run(serve(args))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return EXIT_OK


def run() -> None:
    sys.exit(main())


if __name__ == "__main__":
    run()
