"""
Workflow Agent Entry Point
==========================
Usage:
    python -m workflow_agent.run [--config PATH] [--host HOST] [--port PORT]
                                 [--webhook-url URL] [--model NAME]

Without --config the built-in defaults are used, with environment
overrides (WORKFLOW_AGENT_WEBHOOK_URL, WORKFLOW_AGENT_MODEL, ...).
"""

import argparse
import asyncio
import logging
import sys

from .config import ConfigError, load_config
from .server import start_server, stop_server

logger = logging.getLogger("workflow_agent")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="A2A agent server with an automation-workflow tool")
    parser.add_argument("--config", type=str, default=None, help="Path to a JSON config file")
    parser.add_argument("--host", type=str, default=None, help="Bind host (overrides config)")
    parser.add_argument("--port", type=int, default=None, help="Bind port (overrides config)")
    parser.add_argument("--webhook-url", type=str, default=None, help="Workflow webhook URL (overrides config)")
    parser.add_argument("--model", type=str, default=None, help="Chat model name (overrides config)")
    parser.add_argument("--log-level", type=str, default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Logging level")
    return parser


def apply_overrides(config: dict, args: argparse.Namespace) -> dict:
    """Apply CLI flags on top of the loaded configuration."""
    config["host"] = args.host or config.get("host", "0.0.0.0")
    config["port"] = args.port or config.get("port", 4000)
    if args.webhook_url:
        config["workflow"]["webhook_url"] = args.webhook_url
    if args.model:
        config["model"]["model"] = args.model
    return config


async def serve(config: dict, stop: asyncio.Event | None = None, **app_kwargs):
    """Run the server until ``stop`` is set (forever when not given)."""
    await start_server(config, **app_kwargs)
    try:
        await (stop or asyncio.Event()).wait()
    finally:
        await stop_server()


def main(argv: list[str] | None = None):
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        config = apply_overrides(load_config(args.config), args)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    host, port = config["host"], config["port"]
    logger.info(f"Starting workflow agent on {host}:{port}")
    logger.info(f"Workflow webhook: {config['workflow'].get('webhook_url') or '(none)'}")
    logger.info(f"Model API: {config['model'].get('api_base')} ({config['model'].get('model') or 'server default'})")
    logger.info(f"Input fields: {[f.field_name for f in config['workflow']['fields']]}")

    try:
        asyncio.run(serve(config))
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    except KeyboardInterrupt:
        logger.info("Shutting down workflow agent")
        sys.exit(0)


if __name__ == "__main__":
    main()
