"""Command line entry point: serve the shim under uvicorn or chat with it."""

from __future__ import annotations

import argparse
import logging
import os
import sys

import uvicorn

from .chat import run_chat
from .config_loader import load_settings
from .core import ConfigurationError
from .logging import setup_logging
from .main import create_app

logger = logging.getLogger("messages-shim")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="messages-shim",
        description="Serve the Anthropic Messages API on top of an OpenAI-compatible provider",
    )
    parser.add_argument(
        "--config",
        help="Path to the YAML config (default: MESSAGES_SHIM_CONFIG or configs/config_default.yaml)",
    )
    parser.add_argument("--env-file", help="Path to a .env file used for ${VAR} substitution")
    parser.add_argument("--host", help="Bind address (overrides config and MESSAGES_SHIM_HOST)")
    parser.add_argument("--port", type=int, help="Bind port (overrides config and MESSAGES_SHIM_PORT)")
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        help="Log level (overrides config and MESSAGES_SHIM_LOG_LEVEL)",
    )
    parser.add_argument(
        "--chat",
        action="store_true",
        help="Start an interactive chat against an in-process shim instead of serving",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    # Command line flags win over the environment without being written into it
    overrides: dict[str, str] = {}
    if args.host:
        overrides["MESSAGES_SHIM_HOST"] = args.host
    if args.port is not None:
        overrides["MESSAGES_SHIM_PORT"] = str(args.port)
    if args.log_level:
        overrides["MESSAGES_SHIM_LOG_LEVEL"] = args.log_level
    elif args.chat:
        # Keep server logs out of the conversation
        overrides["MESSAGES_SHIM_LOG_LEVEL"] = "error"

    setup_logging(overrides.get("MESSAGES_SHIM_LOG_LEVEL") or os.getenv("MESSAGES_SHIM_LOG_LEVEL") or "info")

    try:
        settings = load_settings(args.config, env_path=args.env_file, overrides=overrides)
    except ConfigurationError as exc:
        logger.error(f"Configuration error: {exc.message}")
        return 1

    setup_logging(settings.log_level)
    if args.chat:
        return run_chat(settings)

    app = create_app(settings)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level)
    return 0


if __name__ == "__main__":
    sys.exit(main())
