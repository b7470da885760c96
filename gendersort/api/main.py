from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

from .config_loader import DEFAULT_CONFIG_PATH, load_config
from .server import create_app

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser with minimal CLI flags.

    Configuration is loaded from config/gendersort.json; CLI flags are only
    for quick overrides.
    """
    parser = argparse.ArgumentParser(
        description="Run the Gender Sort API server",
        epilog="Configuration is loaded from config/gendersort.json. "
               "CLI arguments override config file settings."
    )
    parser.add_argument(
        "--config",
        type=str,
        default=str(DEFAULT_CONFIG_PATH),
        help=f"Path to JSON configuration file (default: {DEFAULT_CONFIG_PATH})"
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Override server host (default: from config file)"
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Override server port (default: from config file)"
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config if Path(args.config).exists() else None)
    except (OSError, ValueError) as exc:
        logging.basicConfig(level=logging.INFO, format="%(levelname)s [%(name)s] %(message)s")
        logger.error("Failed to load configuration: %s", exc)
        sys.exit(1)

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=getattr(logging, cfg.logging.level, logging.INFO),
            format="%(levelname)s [%(name)s] %(message)s",
        )
    if not Path(args.config).exists():
        logger.info(
            "Configuration file %s not found; using defaults. Copy config/gendersort.example.json to get started",
            args.config,
        )

    if args.host:
        cfg.server.host = args.host
    if args.port:
        cfg.server.port = args.port

    logger.info("Server configuration: %s:%d", cfg.server.host, cfg.server.port)
    logger.info("Detector backend: %s", cfg.detector.backend)

    app = create_app(config=cfg)
    config = uvicorn.Config(
        app,
        host=cfg.server.host,
        port=cfg.server.port,
        log_level=cfg.logging.level.lower(),
        timeout_graceful_shutdown=1,
    )
    server = uvicorn.Server(config)

    try:
        asyncio.run(server.serve())
    except KeyboardInterrupt:
        logger.info("KeyboardInterrupt received during shutdown")


if __name__ == "__main__":
    main()
