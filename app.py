#!/usr/bin/env python3
"""
Trading Platform Integration - Main Application Entry Point.

============================================================
USAGE
============================================================
Serve the HTTP API (scheduler included):
    python app.py serve --host 0.0.0.0 --port 8000

Seed the platform registry and exit:
    python app.py seed

Run one sync sweep over every connected account and exit:
    python app.py sync

With PM2:
    pm2 start app.py --interpreter python --name platform-integration -- serve

Environment-based configuration (see platform_integration.config):
    PLATFORM_DATABASE_URL=... LOG_LEVEL=DEBUG python app.py serve

============================================================
"""

import argparse
import asyncio
import logging
import os
import sys

import uvicorn

from platform_integration.app import IntegrationRuntime, create_app, setup_logging
from platform_integration.config import IntegrationConfig
from platform_integration.errors import RegistrySeedError


logger = logging.getLogger(__name__)


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="platform-integration",
        description="Multi-broker trading platform integration layer",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Commands:
  serve  - Run the HTTP API with the background sync scheduler
  seed   - Insert missing platform descriptors and exit
  sync   - Run a single sync sweep and exit
        """,
    )
    parser.add_argument(
        "command",
        nargs="?",
        choices=["serve", "seed", "sync"],
        default="serve",
        help="What to run (default: serve)",
    )
    parser.add_argument(
        "--host",
        default=os.getenv("PLATFORM_API_HOST", "0.0.0.0"),
        help="Bind address for serve",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PLATFORM_API_PORT", os.getenv("PORT", "8000"))),
        help="Port for serve",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override LOG_LEVEL",
    )
    return parser


async def run_seed(config: IntegrationConfig) -> int:
    runtime = IntegrationRuntime(config)
    try:
        await runtime.start(with_scheduler=False)
        return 0
    finally:
        await runtime.close()


async def run_sync(config: IntegrationConfig) -> int:
    runtime = IntegrationRuntime(config)
    try:
        await runtime.start(with_scheduler=False)
        result = await runtime.facade.sync_all()
        print(f"\nSync sweep: {result.message}")
        return 0 if result.success else 1
    finally:
        await runtime.close()


def main() -> int:
    """Main entry point."""
    args = create_parser().parse_args()

    config = IntegrationConfig.from_env()
    if args.log_level:
        config.log_level = args.log_level
    setup_logging(config.log_level, config.log_format)

    try:
        if args.command == "seed":
            return asyncio.run(run_seed(config))
        if args.command == "sync":
            return asyncio.run(run_sync(config))

        logger.info(f"Starting platform integration API on {args.host}:{args.port}")
        uvicorn.run(create_app(config), host=args.host, port=args.port, log_level=config.log_level.lower())
        return 0
    except RegistrySeedError as e:
        logger.critical(f"Startup aborted: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 130


if __name__ == "__main__":
    sys.exit(main())
