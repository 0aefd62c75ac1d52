"""
ChefFlow server entry point.

Starts the queue engine (blocking on its READY handshake), replays the
dispatch journal, rehydrates the engine from the order store, and only then
starts serving HTTP. On SIGINT/SIGTERM uvicorn stops serving and the engine
is terminated synchronously before the process exits 0. If the engine cannot
be launched the process exits 1.

Usage:
    chefflow
    chefflow --port 3000 --dotenv ./.env
    chefflow --config ./config/base.yaml
"""

from __future__ import annotations

import argparse
import atexit
import logging
import os
import sys
from typing import List, Optional

import uvicorn

from config.env_loader import load_env
from config.settings_loader import clear_settings_cache
from config.settings_schema import load_validated_settings
from core.exceptions import ConfigurationError, EngineLaunchError
from core.structured_log import configure_logging, jlog
from kitchen.bridge import build_bridge
from web.main import create_app

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="ChefFlow kitchen bridge server")
    parser.add_argument('--config', type=str, default=None, help='Settings YAML (default: config/base.yaml)')
    parser.add_argument('--dotenv', type=str, default='./.env')
    parser.add_argument('--host', type=str, default=None, help='Bind address (default from settings)')
    parser.add_argument('--port', type=int, default=None, help='Port (default from settings, 3000)')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    load_env(args.dotenv)
    if args.config:
        os.environ["CHEFFLOW_CONFIG_PATH"] = args.config
        clear_settings_cache()

    try:
        settings = load_validated_settings(force_reload=True)
    except ConfigurationError as e:
        configure_logging("INFO")
        logger.critical(f"Invalid settings: {e}")
        return 1

    configure_logging(settings.logging.level)

    bridge = build_bridge(settings)
    atexit.register(bridge.shutdown)

    logger.info("Starting queue engine...")
    try:
        bridge.start()
    except EngineLaunchError as e:
        logger.critical(f"Failed to start queue engine: {e}")
        jlog("server_start_failed", level="CRITICAL", error=e.to_dict())
        bridge.shutdown()
        return 1

    host = args.host or settings.web.host
    port = args.port or settings.web.port
    logger.info(f"Kitchen bridge listening on http://{host}:{port}")
    jlog("server_started", host=host, port=port)

    try:
        uvicorn.run(create_app(bridge), host=host, port=port, log_level=settings.logging.level.lower())
    finally:
        logger.info("Shutting down queue engine...")
        bridge.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())
