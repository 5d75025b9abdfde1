#!/usr/bin/env python3
"""
swapbridge node

Loads configuration and secrets, then serves the bridge REST API.

Usage: python3 bridge_node.py --config bridge.json
"""

import argparse
import os
import sys

from swapbridge.api import run_server
from swapbridge.config import BridgeConfig, SecretHandle
from swapbridge.errors import SwapBridgeError
from swapbridge.logging import LogConfig, get_logger, setup_logging, shutdown_logging
from swapbridge.node import BridgeNode

logger = get_logger("bridge_node")


def main():
    """Main function."""
    parser = argparse.ArgumentParser(description="Run a swapbridge node")
    parser.add_argument("--config", help="Path to a JSON configuration file")
    parser.add_argument("--host", help="Override the API listen address")
    parser.add_argument("--port", type=int, help="Override the API port")
    parser.add_argument("--database", help="Override the SQLite database path")
    parser.add_argument(
        "--log-level",
        choices=["trace", "debug", "info", "warning", "error", "critical"],
        help="Override the log level",
    )
    parser.add_argument(
        "--check-config",
        action="store_true",
        help="Validate configuration and secrets, then exit",
    )
    args = parser.parse_args()

    try:
        config = BridgeConfig.load(args.config, dict(os.environ))
        if args.host:
            config.api.host = args.host
        if args.port:
            config.api.port = args.port
        if args.database:
            config.storage.database_path = args.database
        if args.log_level:
            config.logging["level"] = args.log_level

        setup_logging(LogConfig.from_dict(config.logging))
        secret_handle = SecretHandle.from_environment(os.environ)
        node = BridgeNode(config, secret_handle)
    except (SwapBridgeError, ValueError) as e:
        logger.critical(f"Cannot start bridge node: {e}")
        shutdown_logging()
        return 1

    if args.check_config:
        logger.info("Configuration OK")
        node.backend.disconnect()
        shutdown_logging()
        return 0

    try:
        run_server(node.create_app(), config.api, log_level=config.logging.get("level", "info"))
    finally:
        shutdown_logging()
    return 0


if __name__ == "__main__":
    sys.exit(main())
