"""
Run the integration gateway.

Usage:
    python -m apps.services.gateway                     # settings from env/.env
    python -m apps.services.gateway --port 3000 --ws-port 8766
    integration-gateway --log-level DEBUG
"""

import argparse
import sys

import uvicorn

from apps.services.gateway.app import create_app
from apps.services.gateway.config import get_config


def main(argv=None) -> int:
    config = get_config()

    parser = argparse.ArgumentParser(description="Realtime integration gateway")
    parser.add_argument("--host", default=config.host, help=f"Bind host (default: {config.host})")
    parser.add_argument("--port", type=int, default=config.port, help=f"HTTP port (default: {config.port})")
    parser.add_argument(
        "--ws-port",
        type=int,
        default=config.ws_port,
        help=f"WebSocket listener port (default: {config.ws_port})",
    )
    parser.add_argument(
        "--log-level",
        default=config.log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        type=str.upper,
        help=f"Log level (default: {config.log_level})",
    )
    args = parser.parse_args(argv)

    config = config.model_copy(
        update={
            "host": args.host,
            "port": args.port,
            "ws_port": args.ws_port,
            "log_level": args.log_level,
        }
    )

    # log_config=None keeps uvicorn from replacing setup_logging()'s handlers
    uvicorn.run(
        create_app(config),
        host=config.host,
        port=config.port,
        log_config=None,
        log_level=config.log_level.lower(),
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
