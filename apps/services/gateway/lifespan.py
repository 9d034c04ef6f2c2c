"""
Gateway Application Lifespan Handler

Manages application startup and shutdown events for the HTTP app, which owns
the socket listener's lifecycle.
"""

import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI

from apps.services.gateway.config import get_config
from apps.services.gateway.dependencies import build_gateway
from libs.core.exceptions import BindError
from libs.core.logging_config import setup_logging


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan context manager.

    Startup:
        - Configures logging
        - Builds the gateway object graph
        - Binds and starts the socket listener (BindError aborts startup)

    Shutdown:
        - Drains and stops the socket listener
        - Closes the upstream HTTP client

    Args:
        app: FastAPI application instance
    """
    config = getattr(app.state, "config", None) or get_config()

    setup_logging(level=config.log_level, log_to_file=config.log_to_file, service_name="gateway")
    gateway_logger = logging.getLogger("gateway")
    gateway_logger.info("Gateway starting...")

    gateway = build_gateway(config, transport=getattr(app.state, "upstream_transport", None))
    app.state.gateway = gateway
    app.state.started_at = time.time()

    try:
        host, port = await gateway.lifecycle.start(config.host, config.ws_port)
    except BindError as e:
        gateway_logger.error(f"Failed to start WebSocket listener: {e.message}")
        await gateway.aclose()
        raise

    gateway_logger.info(f"Gateway ready: API on port {config.port}, WebSocket on {host}:{port}")

    yield

    gateway_logger.info("Gateway shutting down...")
    try:
        await gateway.lifecycle.stop(config.drain_timeout)
    finally:
        await gateway.aclose()
    gateway_logger.info("Gateway shutdown complete")
