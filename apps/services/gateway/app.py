"""
Gateway FastAPI Application - Integration Server

HTTP side of the integration gateway. Serves the service index and health
endpoints; its lifespan starts and stops the WebSocket listener that carries
the realtime traffic (see lifecycle.py).

Structure:
    - config.py: Environment-driven settings
    - dependencies.py: Builds the gateway object graph (registry, handlers,
      dispatcher, lifecycle)
    - lifespan.py: Startup/shutdown of the socket listener
    - codec.py / dispatcher.py / broadcast.py / connection_registry.py:
      realtime core
    - services/: External call handlers (workflow trigger, capability provider)
    - routers/: health (this app), websockets (socket listener app)

Run:
    python -m apps.services.gateway
    uvicorn apps.services.gateway.app:app --port 3000
"""

from typing import Optional

import httpx
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from apps.services.gateway.config import (
    SERVICE_NAME,
    SERVICE_VERSION,
    GatewayConfig,
    get_config,
)
from apps.services.gateway.lifespan import lifespan
from apps.services.gateway.routers import health_router


# =============================================================================
# Application Factory
# =============================================================================


def create_app(
    config: Optional[GatewayConfig] = None,
    upstream_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Build the HTTP app.

    Args:
        config: Settings (defaults to the cached environment config at startup)
        upstream_transport: Optional httpx transport for upstream calls
    """
    app = FastAPI(
        title=SERVICE_NAME,
        description="Realtime integration gateway: workflow triggers, capability calls, peer broadcast",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.upstream_transport = upstream_transport

    # CORS: the browser extension calls /health from its own origin
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(health_router)

    @app.get("/")
    async def index():
        """Service name, version and endpoint map."""
        active = app.state.config or get_config()
        return {
            "name": SERVICE_NAME,
            "version": SERVICE_VERSION,
            "endpoints": {
                "health": "/health",
                "health_detailed": "/health/detailed",
                "websocket": f"ws://<host>:{active.ws_port}/ws",
            },
        }

    return app


app = create_app()
