"""
Gateway Dependencies Module

Builds the gateway object graph once at startup and exposes it to routes
through FastAPI dependencies. Nothing here is a module-level singleton: the
graph lives on ``app.state.gateway`` of the apps that serve it, and handlers
never reach the registry directly.

Wiring order:
    ConnectionRegistry -> httpx.AsyncClient -> handlers -> Broadcaster
    -> Dispatcher -> socket app -> GatewayLifecycle
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx
from fastapi import HTTPException
from starlette.requests import HTTPConnection

from apps.services.gateway.broadcast import Broadcaster
from apps.services.gateway.config import GatewayConfig, get_config
from apps.services.gateway.connection_registry import ConnectionRegistry
from apps.services.gateway.dispatcher import Dispatcher
from apps.services.gateway.lifecycle import GatewayLifecycle
from apps.services.gateway.services import (
    CapabilityProviderHandler,
    WorkflowTriggerHandler,
    describe_handlers,
)

logger = logging.getLogger("uvicorn.error")


@dataclass
class Gateway:
    """Everything the socket listener needs, built once per process."""

    config: GatewayConfig
    registry: ConnectionRegistry
    broadcaster: Broadcaster
    dispatcher: Dispatcher
    http_client: httpx.AsyncClient
    lifecycle: GatewayLifecycle

    def status(self) -> Dict[str, Any]:
        """Detailed runtime status for /health/detailed."""
        host_port = self.lifecycle.bound_address
        return {
            "state": self.lifecycle.state.value,
            "accepting": self.lifecycle.is_accepting,
            "bound_address": f"{host_port[0]}:{host_port[1]}" if host_port else None,
            "connections": self.registry.count(),
            "clients": self.registry.describe(),
            "in_flight": self.dispatcher.in_flight,
            "dispatched": self.dispatcher.dispatched,
            "unknown_kinds": self.dispatcher.unknown_kinds,
            "send_failures": self.registry.send_failures,
            "broadcast": {
                "delivered": self.broadcaster.total_delivered,
                "failed": self.broadcaster.total_failed,
            },
            "handlers": describe_handlers(dict(self.dispatcher.handlers)),
        }

    async def aclose(self) -> None:
        await self.http_client.aclose()


def build_gateway(
    config: Optional[GatewayConfig] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Gateway:
    """
    Construct the gateway object graph.

    Args:
        config: Settings (defaults to the cached environment config)
        transport: Optional httpx transport for upstream calls (tests use
            ``httpx.MockTransport``)
    """
    from apps.services.gateway.socket_app import create_socket_app

    config = config or get_config()

    registry = ConnectionRegistry()
    http_client = httpx.AsyncClient(
        timeout=config.upstream_timeout,
        headers={"Content-Type": "application/json"},
        transport=transport,
    )
    workflow_handler = WorkflowTriggerHandler(
        http_client, config.n8n_webhook_url, config.upstream_timeout
    )
    capability_handler = CapabilityProviderHandler(
        http_client, config.capability_provider_url, config.upstream_timeout
    )
    broadcaster = Broadcaster(registry)
    dispatcher = Dispatcher(registry, broadcaster, workflow_handler, capability_handler)

    socket_app = create_socket_app()
    lifecycle = GatewayLifecycle(socket_app, registry, dispatcher)
    gateway = Gateway(
        config=config,
        registry=registry,
        broadcaster=broadcaster,
        dispatcher=dispatcher,
        http_client=http_client,
        lifecycle=lifecycle,
    )
    socket_app.state.gateway = gateway

    logger.info(
        f"[Dependencies] Gateway built (workflows: {config.n8n_webhook_url}, "
        f"capabilities: {config.capability_provider_url}, timeout: {config.upstream_timeout}s)"
    )
    return gateway


# =============================================================================
# FastAPI dependencies
# =============================================================================


def find_gateway(connection: HTTPConnection) -> Optional[Gateway]:
    """Gateway attached to the serving app, if the lifespan has built one."""
    return getattr(connection.app.state, "gateway", None)


def get_gateway(connection: HTTPConnection) -> Gateway:
    """Dependency: the running gateway, or 503 when it was never built."""
    gateway = find_gateway(connection)
    if gateway is None:
        raise HTTPException(status_code=503, detail="Gateway not initialized")
    return gateway
