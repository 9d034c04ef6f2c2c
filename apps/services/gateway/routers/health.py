"""
Health Check Router

Provides health check endpoints for the Gateway service.

Endpoints:
    GET /health          - API and WebSocket listener status
    GET /healthz         - Alias for /health
    GET /health/detailed - Listener state, connections, handler stats
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict

from fastapi import APIRouter, Request

from apps.services.gateway.dependencies import find_gateway

router = APIRouter(tags=["health"])


def _uptime(request: Request) -> float:
    started_at = getattr(request.app.state, "started_at", None)
    return round(time.time() - started_at, 3) if started_at else 0.0


@router.get("/health")
async def health(request: Request) -> Dict[str, Any]:
    """
    Health check endpoint.

    Returns:
        Health status dict; ``services.websocket`` reports whether the
        socket listener is accepting connections
    """
    gateway = find_gateway(request)
    accepting = gateway is not None and gateway.lifecycle.is_accepting
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "uptime": _uptime(request),
        "services": {
            "api": "running",
            "websocket": "running" if accepting else "stopped",
        },
        "connections": gateway.registry.count() if gateway else 0,
    }


@router.get("/healthz")
async def healthz(request: Request) -> Dict[str, Any]:
    """Kubernetes-style alias for /health."""
    return await health(request)


@router.get("/health/detailed")
async def health_detailed(request: Request) -> Dict[str, Any]:
    """
    Detailed health check with listener and handler status.

    Returns:
        ``degraded`` when the socket listener is not accepting connections
    """
    gateway = find_gateway(request)
    if gateway is None:
        return {"status": "degraded", "uptime": _uptime(request), "gateway": None}

    status = gateway.status()
    return {
        "status": "healthy" if status["accepting"] else "degraded",
        "uptime": _uptime(request),
        "gateway": status,
    }
