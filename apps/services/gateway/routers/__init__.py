"""
Gateway Router Modules

Router Organization:
    - health: Health check endpoints (HTTP app)
    - websockets: Realtime gateway endpoint (socket listener app)
"""

from apps.services.gateway.routers.health import router as health_router
from apps.services.gateway.routers.websockets import router as websockets_router

__all__ = [
    "health_router",
    "websockets_router",
]
