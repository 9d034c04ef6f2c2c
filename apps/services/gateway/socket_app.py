"""
Socket Listener Application

The ASGI app served on WS_PORT by GatewayLifecycle. It carries only the
WebSocket endpoint; ``app.state.gateway`` is attached by build_gateway().
"""

from fastapi import FastAPI

from apps.services.gateway.config import SERVICE_NAME, SERVICE_VERSION
from apps.services.gateway.routers.websockets import router as websockets_router


def create_socket_app() -> FastAPI:
    app = FastAPI(
        title=f"{SERVICE_NAME} (socket listener)",
        version=SERVICE_VERSION,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )
    app.include_router(websockets_router)
    return app
