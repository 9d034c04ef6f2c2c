"""
WebSocket Endpoints Router

Handles the gateway's realtime connections:
- Registers each accepted socket and sends the welcome envelope
- Decodes inbound frames in receipt order and hands them to the dispatcher
- Unregisters the socket when the peer goes away
"""

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from apps.services.gateway import codec
from apps.services.gateway.config import SERVICE_NAME
from apps.services.gateway.dependencies import find_gateway
from libs.core.exceptions import MalformedMessage, SendFailed

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websockets"])

WELCOME_MESSAGE = f"Connected to {SERVICE_NAME}"

# 1013 "Try Again Later": listener is shutting down
CLOSE_TRY_AGAIN_LATER = 1013


@router.websocket("/")
@router.websocket("/ws")
async def gateway_websocket(websocket: WebSocket):
    """
    Realtime gateway endpoint.

    One coroutine per connection; external calls started from here run as
    separate tasks, so this loop keeps receiving while they are in flight.
    """
    gateway = find_gateway(websocket)
    if gateway is None or gateway.lifecycle.is_closing:
        await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
        return

    await websocket.accept()

    client = websocket.client
    remote_address = f"{client.host}:{client.port}" if client else "unknown"
    registry = gateway.registry
    dispatcher = gateway.dispatcher

    connection = await registry.register(websocket, remote_address)
    identity = connection.identity
    try:
        await registry.send(identity, codec.welcome_envelope(identity, WELCOME_MESSAGE))

        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                break

            data = frame.get("text")
            if data is None:
                data = frame.get("bytes")

            try:
                envelope = codec.decode(data)
            except MalformedMessage as e:
                logger.warning(f"[SocketWS] Malformed message from {identity}: {e.message}")
                await dispatcher.report_error(identity, e)
                continue

            await dispatcher.handle(identity, envelope)
    except WebSocketDisconnect:
        pass
    except SendFailed as e:
        logger.info(f"[SocketWS] {identity} went away: {e.reason}")
    except Exception as e:
        if gateway.lifecycle.is_closing:
            logger.debug(f"[SocketWS] {identity} closed during shutdown: {e}")
        else:
            logger.error(f"[SocketWS] Error on {identity}: {e}", exc_info=True)
    finally:
        await registry.unregister(identity)
