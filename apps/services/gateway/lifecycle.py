"""
Gateway Lifecycle Manager

Owns the socket listener: binds the accept socket, serves the socket app with
uvicorn, and shuts it down gracefully.

Startup:
    - Bind host:port (BindError if the endpoint cannot be acquired)
    - Serve the socket app on the bound socket until stop()

Shutdown (stop):
    - Stop accepting (new sockets are closed with 1013)
    - Refuse new external calls with a shutdown error
    - Send a shutdown notification to every connection
    - Wait up to drain_timeout for in-flight handler calls, cancel the rest
    - Close remaining connections with 1001, stop uvicorn, release the socket
"""

import asyncio
import contextlib
import logging
import socket
from enum import Enum
from typing import Any, Optional, Tuple

import uvicorn

from apps.services.gateway import codec
from apps.services.gateway.connection_registry import ConnectionRegistry
from apps.services.gateway.dispatcher import Dispatcher
from libs.core.exceptions import BindError

logger = logging.getLogger(__name__)

# Upper bound on uvicorn's own shutdown once every connection is closed
LISTENER_SHUTDOWN_TIMEOUT = 5.0


class LifecycleState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    STOPPED = "stopped"


class _ListenerServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to the owning process."""

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class GatewayLifecycle:
    """Start/stop control for the socket listener."""

    def __init__(self, app: Any, registry: ConnectionRegistry, dispatcher: Dispatcher):
        self.app = app
        self.registry = registry
        self.dispatcher = dispatcher

        self.state = LifecycleState.IDLE
        self.bound_address: Optional[Tuple[str, int]] = None
        self._socket: Optional[socket.socket] = None
        self._server: Optional[_ListenerServer] = None
        self._serve_task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()

    @property
    def is_accepting(self) -> bool:
        """True while the listener accepts new connections (health endpoint)."""
        return self.state == LifecycleState.RUNNING

    @property
    def is_closing(self) -> bool:
        return self.state in (LifecycleState.STOPPING, LifecycleState.STOPPED)

    # =========================================================================
    # Startup
    # =========================================================================

    @staticmethod
    def _bind(host: str, port: int) -> socket.socket:
        family = socket.AF_INET6 if ":" in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            sock.bind((host, port))
        except OSError as e:
            sock.close()
            raise BindError(host, port, e.strerror or str(e)) from e
        sock.set_inheritable(True)
        return sock

    async def start(self, host: str, port: int) -> Tuple[str, int]:
        """
        Bind and start serving.

        Args:
            host: Bind host
            port: Bind port (0 picks a free port)

        Returns:
            The bound (host, port)

        Raises:
            BindError: the listening endpoint could not be acquired
        """
        if self.state in (LifecycleState.STARTING, LifecycleState.RUNNING):
            logger.warning("[Lifecycle] Gateway already running")
            return self.bound_address

        self.state = LifecycleState.STARTING
        try:
            sock = self._bind(host, port)
        except BindError:
            self.state = LifecycleState.IDLE
            raise

        config = uvicorn.Config(
            self.app,
            lifespan="off",
            log_config=None,
            access_log=False,
            timeout_graceful_shutdown=LISTENER_SHUTDOWN_TIMEOUT,
        )
        server = _ListenerServer(config)
        serve_task = asyncio.create_task(server.serve(sockets=[sock]), name="gateway-listener")

        while not server.started:
            if serve_task.done():
                sock.close()
                self.state = LifecycleState.IDLE
                error = None if serve_task.cancelled() else serve_task.exception()
                raise BindError(host, port, str(error) if error else "listener exited during startup")
            await asyncio.sleep(0.01)

        self._socket = sock
        self._server = server
        self._serve_task = serve_task
        self.bound_address = sock.getsockname()[:2]
        self._stopped.clear()
        self.state = LifecycleState.RUNNING
        logger.info(f"[Lifecycle] WebSocket server started on {self.bound_address[0]}:{self.bound_address[1]}")
        return self.bound_address

    # =========================================================================
    # Shutdown
    # =========================================================================

    async def stop(self, drain_timeout: float) -> None:
        """
        Graceful shutdown. No-op before start() and after a completed stop().

        Args:
            drain_timeout: Seconds to wait for in-flight handler calls
        """
        if self.state in (LifecycleState.IDLE, LifecycleState.STOPPED):
            logger.debug(f"[Lifecycle] stop() ignored in state {self.state.value}")
            return
        if self.state == LifecycleState.STOPPING:
            await self._stopped.wait()
            return

        self.state = LifecycleState.STOPPING
        logger.info(f"[Lifecycle] Shutting down (drain timeout: {drain_timeout}s)")
        self.dispatcher.close()
        try:
            notified, failures = await self.registry.send_to_all_except(
                None, codec.shutdown_envelope()
            )
            logger.info(f"[Lifecycle] Shutdown notice sent to {notified} client(s), {len(failures)} failed")

            if not await self.dispatcher.drain(drain_timeout):
                await self.dispatcher.cancel_in_flight()

            await self.registry.close_all(code=1001, reason="Server shutting down")
            await self._stop_listener()
        finally:
            self.state = LifecycleState.STOPPED
            self._stopped.set()
            logger.info("[Lifecycle] WebSocket server stopped")

    async def _stop_listener(self) -> None:
        server, serve_task = self._server, self._serve_task
        if server is not None and serve_task is not None:
            server.should_exit = True
            try:
                await asyncio.wait_for(asyncio.shield(serve_task), timeout=LISTENER_SHUTDOWN_TIMEOUT * 2)
            except asyncio.TimeoutError:
                logger.warning("[Lifecycle] Listener did not stop in time, forcing exit")
                server.force_exit = True
                serve_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await serve_task
            except Exception as e:
                logger.error(f"[Lifecycle] Listener exited with error: {e}")

        if self._socket is not None:
            self._socket.close()
        self._socket = None
        self._server = None
        self._serve_task = None
