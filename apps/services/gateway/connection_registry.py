"""
gateway/connection_registry.py

Registry of live socket connections.

The registry is the single point of truth for which connections exist:
- Assigns each accepted socket an opaque identity
- Serializes register/unregister under one lock
- Hands out snapshots for fan-out so iteration never sees a half-removed entry
- Performs every write to a connection (send) and reports failures as SendFailed
"""
from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from apps.services.gateway import codec
from libs.core.exceptions import SendFailed

logger = logging.getLogger(__name__)

# Bound on one close handshake during shutdown
CLOSE_TIMEOUT = 2.0


@dataclass(eq=False)
class Connection:
    """One accepted socket. Created and destroyed by the registry only."""

    identity: str
    remote_address: str
    websocket: Any
    connected_at: float = field(default_factory=time.time)
    alive: bool = True
    # Serializes frames written by concurrent handler tasks
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)


class ConnectionRegistry:
    """
    Tracks every live connection for the socket listener.

    Responsibilities:
    - Register/unregister connections (linearizable under ``lock``)
    - Send encoded envelopes to one connection
    - Iterate a consistent snapshot of connections for fan-out
    - Close every connection on shutdown
    """

    def __init__(self):
        self.connections: Dict[str, Connection] = {}
        self.lock = asyncio.Lock()
        self.send_failures = 0

    @staticmethod
    def _new_identity() -> str:
        # uuid4 gives process-lifetime uniqueness without a counter
        return f"client_{uuid.uuid4().hex}"

    async def register(self, websocket: Any, remote_address: str = "unknown") -> Connection:
        """
        Add an accepted websocket to the registry.

        Args:
            websocket: Accepted websocket (anything with ``send_text``/``close``)
            remote_address: "host:port" of the peer

        Returns:
            The new Connection; its ``identity`` addresses it from now on
        """
        async with self.lock:
            identity = self._new_identity()
            while identity in self.connections:
                identity = self._new_identity()
            connection = Connection(
                identity=identity,
                remote_address=remote_address,
                websocket=websocket,
            )
            self.connections[identity] = connection
            total = len(self.connections)

        logger.info(f"[Registry] Client connected: {identity} from {remote_address} (total: {total})")
        return connection

    async def unregister(self, identity: str) -> Optional[Connection]:
        """Remove a connection. Unknown identities are ignored."""
        async with self.lock:
            connection = self.connections.pop(identity, None)
            if connection is not None:
                connection.alive = False
            total = len(self.connections)

        if connection is not None:
            logger.info(f"[Registry] Client disconnected: {identity} (total: {total})")
        return connection

    async def lookup(self, identity: str) -> Optional[Connection]:
        async with self.lock:
            return self.connections.get(identity)

    async def snapshot(self) -> List[Connection]:
        """Live connections at this instant."""
        async with self.lock:
            return [c for c in self.connections.values() if c.alive]

    def count(self) -> int:
        return len(self.connections)

    def identities(self) -> List[str]:
        return list(self.connections.keys())

    def describe(self) -> List[Dict[str, Any]]:
        """Connection summary for the health endpoint."""
        now = time.time()
        return [
            {
                "id": c.identity,
                "remote_address": c.remote_address,
                "connected_seconds": round(now - c.connected_at, 1),
            }
            for c in list(self.connections.values())
        ]

    # =========================================================================
    # Writes
    # =========================================================================

    async def send(self, identity: str, message: Dict[str, Any]) -> None:
        """
        Encode and write one envelope to a connection.

        Raises:
            SendFailed: connection unknown, no longer alive, or the write failed
        """
        connection = await self.lookup(identity)
        if connection is None or not connection.alive:
            self.send_failures += 1
            raise SendFailed(identity, "connection is gone")
        await self._write(connection, message)

    async def _write(self, connection: Connection, message: Dict[str, Any]) -> None:
        text = codec.encode(message)
        try:
            async with connection.write_lock:
                if not connection.alive:
                    raise SendFailed(connection.identity, "connection closed")
                await connection.websocket.send_text(text)
        except SendFailed:
            self.send_failures += 1
            raise
        except Exception as e:
            self.send_failures += 1
            raise SendFailed(connection.identity, str(e) or type(e).__name__) from e

    async def for_each_except(
        self,
        identity: Optional[str],
        fn: Callable[[Connection], Awaitable[None]],
    ) -> Tuple[int, List[Tuple[str, Exception]]]:
        """
        Apply ``fn`` to every live connection except ``identity``.

        Runs concurrently over a snapshot taken on entry. Failures do not stop
        the other calls.

        Returns:
            (succeeded, [(identity, error), ...])
        """
        targets = [c for c in await self.snapshot() if c.identity != identity]
        outcomes = await asyncio.gather(*(fn(c) for c in targets), return_exceptions=True)

        succeeded = 0
        failures: List[Tuple[str, Exception]] = []
        for connection, outcome in zip(targets, outcomes):
            if isinstance(outcome, Exception):
                failures.append((connection.identity, outcome))
            else:
                succeeded += 1
        return succeeded, failures

    async def send_to_all_except(
        self,
        identity: Optional[str],
        message: Dict[str, Any],
        timeout: Optional[float] = None,
    ) -> Tuple[int, List[Tuple[str, Exception]]]:
        """
        Write the same envelope to every connection except ``identity``.

        With ``timeout``, a write still blocked after that many seconds is
        abandoned and reported as SendFailed.
        """

        async def _deliver(connection: Connection) -> None:
            try:
                await asyncio.wait_for(self._write(connection, message), timeout=timeout)
            except asyncio.TimeoutError:
                self.send_failures += 1
                raise SendFailed(connection.identity, f"write timed out after {timeout}s")

        return await self.for_each_except(identity, _deliver)

    async def close_all(
        self,
        code: int = 1001,
        reason: str = "Server shutting down",
        timeout: float = CLOSE_TIMEOUT,
    ) -> int:
        """
        Close and unregister every connection.

        Closes run concurrently; each one is bounded by ``timeout``.

        Returns:
            Number of connections closed
        """
        async with self.lock:
            connections = list(self.connections.values())
            for connection in connections:
                connection.alive = False
            self.connections.clear()

        async def _close(connection: Connection) -> None:
            try:
                await asyncio.wait_for(connection.websocket.close(code=code, reason=reason), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(f"[Registry] Close timed out for {connection.identity}")
            except Exception as e:
                logger.debug(f"[Registry] Close failed for {connection.identity}: {e}")

        await asyncio.gather(*(_close(c) for c in connections))

        if connections:
            logger.info(f"[Registry] Closed {len(connections)} connection(s): {reason}")
        return len(connections)
