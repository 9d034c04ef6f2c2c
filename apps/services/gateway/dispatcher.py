"""
gateway/dispatcher.py

Routes decoded envelopes to their handlers and delivers each outcome back to
the originating connection.

Routing table (fixed at construction, read-only afterwards):
    ping              -> pong reply, inline
    workflow_trigger  -> WorkflowTriggerHandler, background task
    capability_call   -> CapabilityProviderHandler, background task
    broadcast         -> Broadcaster.fan_out, inline
    anything else     -> {"kind": "error", "code": "UnknownKind"} to the sender

External calls run as tracked tasks so a connection keeps receiving while its
calls are in flight. Replies from concurrent calls may be written in any order.
Once the gateway is closing, external kinds are answered with
``<kind>_error`` ("Gateway shutting down") and no call is started.
"""
from __future__ import annotations

import asyncio
import logging
from functools import partial
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Set

from apps.services.gateway import codec
from apps.services.gateway.broadcast import Broadcaster
from apps.services.gateway.codec import Envelope, MessageKind
from apps.services.gateway.connection_registry import ConnectionRegistry
from apps.services.gateway.services.base import ExternalCallHandler
from libs.core.exceptions import GatewayError, SendFailed, UnknownKind

logger = logging.getLogger(__name__)

Route = Callable[[str, Envelope], Awaitable[None]]

SHUTTING_DOWN_ERROR = "Gateway shutting down"


class Dispatcher:
    """Maps each MessageKind to a route and reports results to the sender."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        broadcaster: Broadcaster,
        workflow_handler: ExternalCallHandler,
        capability_handler: ExternalCallHandler,
    ):
        self.registry = registry
        self.broadcaster = broadcaster
        self.handlers: Mapping[str, ExternalCallHandler] = MappingProxyType({
            MessageKind.WORKFLOW_TRIGGER.value: workflow_handler,
            MessageKind.CAPABILITY_CALL.value: capability_handler,
        })

        routes: Dict[MessageKind, Route] = {
            MessageKind.PING: self._dispatch_ping,
            MessageKind.WORKFLOW_TRIGGER: partial(self._dispatch_external, workflow_handler),
            MessageKind.CAPABILITY_CALL: partial(self._dispatch_external, capability_handler),
            MessageKind.BROADCAST: self._dispatch_broadcast,
        }
        missing = [kind.value for kind in MessageKind if kind not in routes]
        if missing:
            raise ValueError(f"No route registered for kind(s): {', '.join(missing)}")
        self.routes: Mapping[MessageKind, Route] = MappingProxyType(routes)

        self._in_flight: Set[asyncio.Task] = set()
        self.closing = False
        self.dispatched = 0
        self.unknown_kinds = 0

    # =========================================================================
    # Entry points
    # =========================================================================

    async def handle(self, identity: str, envelope: Envelope) -> None:
        """
        Dispatch one envelope received on ``identity``.

        Returns once the envelope is routed; external call results arrive
        later on the same connection.
        """
        route = self._route_for(envelope.kind)
        if route is None:
            self.unknown_kinds += 1
            logger.info(f"[Dispatcher] Unknown kind '{envelope.kind}' from {identity}")
            await self.report_error(identity, UnknownKind(envelope.kind), envelope)
            return

        self.dispatched += 1
        logger.debug(f"[Dispatcher] {envelope.kind} from {identity}")
        await route(identity, envelope)

    async def report_error(
        self, identity: str, error: GatewayError, envelope: Optional[Envelope] = None
    ) -> None:
        """Send a connection-level error envelope (MalformedMessage, UnknownKind)."""
        await self._reply(identity, codec.gateway_error_envelope(error, envelope))

    def _route_for(self, kind: str) -> Optional[Route]:
        try:
            return self.routes.get(MessageKind(kind))
        except ValueError:
            return None

    # =========================================================================
    # Routes
    # =========================================================================

    async def _dispatch_ping(self, identity: str, envelope: Envelope) -> None:
        await self._reply(identity, codec.pong_envelope(envelope))

    async def _dispatch_broadcast(self, identity: str, envelope: Envelope) -> None:
        await self.broadcaster.fan_out(identity, envelope.payload, envelope.from_)

    async def _dispatch_external(
        self, handler: ExternalCallHandler, identity: str, envelope: Envelope
    ) -> None:
        if self.closing:
            logger.info(f"[Dispatcher] Refused {envelope.kind} from {identity}: shutting down")
            await self._reply(identity, codec.error_envelope(envelope, SHUTTING_DOWN_ERROR))
            return
        task = asyncio.create_task(
            self._run_external(handler, identity, envelope),
            name=f"{envelope.kind}:{identity}",
        )
        self._in_flight.add(task)
        task.add_done_callback(self._on_task_done)

    async def _run_external(
        self, handler: ExternalCallHandler, identity: str, envelope: Envelope
    ) -> None:
        try:
            result = await handler.invoke(envelope)
        except GatewayError as e:
            logger.warning(f"[Dispatcher] {envelope.kind} for {identity} failed: {e.message}")
            reply = codec.error_envelope(envelope, e.message)
        except Exception as e:
            logger.exception(f"[Dispatcher] {envelope.kind} for {identity} raised")
            reply = codec.error_envelope(envelope, str(e) or type(e).__name__)
        else:
            reply = codec.result_envelope(envelope, result)
        await self._reply(identity, reply)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._in_flight.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("[Dispatcher] Unhandled exception in handler task", exc_info=exc)

    async def _reply(self, identity: str, message: Dict[str, Any]) -> None:
        # The sender may have gone away; the result is dropped
        try:
            await self.registry.send(identity, message)
        except SendFailed as e:
            logger.warning(f"[Dispatcher] Dropped {message.get('kind')}: {e.message}")

    # =========================================================================
    # Drain (shutdown)
    # =========================================================================

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def close(self) -> None:
        """Stop starting external calls; later ones get a shutdown error."""
        self.closing = True

    async def drain(self, timeout: float) -> bool:
        """
        Wait up to ``timeout`` seconds for the handler tasks in flight now.

        Returns:
            True if every one of them finished
        """
        pending = {t for t in self._in_flight if not t.done()}
        if pending:
            _, pending = await asyncio.wait(pending, timeout=timeout)
        if pending:
            logger.warning(f"[Dispatcher] Drain timed out with {len(pending)} call(s) in flight")
            return False
        return True

    async def cancel_in_flight(self) -> int:
        """Cancel whatever is still running after a drain timeout."""
        tasks = list(self._in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
            logger.info(f"[Dispatcher] Cancelled {len(tasks)} in-flight call(s)")
        return len(tasks)
