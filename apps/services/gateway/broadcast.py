"""
gateway/broadcast.py

Best-effort fan-out of a ``broadcast`` envelope to every connection except
the sender. Failed deliveries are logged and counted, never reported back to
the sender.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, List

from apps.services.gateway import codec
from apps.services.gateway.connection_registry import ConnectionRegistry

logger = logging.getLogger(__name__)

DEFAULT_FROM_LABEL = "anonymous"

# A peer whose write is still blocked after this is counted as failed
BROADCAST_SEND_TIMEOUT = 5.0


@dataclass
class FanOutReport:
    delivered: int = 0
    failed: List[str] = field(default_factory=list)


class Broadcaster:
    """Delivers peer broadcasts through the connection registry."""

    def __init__(self, registry: ConnectionRegistry, send_timeout: float = BROADCAST_SEND_TIMEOUT):
        self.registry = registry
        self.send_timeout = send_timeout
        self.total_delivered = 0
        self.total_failed = 0

    async def fan_out(self, sender_identity: str, payload: Any, from_label: str = None) -> FanOutReport:
        """
        Send ``payload`` to all connections except ``sender_identity``.

        Targets are the registry snapshot at the moment fan-out begins.
        Peers are written concurrently, so one slow reader holds the sender
        back by at most ``send_timeout``.
        """
        message = codec.broadcast_envelope(payload, from_label or DEFAULT_FROM_LABEL)
        delivered, failures = await self.registry.send_to_all_except(
            sender_identity, message, timeout=self.send_timeout
        )

        report = FanOutReport(delivered=delivered, failed=[identity for identity, _ in failures])
        self.total_delivered += delivered
        self.total_failed += len(failures)

        for identity, error in failures:
            logger.warning(f"[Broadcast] Failed to send to {identity}: {error}")
        logger.info(
            f"[Broadcast] From {sender_identity} ({message['from']}): "
            f"{delivered} delivered, {len(failures)} failed"
        )
        return report
