# conftest.py
# Ensure the repository root is on sys.path so pytest can import the
# package-style modules (apps.services.gateway, libs.core) without an install,
# and share the fakes used across the gateway tests.

import asyncio
import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

# conftest is at: tests/conftest.py
ROOT = Path(__file__).resolve().parents[1]
ROOT_STR = str(ROOT)

if ROOT_STR not in sys.path:
    sys.path.insert(0, ROOT_STR)

from apps.services.gateway.config import GatewayConfig  # noqa: E402
from apps.services.gateway.connection_registry import ConnectionRegistry  # noqa: E402


class FakeWebSocket:
    """Stands in for a Starlette WebSocket: records frames, can be closed.

    ``stall=True`` makes writes and closes block forever, like a peer that
    stopped reading.
    """

    def __init__(self, fail: bool = False, stall: bool = False):
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.close_code: Optional[int] = None
        self.fail = fail
        self.stall = stall

    async def send_text(self, text: str) -> None:
        if self.stall:
            await asyncio.Event().wait()
        if self.closed or self.fail:
            raise RuntimeError("websocket is closed")
        self.sent.append(json.loads(text))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        if self.stall:
            await asyncio.Event().wait()
        self.closed = True
        self.close_code = code

    def kinds(self) -> List[str]:
        return [m["kind"] for m in self.sent]


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def gateway_config():
    """Config pointing at fake upstreams, no log file, ephemeral socket port."""
    return GatewayConfig(
        host="127.0.0.1",
        port=0,
        ws_port=0,
        n8n_webhook_url="http://n8n.test",
        capability_provider_url="http://provider.test",
        upstream_timeout=2.0,
        drain_timeout=2.0,
        log_level="DEBUG",
        log_to_file=False,
    )
