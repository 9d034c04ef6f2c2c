"""
External Call Handler Base

Shared plumbing for handlers that make one outbound HTTP call per message:
bounded timeout, provider error mapping, and per-handler statistics.

A handler never retries. Workflow triggers are not idempotent, so any retry
policy belongs to the client that sent the envelope.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

import httpx

from apps.services.gateway.codec import Envelope
from libs.core.exceptions import InvalidPayload, UpstreamError

logger = logging.getLogger(__name__)


@dataclass
class HandlerStats:
    """Call counters for one handler (reported by /health/detailed)."""

    calls: int = 0
    successes: int = 0
    failures: int = 0
    timeouts: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)


class ExternalCallHandler(ABC):
    """
    Base class for handlers that forward an envelope to an upstream endpoint.

    Subclasses implement ``invoke(envelope)`` and use ``_post`` for the
    single outbound call.
    """

    name = "external"

    def __init__(self, client: httpx.AsyncClient, base_url: str, timeout: float):
        """
        Args:
            client: Shared HTTP client (owned by the gateway, closed at shutdown)
            base_url: Upstream base URL without trailing slash
            timeout: Total bound for one call in seconds
        """
        self.client = client
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.stats = HandlerStats()

    @abstractmethod
    async def invoke(self, envelope: Envelope) -> Any:
        """Perform the call for one envelope and return its result."""
        pass

    @staticmethod
    def _require_str(envelope: Envelope, field_name: str) -> str:
        value = getattr(envelope, field_name)
        if not isinstance(value, str) or not value.strip():
            raise InvalidPayload(
                envelope.kind,
                f"'{field_name}' is required and must be a non-empty string",
            )
        return value.strip()

    async def _post(self, url: str, body: Any) -> Any:
        """
        POST ``body`` as JSON and return the decoded response.

        Raises:
            UpstreamError: timeout, transport failure, or non-2xx status
        """
        self.stats.calls += 1
        try:
            # httpx timeouts are per phase; wait_for bounds the whole call
            resp = await asyncio.wait_for(
                self.client.post(url, json=body, timeout=self.timeout),
                timeout=self.timeout,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            self.stats.timeouts += 1
            self.stats.failures += 1
            logger.warning(f"[{self.name}] TIMEOUT: {self.timeout}s exceeded for {url}")
            raise UpstreamError(f"Timeout after {self.timeout}s", upstream=url)
        except httpx.RequestError as e:
            self.stats.failures += 1
            detail = str(e) or type(e).__name__
            logger.warning(f"[{self.name}] Request error for {url}: {detail}")
            raise UpstreamError(f"Request error: {detail}", upstream=url) from e

        if not resp.is_success:
            self.stats.failures += 1
            error_msg = f"HTTP {resp.status_code}: {resp.text[:200]}"
            logger.warning(f"[{self.name}] {url} returned {error_msg}")
            raise UpstreamError(error_msg, upstream=url, context={"status_code": resp.status_code})

        self.stats.successes += 1
        return self._decode_body(resp)

    @staticmethod
    def _decode_body(resp: httpx.Response) -> Any:
        if not resp.content:
            return None
        try:
            return resp.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            return {"text": resp.text}


def describe_handlers(handlers: Dict[str, Optional[ExternalCallHandler]]) -> Dict[str, Any]:
    """Per-handler stats keyed by kind."""
    return {
        kind: {"upstream": h.base_url, "timeout": h.timeout, **h.stats.as_dict()}
        for kind, h in handlers.items()
        if h is not None
    }
