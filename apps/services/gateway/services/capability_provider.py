"""
Capability Provider Handler

Handles ``capability_call`` envelopes: forwards ``params`` verbatim to the
provider endpoint for ``service``/``method`` and wraps the provider's reply:

    POST {CAPABILITY_PROVIDER_URL}/{service}/{method}

    -> {"service": ..., "method": ..., "status": "processed",
        "timestamp": <ms>, "data": <provider body>}
"""

import logging
from typing import Any, Dict
from urllib.parse import quote

from apps.services.gateway.codec import Envelope, now_ms
from apps.services.gateway.services.base import ExternalCallHandler

logger = logging.getLogger(__name__)


class CapabilityProviderHandler(ExternalCallHandler):
    name = "Capability"

    async def invoke(self, envelope: Envelope) -> Dict[str, Any]:
        service = self._require_str(envelope, "service")
        method = self._require_str(envelope, "method")
        params = envelope.params if envelope.params is not None else {}
        url = f"{self.base_url}/{quote(service, safe='')}/{quote(method, safe='')}"

        logger.info(f"[Capability] {service}.{method}")
        data = await self._post(url, params)
        return {
            "service": service,
            "method": method,
            "status": "processed",
            "timestamp": now_ms(),
            "data": data,
        }
