"""
Workflow Trigger Handler

Handles ``workflow_trigger`` envelopes by POSTing the opaque payload to the
workflow engine's webhook for the referenced workflow:

    POST {N8N_WEBHOOK_URL}/webhook/{workflow}

The engine's response body is returned verbatim as the result.
"""

import logging
from typing import Any
from urllib.parse import quote

from apps.services.gateway.codec import Envelope
from apps.services.gateway.services.base import ExternalCallHandler

logger = logging.getLogger(__name__)


class WorkflowTriggerHandler(ExternalCallHandler):
    name = "Workflow"

    async def invoke(self, envelope: Envelope) -> Any:
        workflow = self._require_str(envelope, "workflow")
        body = envelope.payload if envelope.payload is not None else {}
        url = f"{self.base_url}/webhook/{quote(workflow, safe='')}"

        logger.info(f"[Workflow] Triggering {workflow}")
        result = await self._post(url, body)
        logger.debug(f"[Workflow] {workflow} completed")
        return result
