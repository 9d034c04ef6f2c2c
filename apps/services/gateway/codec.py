"""
gateway/codec.py

Wire codec for the socket listener: decodes inbound text frames into
Envelope models and renders outbound envelopes as JSON text.

Inbound:
    { "kind": str, "payload": any, "from": str?, "correlationId": str?,
      "workflow" | "service" | "method" | "params": kind-specific }

Outbound envelopes are plain dicts built by the helpers below.
"""
from __future__ import annotations

import json
import time
from enum import Enum
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictStr, ValidationError

from libs.core.exceptions import GatewayError, MalformedMessage


class MessageKind(str, Enum):
    """Closed set of inbound kinds the dispatcher routes."""

    PING = "ping"
    WORKFLOW_TRIGGER = "workflow_trigger"
    CAPABILITY_CALL = "capability_call"
    BROADCAST = "broadcast"


class Envelope(BaseModel):
    """Decoded inbound message."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    kind: StrictStr
    payload: Any = None
    from_: Optional[str] = Field(default=None, alias="from")
    correlation_id: Optional[StrictStr] = Field(default=None, alias="correlationId")

    # Kind-specific fields
    workflow: Any = None
    service: Any = None
    method: Any = None
    params: Any = None


def now_ms() -> int:
    """Epoch milliseconds, the timestamp unit used on the wire."""
    return int(time.time() * 1000)


# =============================================================================
# Decode / Encode
# =============================================================================


def decode(frame: Union[str, bytes, bytearray]) -> Envelope:
    """
    Decode one inbound frame.

    Unknown kinds are NOT rejected here; the dispatcher reports them.

    Raises:
        MalformedMessage: frame is not UTF-8 JSON, not an object, or has no
            string ``kind``
    """
    if isinstance(frame, (bytes, bytearray)):
        try:
            frame = frame.decode("utf-8")
        except UnicodeDecodeError as e:
            raise MalformedMessage(f"Invalid message format: {e}") from e

    try:
        data = json.loads(frame)
    except (TypeError, ValueError) as e:
        raise MalformedMessage(f"Invalid message format: {e}") from e

    if not isinstance(data, dict):
        raise MalformedMessage(
            "Invalid message format: expected a JSON object",
            context={"received": type(data).__name__},
        )
    if "kind" not in data:
        raise MalformedMessage("Invalid message format: missing 'kind'")

    try:
        return Envelope.model_validate(data)
    except ValidationError as e:
        fields = ", ".join(".".join(str(p) for p in err["loc"]) for err in e.errors())
        raise MalformedMessage(f"Invalid message format: bad field(s) {fields}") from e


def encode(message: Dict[str, Any]) -> str:
    """
    Render an outbound envelope as JSON text.

    Total: values JSON cannot represent are rendered with str().
    """
    return json.dumps(message, default=str, ensure_ascii=False)


# =============================================================================
# Outbound envelope builders
# =============================================================================


def _correlate(message: Dict[str, Any], envelope: Optional[Envelope]) -> Dict[str, Any]:
    if envelope is not None and envelope.correlation_id is not None:
        message["correlationId"] = envelope.correlation_id
    return message


def result_envelope(envelope: Envelope, result: Any) -> Dict[str, Any]:
    return _correlate({"kind": f"{envelope.kind}_result", "result": result}, envelope)


def error_envelope(envelope: Envelope, error: str) -> Dict[str, Any]:
    return _correlate({"kind": f"{envelope.kind}_error", "error": error}, envelope)


def gateway_error_envelope(
    error: GatewayError, envelope: Optional[Envelope] = None
) -> Dict[str, Any]:
    """Connection-level error (MalformedMessage, UnknownKind)."""
    return _correlate({"kind": "error", "code": error.code, "error": error.message}, envelope)


def pong_envelope(envelope: Optional[Envelope] = None) -> Dict[str, Any]:
    return _correlate({"kind": "pong", "timestamp": now_ms()}, envelope)


def welcome_envelope(identity: str, message: str) -> Dict[str, Any]:
    return {
        "kind": "connected",
        "clientId": identity,
        "message": message,
        "timestamp": now_ms(),
    }


def shutdown_envelope(message: str = "Gateway shutting down") -> Dict[str, Any]:
    return {"kind": "shutdown", "message": message, "timestamp": now_ms()}


def broadcast_envelope(payload: Any, from_label: str) -> Dict[str, Any]:
    return {"kind": MessageKind.BROADCAST.value, "payload": payload, "from": from_label}
