"""Custom exceptions for the integration gateway."""

from typing import Any, Optional


class GatewayError(Exception):
    """Base exception for the integration gateway."""

    def __init__(self, message: str, context: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context = context or {}

    @property
    def code(self) -> str:
        """Error code reported on the wire."""
        return type(self).__name__


class MalformedMessage(GatewayError):
    """Inbound frame could not be decoded into an envelope."""

    pass


class UnknownKind(GatewayError):
    """Envelope decoded but its kind has no registered handler."""

    def __init__(self, kind: Any, context: Optional[dict[str, Any]] = None):
        super().__init__(f"Unknown message type: {kind}", context)
        self.kind = kind


class InvalidPayload(GatewayError):
    """A handler's required envelope field is missing or has the wrong type."""

    def __init__(
        self,
        kind: str,
        message: str,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.kind = kind


class UpstreamError(GatewayError):
    """
    External call failed or timed out.

    Never retried by the gateway: workflow triggers are not idempotent.
    """

    def __init__(
        self,
        detail: str,
        upstream: str = "",
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(detail, context)
        self.detail = detail
        self.upstream = upstream


class SendFailed(GatewayError):
    """Write to a connection failed (gone, closed, or transport error)."""

    def __init__(
        self,
        identity: str,
        reason: str,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(f"Send to {identity} failed: {reason}", context)
        self.identity = identity
        self.reason = reason


class BindError(GatewayError):
    """Startup could not acquire the listening endpoint. Fatal."""

    def __init__(
        self,
        host: str,
        port: int,
        reason: str,
        context: Optional[dict[str, Any]] = None,
    ):
        super().__init__(f"Cannot bind {host}:{port}: {reason}", context)
        self.host = host
        self.port = port
        self.reason = reason
