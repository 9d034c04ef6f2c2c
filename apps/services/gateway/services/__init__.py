"""
Gateway Service Modules

External call handlers: one outbound upstream call per dispatched envelope.
"""

from apps.services.gateway.services.base import (
    ExternalCallHandler,
    HandlerStats,
    describe_handlers,
)
from apps.services.gateway.services.workflow_trigger import WorkflowTriggerHandler
from apps.services.gateway.services.capability_provider import CapabilityProviderHandler

__all__ = [
    "ExternalCallHandler",
    "HandlerStats",
    "describe_handlers",
    "WorkflowTriggerHandler",
    "CapabilityProviderHandler",
]
