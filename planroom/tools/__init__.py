"""Capabilities assistants can call during a turn."""

from planroom.tools.external import CapabilityBackends, build_assistant_capabilities
from planroom.tools.registry import CapabilityCall, CapabilityRegistry, CapabilitySpec

__all__ = [
    "CapabilityBackends",
    "CapabilityCall",
    "CapabilityRegistry",
    "CapabilitySpec",
    "build_assistant_capabilities",
]
