"""Introspection protocol boundary."""

from .client import ProtocolClient, VmServiceClient, call_with_timeout

__all__ = ["ProtocolClient", "VmServiceClient", "call_with_timeout"]
