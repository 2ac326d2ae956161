"""Publish/subscribe transports for the jobs service."""
from device_agent.transport.interface import TransportConnection, TransportError

__all__ = ["TransportConnection", "TransportError"]
