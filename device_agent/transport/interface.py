"""
Defines the interface for the publish/subscribe session to the jobs service.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

# on_message(topic, raw_payload)
MessageCallback = Callable[[str, bytes], None]
# on_connection_change(connected, error)
ConnectionListener = Callable[[bool, Optional[str]], None]


class TransportError(Exception):
    """Raised (or set on an ack future) when a transport operation fails."""


class TransportConnection(ABC):
    """Abstract interface for the jobs transport session."""

    def __init__(self) -> None:
        self.on_connection_change: Optional[ConnectionListener] = None

    def _notify_connection(self, connected: bool, error: Optional[str] = None) -> None:
        if self.on_connection_change is not None:
            self.on_connection_change(connected, error)

    @abstractmethod
    async def connect(self) -> bool:
        """
        Establish the session.

        Returns:
            bool: True once the service acknowledged the connection, False if it refused it

        Raises:
            TransportError: If the session could not be set up at all
        """
        pass

    @abstractmethod
    async def disconnect(self) -> bool:
        """
        Close the session.

        Returns:
            bool: True if the session was closed cleanly
        """
        pass

    async def reconnect(self) -> bool:
        """Tear the session down and establish it again."""
        await self.disconnect()
        return await self.connect()

    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    def publish(self, topic: str, payload: Dict[str, Any], qos: int = 0) -> asyncio.Future:
        """
        Publish a JSON payload without waiting for the acknowledgement.

        Returns:
            asyncio.Future: resolves when the publish is acknowledged, or carries a TransportError
        """
        pass

    @abstractmethod
    def subscribe(self, topic: str, qos: int, on_message: MessageCallback) -> asyncio.Future:
        """
        Subscribe to a topic filter; on_message runs on the event loop for each delivery.

        Returns:
            asyncio.Future: resolves with the granted QoS list, or carries a TransportError
        """
        pass
