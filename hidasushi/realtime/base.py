"""
Push Transport Abstract Base Class

The dispatcher only needs to deliver one JSON message to one live
connection. WebSockets implement this today; a message-queue fan-out can
replace it without touching the lifecycle code.
"""

from abc import ABC, abstractmethod
from typing import Any


class ConnectionClosedError(Exception):
    """The target connection is no longer registered with the transport."""


class BasePushTransport(ABC):
    """Abstract base class for real-time push transports."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the transport name."""
        pass

    @abstractmethod
    async def send(self, connection_id: str, message: dict[str, Any]) -> None:
        """
        Deliver ``message`` to one connection.

        Raises:
            ConnectionClosedError: Unknown or closed connection
        """
        pass

    @abstractmethod
    async def close(self, connection_id: str) -> None:
        """Forget the connection. Unknown ids are ignored."""
        pass

    @abstractmethod
    def connection_count(self) -> int:
        pass
