"""Base transport abstraction for participant connections.

Defines the interface the coordinator uses to talk to a connected
participant, independent of the wire transport.
"""

from abc import ABC, abstractmethod
from collections.abc import AsyncIterator

from pydantic import BaseModel


class ParticipantConnection(ABC):
    """A single live link to one participant.

    Delivery is non-blocking: ``deliver`` enqueues and returns immediately so
    the coordinator can notify participants while holding its lock. Messages
    to one participant are sent in the order they were delivered.
    """

    @property
    @abstractmethod
    def connection_id(self) -> str:
        """Opaque identifier, unique per live transport link."""
        pass

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Check if the underlying transport is still open."""
        pass

    @abstractmethod
    def deliver(self, message: BaseModel) -> bool:
        """Queue a participant-bound message for sending.

        Args:
            message: Server message model

        Returns:
            False if the connection is closed or its outbound buffer is full
        """
        pass

    @abstractmethod
    async def sender_loop(self) -> None:
        """Send queued messages until the connection closes."""
        pass

    @abstractmethod
    async def receive_messages(self) -> AsyncIterator[BaseModel]:
        """Yield parsed coordinator-bound messages until the link closes.

        Raises:
            ConnectionError: If the connection breaks unexpectedly
        """
        if False:
            yield BaseModel()

    @abstractmethod
    async def close(self) -> None:
        """Close the link and release transport resources."""
        pass


class Transport(ABC):
    """Server side of a participant transport."""

    @abstractmethod
    async def start(self) -> None:
        """Bind and begin accepting connections.

        Raises:
            RuntimeError: If the transport is already running
            OSError: If port binding fails
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop accepting connections and close the listener."""
        pass

    @abstractmethod
    async def accept_connection(self) -> ParticipantConnection:
        """Block until a participant connects.

        Raises:
            RuntimeError: If the transport is not running
        """
        pass

    @property
    @abstractmethod
    def is_running(self) -> bool:
        """Check if the transport is accepting connections."""
        pass
