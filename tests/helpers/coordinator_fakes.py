"""Fakes for coordinator tests.

An in-memory participant connection and a manual clock, so queue ages and
idle times are set by the test.
"""

from collections.abc import AsyncIterator, Awaitable, Callable

from pydantic import BaseModel
from websockets.asyncio.client import ClientConnection

from paircall.coordinator.transport.base import ParticipantConnection

class MockParticipant(ParticipantConnection):
    """In-memory participant connection recording delivered messages."""

    def __init__(self, connection_id: str) -> None:
        self._connection_id = connection_id
        self._connected = True
        self.sent: list[BaseModel] = []
        self.inbound: list[BaseModel] = []

    @property
    def connection_id(self) -> str:
        """Return connection ID."""
        return self._connection_id

    @property
    def is_connected(self) -> bool:
        """Check connection status."""
        return self._connected

    def deliver(self, message: BaseModel) -> bool:
        """Record the message if connected."""
        if not self._connected:
            return False
        self.sent.append(message)
        return True

    async def sender_loop(self) -> None:
        """Nothing to drain; messages are recorded on delivery."""
        return None

    async def receive_messages(self) -> AsyncIterator[BaseModel]:
        """Yield queued inbound messages."""
        for message in self.inbound:
            if not self._connected:
                break
            yield message

    async def close(self) -> None:
        """Mock close."""
        self._connected = False

    def drop(self) -> None:
        """Simulate the transport dying without a disconnect callback."""
        self._connected = False

    def types(self) -> list[str]:
        """Types of delivered messages, in order."""
        return [getattr(m, "type", "") for m in self.sent]

    def clear(self) -> None:
        self.sent.clear()


class ManualClock:
    """Monotonic clock advanced explicitly by tests."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


# Registers named participants with a service and returns them
ConnectFactory = Callable[..., list[MockParticipant]]

# Opens a raw WebSocket client to a running coordinator
ClientFactory = Callable[[], Awaitable[ClientConnection]]
