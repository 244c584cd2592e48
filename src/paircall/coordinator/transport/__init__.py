"""Transport layer for participant connections."""

from paircall.coordinator.transport.base import ParticipantConnection, Transport
from paircall.coordinator.transport.websocket_transport import (
    WebSocketParticipant,
    WebSocketTransport,
)

__all__ = [
    "ParticipantConnection",
    "Transport",
    "WebSocketParticipant",
    "WebSocketTransport",
]
