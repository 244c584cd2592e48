"""Media engine abstraction.

The media engine is the platform real-time communication stack (a browser
``RTCPeerConnection``, aiortc, a native SDK). It does capture, encoding,
NAT traversal and transport. The lifecycle only hands it descriptions and
candidates and reacts to the events it reports.

Session descriptions and candidates are opaque JSON-compatible values that
the engine produces and consumes; nothing else interprets them.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from paircall.client.media import LocalMedia

# Opaque engine values, carried verbatim in offer/answer/candidate payloads
SessionDescription = Any
IceCandidate = Any


class PeerConnectionState(Enum):
    """Aggregate link state reported by the engine."""

    NEW = "new"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


class IceConnectionState(Enum):
    """Connectivity-check state reported by the engine."""

    NEW = "new"
    CHECKING = "checking"
    CONNECTED = "connected"
    COMPLETED = "completed"
    DISCONNECTED = "disconnected"
    FAILED = "failed"
    CLOSED = "closed"


class IceGatheringState(Enum):
    NEW = "new"
    GATHERING = "gathering"
    COMPLETE = "complete"


@dataclass(frozen=True)
class CandidateGathered:
    """A local candidate was found; ``None`` marks the end of gathering."""

    candidate: IceCandidate | None


@dataclass(frozen=True)
class ConnectionStateChanged:
    state: PeerConnectionState


@dataclass(frozen=True)
class IceConnectionStateChanged:
    state: IceConnectionState


EngineEvent = CandidateGathered | ConnectionStateChanged | IceConnectionStateChanged
EngineEventHandler = Callable[[EngineEvent], None]


class MediaEngine(ABC):
    """One peer session inside the platform media engine.

    A new engine is created for every pair and closed when the pair ends.
    Events are reported through the handler set with ``set_event_handler``;
    the handler must not block.
    """

    @abstractmethod
    def set_event_handler(self, handler: EngineEventHandler) -> None:
        """Register the callback that receives engine events."""
        pass

    @abstractmethod
    async def create_offer(self, ice_restart: bool = False) -> SessionDescription:
        """Create a local offer; ``ice_restart`` requests fresh credentials."""
        pass

    @abstractmethod
    async def create_answer(self) -> SessionDescription:
        """Create an answer to the current remote offer."""
        pass

    @abstractmethod
    async def set_local_description(self, description: SessionDescription) -> None:
        pass

    @abstractmethod
    async def set_remote_description(self, description: SessionDescription) -> None:
        """Apply the partner's description.

        Raises:
            ValueError: If the description is malformed or out of order
        """
        pass

    @abstractmethod
    async def add_ice_candidate(self, candidate: IceCandidate) -> None:
        """Apply a remote candidate.

        Raises:
            ValueError: If the candidate cannot be applied
        """
        pass

    @abstractmethod
    async def restart_ice(self) -> None:
        """Begin an in-place connectivity restart."""
        pass

    @abstractmethod
    async def get_stats(self) -> list[dict[str, Any]]:
        """Return transport statistics as a list of stat dictionaries.

        Each entry has at least a ``type`` key (``inbound-rtp``,
        ``candidate-pair`` and so on) following the WebRTC stats naming.
        """
        pass

    @abstractmethod
    async def close(self) -> None:
        """Release the peer session. Further events are not reported."""
        pass

    @property
    @abstractmethod
    def local_description(self) -> SessionDescription | None:
        pass

    @property
    @abstractmethod
    def connection_state(self) -> PeerConnectionState:
        pass

    @property
    @abstractmethod
    def ice_connection_state(self) -> IceConnectionState:
        pass

    @property
    @abstractmethod
    def ice_gathering_state(self) -> IceGatheringState:
        pass


# Builds the engine for a new pair from the participant's local media
EngineFactory = Callable[[LocalMedia], MediaEngine]
