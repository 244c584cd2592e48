"""Matchmaking service.

The single owner of coordinator state: the connection registry, pairing
queue, active pair table, matcher and relay. Every public method takes the
service lock, mutates state, queues outbound notifications and returns
without awaiting, so participant-visible ordering follows mutation order.
"""

import logging
import threading
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass

from pydantic import BaseModel

from paircall.coordinator.config import MatchingConfig
from paircall.coordinator.matcher import Matcher
from paircall.coordinator.metrics import MetricsCollector
from paircall.coordinator.pairing import ActivePairTable, PairingQueue
from paircall.coordinator.registry import ConnectionRegistry
from paircall.coordinator.relay import SignalingRelay
from paircall.coordinator.transport.base import ParticipantConnection
from paircall.protocol import (
    EndChatMessage,
    FindMatchMessage,
    UserCountMessage,
    UserDisconnectedMessage,
    is_signal,
)

logger = logging.getLogger(__name__)


@dataclass
class StatusSnapshot:
    """Read-only view of coordinator occupancy."""

    online_count: int
    queue_length: int
    active_pairs: int
    oldest_wait_s: float | None
    uptime_s: float

    def to_dict(self) -> dict[str, int | float | None]:
        return asdict(self)


class MatchmakingService:
    """Coordinator state and the operations that mutate it.

    Tests construct a fresh service per case; nothing here is global.
    """

    def __init__(
        self,
        config: MatchingConfig | None = None,
        metrics: MetricsCollector | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize service.

        Args:
            config: Queue and pair lifetime limits
            metrics: Metrics collector (a private one is created if omitted)
            clock: Monotonic time source in seconds
        """
        self.config = config or MatchingConfig()
        self.metrics = metrics or MetricsCollector()
        self.clock = clock
        self.lock = threading.Lock()

        self.registry = ConnectionRegistry()
        self.queue = PairingQueue()
        self.pairs = ActivePairTable()
        self.matcher = Matcher(self.registry, self.queue, self.pairs, self.metrics)
        self.relay = SignalingRelay(self.registry, self.pairs, self.metrics)

        self._started_at = clock()

    def connect(self, connection: ParticipantConnection) -> None:
        """Register a new participant and broadcast the online count.

        Raises:
            ValueError: If the connection id is already registered
        """
        with self.lock:
            self.registry.register(connection, self.clock())
            self.metrics.inc("connections_total")
            self.broadcast_user_count()

        logger.info("Participant registered", extra={"participant_id": connection.connection_id})

    def disconnect(self, participant_id: str) -> None:
        """Forget a participant whose transport closed.

        The partner, if any, is told; the queue is re-matched and the new
        online count is broadcast.
        """
        with self.lock:
            self.queue.remove(participant_id)
            self.dissolve_pair(participant_id, reason="disconnect")
            if self.registry.unregister(participant_id) is None:
                return
            self.matcher.match(self.clock())
            self.broadcast_user_count()

        logger.info("Participant unregistered", extra={"participant_id": participant_id})

    def find_match(self, participant_id: str) -> None:
        """Leave any current pair and join the tail of the queue.

        A participant already waiting is moved to the tail, never duplicated.
        """
        with self.lock:
            if not self.registry.is_live(participant_id):
                logger.warning(
                    "find_match from unavailable participant",
                    extra={"participant_id": participant_id},
                )
                return

            self.metrics.inc("match_requests_total")
            self.dissolve_pair(participant_id, reason="find_match")
            now = self.clock()
            self.queue.enqueue(participant_id, now)
            self.matcher.match(now)
            self._record_occupancy()

    def end_chat(self, participant_id: str) -> None:
        """Leave the current pair or queue while staying connected."""
        with self.lock:
            self.queue.remove(participant_id)
            self.dissolve_pair(participant_id, reason="end_chat")
            self._record_occupancy()

    def relay_signal(self, participant_id: str, message: BaseModel) -> bool:
        """Forward an offer, answer or candidate to the sender's partner."""
        with self.lock:
            return self.relay.forward(participant_id, message, self.clock())  # type: ignore[arg-type]

    def handle_message(self, participant_id: str, message: BaseModel) -> None:
        """Dispatch a parsed coordinator-bound message.

        Raises:
            TypeError: If the message type is not coordinator-bound
        """
        if isinstance(message, FindMatchMessage):
            self.find_match(participant_id)
        elif isinstance(message, EndChatMessage):
            self.end_chat(participant_id)
        elif is_signal(message):
            self.relay_signal(participant_id, message)
        else:
            raise TypeError(f"Unsupported message type: {type(message).__name__}")

    def status(self) -> StatusSnapshot:
        """Current occupancy; has no side effects."""
        with self.lock:
            now = self.clock()
            return StatusSnapshot(
                online_count=self.registry.online_count(),
                queue_length=len(self.queue),
                active_pairs=len(self.pairs),
                oldest_wait_s=self.queue.oldest_wait(now),
                uptime_s=now - self._started_at,
            )

    def broadcast_user_count(self) -> int:
        """Send the online count to everyone. Caller must hold the lock."""
        online = self.registry.online_count()
        self._record_occupancy()
        return self.registry.broadcast(UserCountMessage(count=online))

    def dissolve_pair(self, participant_id: str, reason: str) -> str | None:
        """Unpair and notify the partner. Caller must hold the lock."""
        active = self.pairs.get(participant_id)
        partner_id = self.pairs.unpair(participant_id)
        if partner_id is None:
            return None

        self.metrics.inc("pairs_ended_total", labels={"reason": reason})
        self.registry.deliver(partner_id, UserDisconnectedMessage())

        logger.info(
            "Pair dissolved",
            extra={
                "pair_id": active.pair_id if active else None,
                "participant_id": participant_id,
                "partner_id": partner_id,
                "reason": reason,
            },
        )
        return partner_id

    def _record_occupancy(self) -> None:
        self.metrics.record_occupancy(
            online=self.registry.online_count(),
            waiting=len(self.queue),
            pairs=len(self.pairs),
        )
