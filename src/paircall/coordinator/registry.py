"""Connection handle registry.

Owns every live participant connection and answers liveness questions for
the queue, matcher, relay and sweeper.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass

from pydantic import BaseModel

from paircall.coordinator.transport.base import ParticipantConnection

logger = logging.getLogger(__name__)


@dataclass
class ParticipantRecord:
    """Registry entry for one participant connection."""

    connection: ParticipantConnection
    connected_at: float

    @property
    def participant_id(self) -> str:
        return self.connection.connection_id


class ConnectionRegistry:
    """Maps participant ids to their live transport connection.

    Not thread-safe on its own; the owning service serializes access.
    """

    def __init__(self) -> None:
        self._records: dict[str, ParticipantRecord] = {}

    def register(self, connection: ParticipantConnection, now: float) -> ParticipantRecord:
        """Add a newly connected participant.

        Raises:
            ValueError: If the connection id is already registered
        """
        participant_id = connection.connection_id
        if participant_id in self._records:
            raise ValueError(f"Participant already registered: {participant_id}")

        record = ParticipantRecord(connection=connection, connected_at=now)
        self._records[participant_id] = record
        return record

    def unregister(self, participant_id: str) -> ParticipantRecord | None:
        """Remove a participant; returns the record if it was present."""
        return self._records.pop(participant_id, None)

    def get(self, participant_id: str) -> ParticipantRecord | None:
        return self._records.get(participant_id)

    def is_live(self, participant_id: str) -> bool:
        """A participant is live if registered and its transport is open."""
        record = self._records.get(participant_id)
        return record is not None and record.connection.is_connected

    def deliver(self, participant_id: str, message: BaseModel) -> bool:
        """Queue a message to one participant.

        Returns:
            False if the participant is unknown, dead, or its buffer is full
        """
        record = self._records.get(participant_id)
        if record is None or not record.connection.is_connected:
            logger.debug(
                "Skipping delivery to unavailable participant",
                extra={"participant_id": participant_id, "type": getattr(message, "type", None)},
            )
            return False
        return record.connection.deliver(message)

    def broadcast(self, message: BaseModel) -> int:
        """Queue a message to every live participant; returns recipients reached."""
        delivered = 0
        for record in self._records.values():
            if record.connection.is_connected and record.connection.deliver(message):
                delivered += 1
        return delivered

    def online_count(self) -> int:
        """Number of registered participants with an open transport."""
        return sum(1 for record in self._records.values() if record.connection.is_connected)

    def dead_ids(self) -> list[str]:
        """Registered participants whose transport has closed."""
        return [pid for pid, record in self._records.items() if not record.connection.is_connected]

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._records))
