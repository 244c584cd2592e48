"""Pairing queue and active pair table.

The queue is a strict FIFO of participants waiting for a partner. The pair
table maps each paired participant to the same ``ActivePair`` object, so
both directions are always added and removed together.

Neither structure checks the other; ``MatchmakingService`` keeps a
participant in at most one of them.
"""

import logging
import uuid
from collections import deque
from collections.abc import Iterator
from dataclasses import dataclass

logger = logging.getLogger(__name__)

ROLE_INITIATOR = "initiator"
ROLE_RECEIVER = "receiver"


@dataclass(frozen=True)
class WaitingEntry:
    """A participant waiting for a match."""

    participant_id: str
    enqueued_at: float

    def age(self, now: float) -> float:
        return now - self.enqueued_at


class PairingQueue:
    """FIFO waiting list with O(1) membership checks."""

    def __init__(self) -> None:
        self._entries: deque[WaitingEntry] = deque()
        self._index: dict[str, WaitingEntry] = {}

    def enqueue(self, participant_id: str, now: float) -> WaitingEntry:
        """Append a participant at the tail.

        A participant already in the queue is moved to the tail rather than
        duplicated.
        """
        if self.remove(participant_id) is not None:
            logger.debug("Re-enqueue moves participant to tail", extra={"participant_id": participant_id})

        entry = WaitingEntry(participant_id=participant_id, enqueued_at=now)
        self._entries.append(entry)
        self._index[participant_id] = entry
        return entry

    def remove(self, participant_id: str) -> WaitingEntry | None:
        """Remove a participant from anywhere in the queue."""
        entry = self._index.pop(participant_id, None)
        if entry is not None:
            self._entries.remove(entry)
        return entry

    def pop_oldest(self) -> WaitingEntry | None:
        """Remove and return the head of the queue."""
        if not self._entries:
            return None
        entry = self._entries.popleft()
        del self._index[entry.participant_id]
        return entry

    def push_front(self, entry: WaitingEntry) -> None:
        """Return an entry to the head of the queue, keeping its original timestamp.

        Raises:
            ValueError: If the participant is already queued
        """
        if entry.participant_id in self._index:
            raise ValueError(f"Participant already queued: {entry.participant_id}")
        self._entries.appendleft(entry)
        self._index[entry.participant_id] = entry

    def oldest_wait(self, now: float) -> float | None:
        """Age in seconds of the head entry, or None if empty."""
        if not self._entries:
            return None
        return self._entries[0].age(now)

    def expired(self, now: float, max_wait_s: float) -> list[WaitingEntry]:
        """Entries that have waited longer than ``max_wait_s``."""
        return [entry for entry in self._entries if entry.age(now) > max_wait_s]

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._index

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[WaitingEntry]:
        return iter(list(self._entries))


@dataclass
class ActivePair:
    """Two participants currently paired.

    Roles are fixed when the pair is formed and never change.
    """

    pair_id: str
    initiator_id: str
    receiver_id: str
    formed_at: float
    last_activity_at: float

    @property
    def members(self) -> tuple[str, str]:
        return (self.initiator_id, self.receiver_id)

    def partner_of(self, participant_id: str) -> str:
        """Return the other member.

        Raises:
            KeyError: If the participant is not in this pair
        """
        if participant_id == self.initiator_id:
            return self.receiver_id
        if participant_id == self.receiver_id:
            return self.initiator_id
        raise KeyError(participant_id)

    def role_of(self, participant_id: str) -> str:
        if participant_id == self.initiator_id:
            return ROLE_INITIATOR
        if participant_id == self.receiver_id:
            return ROLE_RECEIVER
        raise KeyError(participant_id)

    def idle_for(self, now: float) -> float:
        return now - self.last_activity_at


class ActivePairTable:
    """Symmetric participant → pair mapping."""

    def __init__(self) -> None:
        self._by_participant: dict[str, ActivePair] = {}

    def pair(self, initiator_id: str, receiver_id: str, now: float) -> ActivePair:
        """Store a new pair under both members.

        Raises:
            ValueError: If the ids are equal or either member is already paired
        """
        if initiator_id == receiver_id:
            raise ValueError(f"Cannot pair participant with itself: {initiator_id}")
        for participant_id in (initiator_id, receiver_id):
            if participant_id in self._by_participant:
                raise ValueError(f"Participant already paired: {participant_id}")

        active = ActivePair(
            pair_id=f"pair-{uuid.uuid4().hex[:12]}",
            initiator_id=initiator_id,
            receiver_id=receiver_id,
            formed_at=now,
            last_activity_at=now,
        )
        self._by_participant[initiator_id] = active
        self._by_participant[receiver_id] = active
        return active

    def get(self, participant_id: str) -> ActivePair | None:
        return self._by_participant.get(participant_id)

    def lookup_partner(self, participant_id: str) -> str | None:
        """Return the participant's current partner, or None if unpaired."""
        active = self._by_participant.get(participant_id)
        if active is None:
            return None
        return active.partner_of(participant_id)

    def unpair(self, participant_id: str) -> str | None:
        """Dissolve the participant's pair.

        Returns:
            The partner id, or None if the participant was not paired
        """
        active = self._by_participant.pop(participant_id, None)
        if active is None:
            return None

        partner_id = active.partner_of(participant_id)
        self._by_participant.pop(partner_id, None)
        return partner_id

    def touch(self, participant_id: str, now: float) -> None:
        """Record handshake activity on the participant's pair."""
        active = self._by_participant.get(participant_id)
        if active is not None:
            active.last_activity_at = now

    def pairs(self) -> list[ActivePair]:
        """Snapshot of distinct active pairs."""
        seen: dict[str, ActivePair] = {}
        for active in self._by_participant.values():
            seen.setdefault(active.pair_id, active)
        return list(seen.values())

    def __contains__(self, participant_id: object) -> bool:
        return participant_id in self._by_participant

    def __len__(self) -> int:
        """Number of pairs (not participants)."""
        return len(self._by_participant) // 2
