"""Greedy FIFO matcher.

Pulls the two oldest live participants off the queue, pairs them and tells
each one its role. The older participant always becomes the initiator.
"""

import logging

from paircall.coordinator.metrics import MetricsCollector
from paircall.coordinator.pairing import ActivePair, ActivePairTable, PairingQueue
from paircall.coordinator.registry import ConnectionRegistry
from paircall.protocol import CallStartedMessage, NextUserMessage, StartCallMessage

logger = logging.getLogger(__name__)


class Matcher:
    """Forms pairs from the pairing queue.

    Callers must hold the service lock.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        queue: PairingQueue,
        pairs: ActivePairTable,
        metrics: MetricsCollector,
    ) -> None:
        self._registry = registry
        self._queue = queue
        self._pairs = pairs
        self._metrics = metrics

    def match(self, now: float) -> list[ActivePair]:
        """Pair waiting participants until fewer than two remain.

        Dead entries met along the way are discarded; a live entry popped
        alongside a dead one goes back to the head of the queue.

        Returns:
            Pairs formed by this call, oldest first
        """
        formed: list[ActivePair] = []

        while len(self._queue) >= 2:
            first = self._queue.pop_oldest()
            second = self._queue.pop_oldest()
            if first is None or second is None:
                break

            first_live = self._registry.is_live(first.participant_id)
            second_live = self._registry.is_live(second.participant_id)

            if not (first_live and second_live):
                # Reinsert in reverse so the older entry ends up at the head
                for entry, live in ((second, second_live), (first, first_live)):
                    if live:
                        self._queue.push_front(entry)
                    else:
                        self._metrics.inc("dead_entries_total")
                        logger.info(
                            "Dropped dead queue entry during matching",
                            extra={"participant_id": entry.participant_id},
                        )
                continue

            active = self._pairs.pair(first.participant_id, second.participant_id, now)
            self._metrics.inc("pairs_formed_total")
            self._metrics.observe("queue_wait_seconds", first.age(now))
            self._metrics.observe("queue_wait_seconds", second.age(now))

            self._notify(active)
            formed.append(active)

            logger.info(
                "Pair formed",
                extra={
                    "pair_id": active.pair_id,
                    "initiator": active.initiator_id,
                    "receiver": active.receiver_id,
                },
            )

        return formed

    def _notify(self, active: ActivePair) -> None:
        self._registry.deliver(active.initiator_id, StartCallMessage(pair_id=active.pair_id))
        self._registry.deliver(active.receiver_id, CallStartedMessage(pair_id=active.pair_id))
        for participant_id in active.members:
            self._registry.deliver(participant_id, NextUserMessage())
