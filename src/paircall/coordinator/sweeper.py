"""Stale-resource sweeper.

Runs on a fixed period regardless of participant activity and reclaims
queue entries, pairs and connections that the event-driven paths missed:
over-age waiters, pairs with a dead or silent side, and registry records
whose transport closed without a disconnect callback.
"""

import asyncio
import contextlib
import logging
from dataclasses import asdict, dataclass

from paircall.coordinator.service import MatchmakingService
from paircall.protocol import MATCH_TIMEOUT, ErrorMessage, UserDisconnectedMessage
from paircall.utils.logging import log_event

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """What one sweep reclaimed."""

    dead_connections: int = 0
    dead_waiting: int = 0
    evicted_waiting: int = 0
    broken_pairs: int = 0
    idle_pairs: int = 0
    pairs_formed: int = 0
    online_count: int = 0

    @property
    def reclaimed(self) -> int:
        return (
            self.dead_connections
            + self.dead_waiting
            + self.evicted_waiting
            + self.broken_pairs
            + self.idle_pairs
        )


class StaleResourceSweeper:
    """Periodic reclamation task over a ``MatchmakingService``."""

    def __init__(self, service: MatchmakingService, interval_s: float = 30.0) -> None:
        """Initialize sweeper.

        Args:
            service: Service whose state is swept
            interval_s: Seconds between sweeps
        """
        self._service = service
        self._interval_s = interval_s
        self._task: asyncio.Task[None] | None = None

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background sweep loop.

        Raises:
            RuntimeError: If already running
        """
        if self.is_running:
            raise RuntimeError("Sweeper is already running")
        self._task = asyncio.create_task(self._run(), name="stale-resource-sweeper")
        logger.info("Sweeper started", extra={"interval_s": self._interval_s})

    async def stop(self) -> None:
        """Cancel the sweep loop and wait for it to exit."""
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("Sweeper stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval_s)
            try:
                report = self.sweep_once()
            except Exception:
                logger.exception("Sweep failed")
                continue

            if report.reclaimed or report.pairs_formed:
                log_event(logger, "sweep", asdict(report))

    def sweep_once(self) -> SweepReport:
        """Run one full sweep under the service lock."""
        service = self._service
        report = SweepReport()

        with service.lock:
            now = service.clock()
            self._reclaim_dead_connections(report)
            self._sweep_queue(now, report)
            self._sweep_pairs(now, report)
            report.pairs_formed = len(service.matcher.match(now))
            service.broadcast_user_count()
            report.online_count = service.registry.online_count()

        service.metrics.inc("sweeps_total")
        return report

    def _reclaim_dead_connections(self, report: SweepReport) -> None:
        service = self._service
        for participant_id in service.registry.dead_ids():
            service.queue.remove(participant_id)
            if service.dissolve_pair(participant_id, reason="dead_connection") is not None:
                report.broken_pairs += 1
            service.registry.unregister(participant_id)
            service.metrics.inc("dead_entries_total")
            report.dead_connections += 1
            logger.info("Reclaimed dead connection", extra={"participant_id": participant_id})

    def _sweep_queue(self, now: float, report: SweepReport) -> None:
        service = self._service
        max_wait_s = service.config.max_wait_s

        for entry in list(service.queue):
            participant_id = entry.participant_id

            if not service.registry.is_live(participant_id):
                service.queue.remove(participant_id)
                service.metrics.inc("dead_entries_total")
                report.dead_waiting += 1
                continue

            if entry.age(now) > max_wait_s:
                service.queue.remove(participant_id)
                service.registry.deliver(
                    participant_id,
                    ErrorMessage(
                        message="No match found in time. Please try again.",
                        code=MATCH_TIMEOUT,
                    ),
                )
                service.metrics.inc("queue_evictions_total")
                report.evicted_waiting += 1
                logger.info(
                    "Evicted over-age waiting participant",
                    extra={"participant_id": participant_id, "waited_s": entry.age(now)},
                )

    def _sweep_pairs(self, now: float, report: SweepReport) -> None:
        service = self._service
        idle_limit_s = service.config.pair_idle_timeout_s

        for active in service.pairs.pairs():
            dead = [pid for pid in active.members if not service.registry.is_live(pid)]

            if dead:
                # Unpairing from the dead side notifies the survivor
                service.dissolve_pair(dead[0], reason="dead_partner")
                service.metrics.inc("stale_pairs_total")
                report.broken_pairs += 1
                continue

            if active.idle_for(now) > idle_limit_s:
                service.dissolve_pair(active.initiator_id, reason="idle")
                service.registry.deliver(active.initiator_id, UserDisconnectedMessage())
                service.metrics.inc("stale_pairs_total")
                report.idle_pairs += 1
                logger.info(
                    "Reclaimed idle pair",
                    extra={"pair_id": active.pair_id, "idle_s": active.idle_for(now)},
                )

