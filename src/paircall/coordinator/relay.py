"""Signaling relay.

Forwards offer, answer and candidate messages from a participant to its
current partner, and to no one else. The payload is never inspected.
"""

import logging

from paircall.coordinator.metrics import MetricsCollector
from paircall.coordinator.pairing import ActivePairTable
from paircall.coordinator.registry import ConnectionRegistry
from paircall.protocol import SIGNAL_MESSAGE_TYPES, SignalMessage

logger = logging.getLogger(__name__)


class SignalingRelay:
    """Partner-scoped forwarder for handshake messages.

    Callers must hold the service lock so the partner lookup and the
    delivery see the same pair table.
    """

    def __init__(
        self,
        registry: ConnectionRegistry,
        pairs: ActivePairTable,
        metrics: MetricsCollector,
    ) -> None:
        self._registry = registry
        self._pairs = pairs
        self._metrics = metrics

    def forward(self, sender_id: str, message: SignalMessage, now: float) -> bool:
        """Forward a handshake message to the sender's partner.

        Messages from a sender without a partner are dropped silently; this
        is expected while a disconnect races in-flight messages.

        Returns:
            True if the message was queued for the partner

        Raises:
            TypeError: If the message is not an offer, answer or candidate
        """
        if not isinstance(message, SIGNAL_MESSAGE_TYPES):
            raise TypeError(f"Not a relayable message: {type(message).__name__}")

        partner_id = self._pairs.lookup_partner(sender_id)
        if partner_id is None:
            self._metrics.inc("relay_dropped_total")
            logger.debug(
                "Dropping signal from unpaired participant",
                extra={"participant_id": sender_id, "type": message.type},
            )
            return False

        if not self._registry.deliver(partner_id, message):
            self._metrics.inc("relay_dropped_total")
            logger.debug(
                "Partner unavailable, signal dropped",
                extra={"participant_id": sender_id, "partner_id": partner_id, "type": message.type},
            )
            return False

        self._pairs.touch(sender_id, now)
        self._metrics.inc("relayed_messages_total")
        return True
