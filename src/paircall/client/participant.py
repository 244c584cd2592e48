"""Assembly of a complete participant client.

Wires a ``SignalingClient`` built from configuration to a
``ConnectionLifecycle``: parsed server messages and link up/down changes
are posted to the lifecycle inbox, and the lifecycle sends through the
same client.
"""

import asyncio
import logging
from pathlib import Path

from pydantic import BaseModel

from paircall.client.config import ClientConfig
from paircall.client.engine import EngineFactory
from paircall.client.lifecycle import ConnectionLifecycle, LifecycleObserver
from paircall.client.media import MediaDevices
from paircall.client.signaling import SignalingClient

logger = logging.getLogger(__name__)


class ParticipantClient:
    """A lifecycle and its coordinator link, run together."""

    def __init__(
        self,
        devices: MediaDevices,
        engine_factory: EngineFactory,
        config: ClientConfig | None = None,
        observer: LifecycleObserver | None = None,
    ) -> None:
        """Initialize participant client.

        Args:
            devices: Platform capture API
            engine_factory: Builds a media engine session for each pair
            config: Client configuration (defaults if omitted)
            observer: Receives status, errors and quality updates
        """
        self.config = config or ClientConfig()
        self.signaling = SignalingClient.from_config(
            self.config.signaling,
            on_message=self._on_message,
            on_status=self._on_status,
        )
        self.lifecycle = ConnectionLifecycle(
            self.signaling,
            devices,
            engine_factory,
            config=self.config,
            observer=observer,
        )

    @classmethod
    def from_config_file(
        cls,
        path: Path | None,
        devices: MediaDevices,
        engine_factory: EngineFactory,
        observer: LifecycleObserver | None = None,
    ) -> "ParticipantClient":
        config = ClientConfig.from_yaml_with_defaults(path)
        return cls(devices, engine_factory, config=config, observer=observer)

    def _on_message(self, message: BaseModel) -> None:
        self.lifecycle.handle_server_message(message)

    def _on_status(self, connected: bool) -> None:
        self.lifecycle.set_signaling_connected(connected)

    async def run(self) -> None:
        """Run the lifecycle and the signaling link until the link stops.

        The lifecycle is closed when signaling ends, whether stopped or
        out of reconnect attempts.

        Raises:
            ConnectionError: If the coordinator could not be reached
        """
        lifecycle_task = asyncio.create_task(self.lifecycle.run())
        logger.info("Participant client starting", extra={"url": self.signaling.server_url})
        try:
            await self.signaling.run()
        finally:
            self.lifecycle.close()
            await lifecycle_task
            logger.info("Participant client stopped")

    async def stop(self) -> None:
        await self.signaling.stop()
