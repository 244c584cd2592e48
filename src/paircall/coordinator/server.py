"""Coordinator server with WebSocket transport.

Main server implementation that:
1. Starts the WebSocket transport
2. Provides HTTP health, status and metrics endpoints
3. Accepts participant connections and feeds their messages to the service
4. Runs the stale-resource sweeper
"""

import argparse
import asyncio
import contextlib
import logging
from pathlib import Path

from aiohttp.web import Application, AppRunner, TCPSite

from paircall.coordinator.config import CoordinatorConfig
from paircall.coordinator.health import setup_health_routes
from paircall.coordinator.metrics import MetricsCollector, get_metrics_collector
from paircall.coordinator.service import MatchmakingService
from paircall.coordinator.sweeper import StaleResourceSweeper
from paircall.coordinator.transport.base import ParticipantConnection
from paircall.coordinator.transport.websocket_transport import WebSocketTransport
from paircall.protocol import INTERNAL_ERROR, ErrorMessage
from paircall.utils.logging import setup_logging

logger = logging.getLogger(__name__)


async def handle_participant(
    participant: ParticipantConnection, service: MatchmakingService
) -> None:
    """Drive one participant connection until it closes.

    Errors raised while handling a single message are logged and reported to
    that participant only; the connection and the process keep running.

    Args:
        participant: Accepted participant connection
        service: Coordinator service
    """
    participant_id = participant.connection_id
    service.connect(participant)

    sender_task = asyncio.create_task(participant.sender_loop())

    try:
        async for message in participant.receive_messages():
            try:
                service.handle_message(participant_id, message)
            except Exception as e:
                logger.exception(
                    "Error handling participant message",
                    extra={"participant_id": participant_id, "type": getattr(message, "type", None)},
                )
                participant.deliver(ErrorMessage(message=f"Internal error: {e}", code=INTERNAL_ERROR))

    except ConnectionError as e:
        logger.info(
            "Participant connection lost",
            extra={"participant_id": participant_id, "error": str(e)},
        )
    finally:
        service.disconnect(participant_id)

        sender_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender_task

        await participant.close()


class CoordinatorServer:
    """Owns the service, transport, sweeper and health endpoint."""

    def __init__(
        self, config: CoordinatorConfig, metrics: MetricsCollector | None = None
    ) -> None:
        """Initialize coordinator server.

        Args:
            config: Coordinator configuration
            metrics: Metrics collector (defaults to the process-wide one)
        """
        self.config = config
        self.service = MatchmakingService(config.matching, metrics or get_metrics_collector())

        ws_config = config.websocket
        self.transport = WebSocketTransport(
            host=ws_config.host,
            port=ws_config.port,
            max_connections=ws_config.max_connections,
            send_queue_size=ws_config.send_queue_size,
            max_message_bytes=ws_config.max_message_bytes,
            ping_interval_s=ws_config.ping_interval_s,
            ping_timeout_s=ws_config.ping_timeout_s,
        )
        self.sweeper = StaleResourceSweeper(self.service, config.sweeper.interval_s)

        self._runner: AppRunner | None = None
        self._accept_task: asyncio.Task[None] | None = None
        self._participant_tasks: set[asyncio.Task[None]] = set()

    @property
    def port(self) -> int:
        """Bound WebSocket port."""
        return self.transport.bound_port

    async def start(self) -> None:
        """Start transport, health endpoint, sweeper and the accept loop."""
        await self.transport.start()

        if self.config.health.enabled:
            health_app = Application()
            setup_health_routes(health_app, self.service)
            self._runner = AppRunner(health_app)
            await self._runner.setup()
            site = TCPSite(self._runner, self.config.health.host, self.config.health_port)
            await site.start()
            logger.info("Health check server started", extra={"port": self.config.health_port})

        if self.config.sweeper.enabled:
            self.sweeper.start()

        self._accept_task = asyncio.create_task(self._accept_loop(), name="accept-loop")
        logger.info("Coordinator ready", extra={"port": self.port})

    async def serve_forever(self) -> None:
        """Block until the accept loop ends or is cancelled."""
        if self._accept_task is None:
            raise RuntimeError("Coordinator server is not started")
        await self._accept_task

    async def stop(self) -> None:
        """Stop accepting, close connections and release resources."""
        logger.info("Shutting down coordinator server")

        if self._accept_task is not None:
            self._accept_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._accept_task
            self._accept_task = None

        await self.sweeper.stop()
        await self.transport.stop()

        if self._participant_tasks:
            logger.info(
                "Waiting for participant handlers", extra={"count": len(self._participant_tasks)}
            )
            _, pending = await asyncio.wait(
                self._participant_tasks, timeout=self.config.graceful_shutdown_timeout_s
            )
            for task in pending:
                task.cancel()
            await asyncio.gather(*pending, return_exceptions=True)

        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Health check server stopped")

        logger.info("Coordinator server stopped")

    async def _accept_loop(self) -> None:
        while True:
            participant = await self.transport.accept_connection()
            task = asyncio.create_task(handle_participant(participant, self.service))
            self._participant_tasks.add(task)
            task.add_done_callback(self._participant_tasks.discard)


async def start_server(config_path: Path) -> None:
    """Start the coordinator and run until interrupted.

    Args:
        config_path: Path to YAML config file (defaults are used if missing)
    """
    config = CoordinatorConfig.from_yaml_with_defaults(config_path)
    setup_logging(config.log_level)
    logger.info("Loaded configuration", extra={"config_path": str(config_path)})

    server = CoordinatorServer(config)
    await server.start()
    try:
        await server.serve_forever()
    except asyncio.CancelledError:
        logger.info("Server loop cancelled")
    finally:
        await server.stop()


def main() -> None:
    """Entry point for the coordinator server."""
    parser = argparse.ArgumentParser(description="Pairing coordinator and signaling relay")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs") / "coordinator.yaml",
        help="Path to coordinator config YAML file",
    )
    args = parser.parse_args()

    try:
        asyncio.run(start_server(args.config))
    except KeyboardInterrupt:
        logger.info("Coordinator server interrupted")


if __name__ == "__main__":
    main()
