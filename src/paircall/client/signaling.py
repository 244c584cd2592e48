"""Signaling channel to the coordinator.

``SignalingClient`` keeps a WebSocket open to the coordinator, reconnecting
after drops, and reports parsed server messages and link up/down changes
through callbacks. It knows nothing about the lifecycle state machine.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable

import websockets
from pydantic import BaseModel, ValidationError
from websockets.asyncio.client import ClientConnection
from websockets.protocol import State

from paircall.client.config import SignalingConfig
from paircall.protocol import parse_server_message

logger = logging.getLogger(__name__)

MessageHandler = Callable[[BaseModel], None]
StatusHandler = Callable[[bool], None]


class SignalingChannel(ABC):
    """Outbound side of the coordinator link, as seen by the lifecycle."""

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        pass

    @abstractmethod
    async def send(self, message: BaseModel) -> None:
        """Send a coordinator-bound message.

        Raises:
            ConnectionError: If the link is down
        """
        pass


class SignalingClient(SignalingChannel):
    """Reconnecting WebSocket client for the coordinator."""

    def __init__(
        self,
        server_url: str,
        on_message: MessageHandler,
        on_status: StatusHandler | None = None,
        reconnect_delay_s: float = 2.0,
        max_reconnect_attempts: int = 5,
        ping_interval_s: float | None = 25.0,
        ping_timeout_s: float | None = 60.0,
    ) -> None:
        """Initialize signaling client.

        Args:
            server_url: Coordinator WebSocket URL (e.g., ws://localhost:8080)
            on_message: Called with every parsed server message
            on_status: Called with True on connect and False on disconnect
            reconnect_delay_s: Delay between connection attempts
            max_reconnect_attempts: Consecutive failures before giving up (0 = retry forever)
            ping_interval_s: Keepalive ping interval
            ping_timeout_s: Keepalive pong timeout
        """
        self.server_url = server_url
        self._on_message = on_message
        self._on_status = on_status
        self._reconnect_delay_s = reconnect_delay_s
        self._max_reconnect_attempts = max_reconnect_attempts
        self._ping_interval_s = ping_interval_s
        self._ping_timeout_s = ping_timeout_s
        self._websocket: ClientConnection | None = None
        self._running = False

    @classmethod
    def from_config(
        cls,
        config: SignalingConfig,
        on_message: MessageHandler,
        on_status: StatusHandler | None = None,
    ) -> "SignalingClient":
        return cls(
            config.server_url,
            on_message=on_message,
            on_status=on_status,
            reconnect_delay_s=config.reconnect_delay_s,
            max_reconnect_attempts=config.max_reconnect_attempts,
            ping_interval_s=config.ping_interval_s,
            ping_timeout_s=config.ping_timeout_s,
        )

    @property
    def is_connected(self) -> bool:
        return self._websocket is not None and self._websocket.state == State.OPEN

    async def send(self, message: BaseModel) -> None:
        websocket = self._websocket
        if websocket is None or websocket.state != State.OPEN:
            raise ConnectionError("Signaling connection is not open")

        try:
            await websocket.send(message.model_dump_json())
        except websockets.exceptions.ConnectionClosed as e:
            raise ConnectionError(f"Signaling connection closed: {e}") from e

    def handle_raw(self, raw: str | bytes) -> None:
        """Parse one frame and pass it on; malformed frames are logged and skipped."""
        try:
            message = parse_server_message(raw)
        except ValidationError as e:
            logger.warning("Invalid server message", extra={"error_count": e.error_count()})
            return
        self._on_message(message)

    async def run(self) -> None:
        """Connect and receive until stopped or reconnects are exhausted.

        Raises:
            ConnectionError: If ``max_reconnect_attempts`` consecutive attempts failed
        """
        self._running = True
        failures = 0

        while self._running:
            try:
                async with websockets.connect(
                    self.server_url,
                    ping_interval=self._ping_interval_s,
                    ping_timeout=self._ping_timeout_s,
                ) as websocket:
                    self._websocket = websocket
                    failures = 0
                    logger.info("Connected to coordinator", extra={"url": self.server_url})
                    self._notify_status(True)

                    async for raw in websocket:
                        self.handle_raw(raw)

            except (OSError, websockets.exceptions.WebSocketException) as e:
                failures += 1
                logger.warning(
                    "Coordinator connection failed",
                    extra={"url": self.server_url, "attempt": failures, "error": str(e)},
                )
            finally:
                if self._websocket is not None:
                    self._websocket = None
                    self._notify_status(False)

            if not self._running:
                break

            if self._max_reconnect_attempts and failures >= self._max_reconnect_attempts:
                raise ConnectionError(
                    f"Could not reach coordinator at {self.server_url} "
                    f"after {failures} attempts"
                )

            await asyncio.sleep(self._reconnect_delay_s)

    async def stop(self) -> None:
        """Stop reconnecting and close the current link."""
        self._running = False
        if self._websocket is not None:
            await self._websocket.close()

    def _notify_status(self, connected: bool) -> None:
        if self._on_status is not None:
            self._on_status(connected)
