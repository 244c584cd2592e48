"""WebSocket transport implementation.

Accepts participant connections over WebSocket and exposes each one as a
``ParticipantConnection`` with an ordered, non-blocking outbound queue.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncIterator
from typing import Any

import websockets
from pydantic import BaseModel, ValidationError
from websockets.asyncio.server import ServerConnection
from websockets.protocol import State

from paircall.coordinator.transport.base import ParticipantConnection, Transport
from paircall.protocol import INVALID_MESSAGE, ErrorMessage, parse_client_message

logger = logging.getLogger(__name__)

# Close code sent when max_connections is reached (RFC 6455 "Try Again Later")
CLOSE_TRY_AGAIN_LATER = 1013


class WebSocketParticipant(ParticipantConnection):
    """WebSocket-backed participant connection.

    Outbound messages go through a bounded queue drained by ``sender_loop``,
    which the connection handler runs as a task for the life of the link.
    """

    def __init__(
        self, websocket: ServerConnection, connection_id: str, send_queue_size: int = 256
    ) -> None:
        """Initialize participant connection.

        Args:
            websocket: WebSocket connection
            connection_id: Unique connection identifier
            send_queue_size: Outbound buffer size
        """
        self._websocket = websocket
        self._connection_id = connection_id
        self._connected = True
        self._outbound: asyncio.Queue[BaseModel] = asyncio.Queue(maxsize=send_queue_size)

        logger.info(
            "Participant connected",
            extra={"participant_id": connection_id, "remote": websocket.remote_address},
        )

    @property
    def connection_id(self) -> str:
        """Get unique connection identifier."""
        return self._connection_id

    @property
    def is_connected(self) -> bool:
        """Check if the WebSocket is still open."""
        return self._connected and self._websocket.state == State.OPEN

    @property
    def pending_messages(self) -> int:
        """Number of queued outbound messages."""
        return self._outbound.qsize()

    def deliver(self, message: BaseModel) -> bool:
        """Queue a message for sending without blocking."""
        if not self.is_connected:
            return False

        try:
            self._outbound.put_nowait(message)
        except asyncio.QueueFull:
            logger.warning(
                "Outbound queue full, dropping message",
                extra={
                    "participant_id": self._connection_id,
                    "type": getattr(message, "type", None),
                },
            )
            return False
        return True

    async def sender_loop(self) -> None:
        """Send queued messages until the connection closes."""
        while True:
            message = await self._outbound.get()
            try:
                await self._websocket.send(message.model_dump_json())
            except websockets.exceptions.ConnectionClosed:
                self._connected = False
                logger.debug(
                    "Send on closed connection",
                    extra={"participant_id": self._connection_id},
                )
                return

    async def receive_messages(self) -> AsyncIterator[BaseModel]:
        """Yield parsed client messages until the peer closes.

        Malformed frames are answered with an ``error`` message and skipped.

        Raises:
            ConnectionError: If the connection breaks unexpectedly
        """
        try:
            async for raw_message in self._websocket:
                try:
                    message = parse_client_message(raw_message)
                except ValidationError as e:
                    logger.warning(
                        "Invalid client message",
                        extra={
                            "participant_id": self._connection_id,
                            "error_count": e.error_count(),
                        },
                    )
                    self.deliver(
                        ErrorMessage(message="Invalid message", code=INVALID_MESSAGE)
                    )
                    continue

                yield message

        except websockets.exceptions.ConnectionClosed:
            self._connected = False
            logger.info(
                "WebSocket connection closed by participant",
                extra={"participant_id": self._connection_id},
            )
        except Exception as e:
            self._connected = False
            logger.error(
                "Error receiving messages",
                extra={"participant_id": self._connection_id, "error": str(e)},
            )
            raise ConnectionError(f"WebSocket receive error: {e}") from e

        self._connected = False

    async def close(self) -> None:
        """Close the WebSocket if it is still open."""
        if not self._connected:
            return

        self._connected = False
        logger.info("Closing participant connection", extra={"participant_id": self._connection_id})

        try:
            await self._websocket.close()
        except Exception as e:
            logger.warning(
                "Error during connection close",
                extra={"participant_id": self._connection_id, "error": str(e)},
            )


class WebSocketTransport(Transport):
    """WebSocket transport server.

    Manages the WebSocket server lifecycle and hands each incoming link to
    the server loop as a ``WebSocketParticipant``.
    """

    def __init__(
        self,
        host: str = "0.0.0.0",  # noqa: S104
        port: int = 8080,
        max_connections: int = 1000,
        send_queue_size: int = 256,
        max_message_bytes: int = 2**16,
        ping_interval_s: float | None = 25.0,
        ping_timeout_s: float | None = 60.0,
    ) -> None:
        """Initialize WebSocket transport.

        Args:
            host: Bind host address
            port: Bind port (0 for ephemeral)
            max_connections: Maximum concurrent connections
            send_queue_size: Outbound buffer per participant
            max_message_bytes: Largest accepted inbound frame
            ping_interval_s: Keepalive ping interval
            ping_timeout_s: Keepalive pong timeout
        """
        self._host = host
        self._port = port
        self._max_connections = max_connections
        self._send_queue_size = send_queue_size
        self._max_message_bytes = max_message_bytes
        self._ping_interval_s = ping_interval_s
        self._ping_timeout_s = ping_timeout_s
        self._server: Any = None  # websockets Server
        self._running = False
        self._active_connections = 0
        self._connection_queue: asyncio.Queue[WebSocketParticipant] = asyncio.Queue()

        logger.info(
            "WebSocket transport initialized",
            extra={"host": host, "port": port, "max_connections": max_connections},
        )

    @property
    def is_running(self) -> bool:
        """Check if the transport server is currently running."""
        return self._running

    @property
    def active_connections(self) -> int:
        """Number of open participant links."""
        return self._active_connections

    @property
    def bound_port(self) -> int:
        """Actual listening port, resolved after start when port 0 was requested."""
        if self._server is not None and self._server.sockets:
            return int(self._server.sockets[0].getsockname()[1])
        return self._port

    async def start(self) -> None:
        """Start the WebSocket server.

        Raises:
            RuntimeError: If the transport fails to start
            OSError: If port binding fails
        """
        if self._running:
            raise RuntimeError("WebSocket transport is already running")

        logger.info("Starting WebSocket server", extra={"host": self._host, "port": self._port})

        try:
            self._server = await websockets.serve(
                self._handle_connection,
                self._host,
                self._port,
                max_size=self._max_message_bytes,
                ping_interval=self._ping_interval_s,
                ping_timeout=self._ping_timeout_s,
            )
            self._running = True

            logger.info(
                "WebSocket server started",
                extra={"host": self._host, "port": self.bound_port},
            )

        except OSError as e:
            logger.error(
                "Failed to bind WebSocket server",
                extra={"host": self._host, "port": self._port, "error": str(e)},
            )
            raise
        except Exception as e:
            logger.error("Failed to start WebSocket server", extra={"error": str(e)})
            raise RuntimeError(f"Failed to start WebSocket transport: {e}") from e

    async def stop(self) -> None:
        """Stop the WebSocket server and close all open links."""
        if not self._running:
            return

        logger.info("Stopping WebSocket server")
        self._running = False

        if self._server:
            self._server.close()
            await self._server.wait_closed()
            self._server = None

        logger.info("WebSocket server stopped")

    async def accept_connection(self) -> WebSocketParticipant:
        """Wait for the next participant connection.

        Raises:
            RuntimeError: If the transport is not running
        """
        if not self._running:
            raise RuntimeError("WebSocket transport is not running")

        return await self._connection_queue.get()

    async def _handle_connection(self, websocket: ServerConnection) -> None:
        """Handle an incoming WebSocket connection.

        Args:
            websocket: WebSocket connection
        """
        if self._active_connections >= self._max_connections:
            logger.warning(
                "Connection limit reached, rejecting",
                extra={"remote": websocket.remote_address, "limit": self._max_connections},
            )
            await websocket.close(CLOSE_TRY_AGAIN_LATER, "Server busy")
            return

        connection_id = f"p-{uuid.uuid4().hex[:12]}"
        participant = WebSocketParticipant(
            websocket, connection_id, send_queue_size=self._send_queue_size
        )

        self._active_connections += 1
        await self._connection_queue.put(participant)

        # Keep connection alive until closed
        try:
            await websocket.wait_closed()
        except Exception as e:
            logger.error(
                "Error in connection handler",
                extra={"participant_id": connection_id, "error": str(e)},
            )
        finally:
            self._active_connections -= 1
            logger.info("WebSocket connection closed", extra={"participant_id": connection_id})
