"""Integration test fixtures.

Provides a real coordinator bound to an ephemeral port and a factory for
plain WebSocket clients connected to it.
"""

import logging
from collections.abc import AsyncIterator

import pytest_asyncio
import websockets
from websockets.asyncio.client import ClientConnection

from paircall.coordinator.config import CoordinatorConfig
from paircall.coordinator.metrics import MetricsCollector
from paircall.coordinator.server import CoordinatorServer
from tests.helpers.coordinator_fakes import ClientFactory

logger = logging.getLogger(__name__)


@pytest_asyncio.fixture
async def coordinator_server() -> AsyncIterator[CoordinatorServer]:
    """Coordinator on 127.0.0.1 with an ephemeral port and no health endpoint."""
    config = CoordinatorConfig.model_validate(
        {
            "websocket": {"host": "127.0.0.1", "port": 0},
            "health": {"enabled": False},
            "sweeper": {"enabled": False},
            "graceful_shutdown_timeout_s": 2.0,
        }
    )
    server = CoordinatorServer(config, metrics=MetricsCollector())
    await server.start()
    logger.info(f"Test coordinator listening on port {server.port}")

    yield server

    await server.stop()


@pytest_asyncio.fixture
async def open_client(coordinator_server: CoordinatorServer) -> AsyncIterator[ClientFactory]:
    """Factory opening WebSocket clients that are closed after the test."""
    clients: list[ClientConnection] = []

    async def _open() -> ClientConnection:
        client = await websockets.connect(f"ws://127.0.0.1:{coordinator_server.port}")
        clients.append(client)
        return client

    yield _open

    for client in clients:
        await client.close()

