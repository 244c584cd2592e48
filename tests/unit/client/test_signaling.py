"""Unit tests for the signaling client."""

from unittest.mock import AsyncMock, MagicMock

import pytest
import websockets
from websockets.protocol import State

from paircall.client.signaling import SignalingClient
from paircall.protocol import FindMatchMessage, StartCallMessage, UserCountMessage


def test_handle_raw_dispatches_parsed_message() -> None:
    """Test valid frames reach the message callback as models."""
    received = []
    client = SignalingClient("ws://localhost:0", on_message=received.append)

    client.handle_raw('{"type": "start_call", "pair_id": "pair-abc"}')
    client.handle_raw(b'{"type": "user_count", "count": 2}')

    assert received == [StartCallMessage(pair_id="pair-abc"), UserCountMessage(count=2)]


def test_handle_raw_skips_invalid() -> None:
    """Test malformed frames are dropped without reaching the callback."""
    on_message = MagicMock()
    client = SignalingClient("ws://localhost:0", on_message=on_message)

    client.handle_raw("{not json")
    client.handle_raw('{"type": "find_match"}')

    on_message.assert_not_called()


@pytest.mark.asyncio
async def test_send_requires_connection() -> None:
    """Test sending while disconnected raises ConnectionError."""
    client = SignalingClient("ws://localhost:0", on_message=MagicMock())

    assert not client.is_connected
    with pytest.raises(ConnectionError):
        await client.send(FindMatchMessage())


@pytest.mark.asyncio
async def test_send_serializes_json() -> None:
    """Test messages are sent as their JSON form."""
    client = SignalingClient("ws://localhost:0", on_message=MagicMock())
    websocket = MagicMock()
    websocket.state = State.OPEN
    websocket.send = AsyncMock()
    client._websocket = websocket

    await client.send(FindMatchMessage())

    websocket.send.assert_awaited_once_with('{"type":"find_match"}')


@pytest.mark.asyncio
async def test_send_closed_mid_flight() -> None:
    """Test a close during send surfaces as ConnectionError."""
    client = SignalingClient("ws://localhost:0", on_message=MagicMock())
    websocket = MagicMock()
    websocket.state = State.OPEN
    websocket.send = AsyncMock(side_effect=websockets.exceptions.ConnectionClosed(None, None))
    client._websocket = websocket

    with pytest.raises(ConnectionError, match="closed"):
        await client.send(FindMatchMessage())


@pytest.mark.asyncio
async def test_run_gives_up_after_max_attempts() -> None:
    """Test the reconnect loop raises once the attempt budget is spent."""
    statuses: list[bool] = []
    client = SignalingClient(
        "ws://127.0.0.1:1",
        on_message=MagicMock(),
        on_status=statuses.append,
        reconnect_delay_s=0.01,
        max_reconnect_attempts=2,
    )

    with pytest.raises(ConnectionError, match="after 2 attempts"):
        await client.run()

    # Never connected, so no status changes were reported
    assert statuses == []
