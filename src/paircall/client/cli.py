"""Command-line client for the pairing coordinator.

Connects to a coordinator over WebSocket, joins the waiting queue and
prints everything the coordinator sends. Useful for checking a deployment
by hand: run two clients against the same server and they pair with each
other. No media is captured; ``/offer`` relays a text payload to the
partner so the signaling path can be exercised.
"""

import argparse
import asyncio
import logging
import signal
import sys
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

from pydantic import BaseModel

from paircall.client.config import ClientConfig, SignalingConfig
from paircall.client.signaling import SignalingClient
from paircall.protocol import (
    AnswerMessage,
    CallStartedMessage,
    CandidateMessage,
    EndChatMessage,
    ErrorMessage,
    FindMatchMessage,
    NextUserMessage,
    OfferMessage,
    StartCallMessage,
    UserCountMessage,
    UserDisconnectedMessage,
)
from paircall.utils.logging import setup_logging

logger = logging.getLogger(__name__)

HELP_TEXT = """
Commands:
  /find          - Join the waiting queue
  /end           - Leave the queue or current pair
  /offer <text>  - Relay a text offer to the partner
  /quit          - Exit client
  /help          - Show this help
"""


class CLIClient:
    """Interactive signaling console."""

    def __init__(self, config: SignalingConfig, auto_find: bool = True) -> None:
        """Initialize client.

        Args:
            config: Coordinator URL and reconnect policy
            auto_find: Join the queue as soon as the link comes up
        """
        self.server_url = config.server_url
        self.auto_find = auto_find
        self.running = True
        self.pair_id: str | None = None
        self.signaling = SignalingClient.from_config(
            config,
            on_message=self.handle_message,
            on_status=self.handle_status,
        )
        self._pending: set[asyncio.Task[None]] = set()

    def handle_status(self, connected: bool) -> None:
        if connected:
            print(f"\n🔗 Connected to {self.server_url}")
            if self.auto_find:
                self._spawn(self.send(FindMatchMessage()))
        else:
            print("\n⚠ Disconnected from coordinator")

    def handle_message(self, message: BaseModel) -> None:
        """Print one coordinator message."""
        if isinstance(message, UserCountMessage):
            print(f"\n👥 {message.count} online")
        elif isinstance(message, StartCallMessage):
            self.pair_id = message.pair_id
            print(f"\n📞 Paired as initiator ({message.pair_id})")
        elif isinstance(message, CallStartedMessage):
            self.pair_id = message.pair_id
            print(f"\n📞 Paired as receiver ({message.pair_id})")
        elif isinstance(message, NextUserMessage):
            print("\n✓ Stranger found")
        elif isinstance(message, UserDisconnectedMessage):
            self.pair_id = None
            print("\n✗ Partner disconnected")
        elif isinstance(message, OfferMessage | AnswerMessage | CandidateMessage):
            print(f"\n⇄ {message.type}: {message.payload!r}")
            if isinstance(message, OfferMessage):
                self._spawn(self.send(AnswerMessage(payload={"echo": message.payload})))
        elif isinstance(message, ErrorMessage):
            print(f"\n❌ Error [{message.code}]: {message.message}")
        else:
            logger.warning(f"Unknown message type: {type(message).__name__}")

    async def send(self, message: BaseModel) -> None:
        try:
            await self.signaling.send(message)
        except ConnectionError as e:
            logger.error(f"Send failed: {e}")

    async def handle_command(self, line: str) -> None:
        """Apply one line of user input."""
        command, _, argument = line.partition(" ")
        command = command.lower()

        if command == "/quit":
            self.running = False
        elif command == "/help":
            print(HELP_TEXT)
        elif command == "/find":
            await self.send(FindMatchMessage())
        elif command == "/end":
            self.pair_id = None
            await self.send(EndChatMessage())
        elif command == "/offer":
            await self.send(OfferMessage(payload={"text": argument}))
        else:
            print(f"Unknown command: {command}")
            print("Type /help for available commands")

    async def input_loop(self) -> None:
        print(HELP_TEXT)
        loop = asyncio.get_running_loop()

        while self.running:
            try:
                line = await loop.run_in_executor(None, input, "> ")
            except EOFError:
                self.running = False
                break

            line = line.strip()
            if line:
                await self.handle_command(line)

        await self.signaling.stop()

    async def run(self, duration_s: float | None = None) -> None:
        """Run the client until /quit, a signal, or ``duration_s`` elapses."""
        loop = asyncio.get_running_loop()

        def signal_handler() -> None:
            self.running = False
            self._spawn(self.signaling.stop())

        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, signal_handler)

        try:
            if duration_s is not None:
                # Non-interactive: stay connected for a fixed time
                signaling_task = asyncio.create_task(self.signaling.run())
                try:
                    await asyncio.wait_for(asyncio.shield(signaling_task), timeout=duration_s)
                except asyncio.TimeoutError:
                    await self.signaling.stop()
                    await signaling_task
            else:
                await asyncio.gather(self.signaling.run(), self.input_loop())
        finally:
            for sig in (signal.SIGINT, signal.SIGTERM):
                loop.remove_signal_handler(sig)

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)


def main() -> None:
    """Main entry point for the client."""
    parser = argparse.ArgumentParser(description="Signaling console for the pairing coordinator")
    parser.add_argument(
        "--config",
        type=Path,
        default=Path("configs") / "client.yaml",
        help="Path to client config YAML file (defaults are used if missing)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Coordinator WebSocket URL, overriding the config file",
    )
    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Stay connected for this many seconds without reading input",
    )
    parser.add_argument(
        "--no-find",
        action="store_true",
        help="Do not join the queue automatically on connect",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")

    args = parser.parse_args()
    setup_logging("DEBUG" if args.verbose else "INFO")

    config = ClientConfig.from_yaml_with_defaults(args.config)
    if args.host:
        config.signaling.server_url = args.host

    client = CLIClient(config.signaling, auto_find=not args.no_find)
    try:
        asyncio.run(client.run(args.duration))
    except KeyboardInterrupt:
        print("\nExiting...")
        sys.exit(0)
    except ConnectionError as e:
        logger.error(f"CLI failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
