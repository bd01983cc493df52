"""Pytest configuration and fixtures for gowa_gateway tests."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from typing import Any

import pytest

from gowa_gateway.pairing import PairingChannel
from gowa_gateway.protocol import PairingEvent, PairingEventKind, PairingEventStream

PAIRED_JID = "15550100@s.whatsapp.net"


class FakeProtocolClient:
    """In-memory protocol client with error injection."""

    def __init__(self, *, identity: str | None = None, connected: bool = False) -> None:
        self.identity = identity
        self.is_connected = connected
        self.handlers: list[Callable[[Any], None]] = []
        self.stream: PairingEventStream | None = None

        # Codes pushed onto the pairing stream when connect() is called
        self.codes_on_connect: list[str] = []

        self.pairing_error: Exception | None = None
        self.connect_error: Exception | None = None
        self.send_error: Exception | None = None
        self.logout_error: Exception | None = None

        self.pairing_requests = 0
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.logout_calls = 0
        self.sent: list[tuple[str, str]] = []

    def get_pairing_channel(self) -> PairingEventStream:
        self.pairing_requests += 1
        if self.pairing_error is not None:
            raise self.pairing_error
        self.stream = PairingEventStream()
        return self.stream

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.connect_error is not None:
            raise self.connect_error
        if self.identity is not None:
            self.is_connected = True
        elif self.stream is not None:
            for code in self.codes_on_connect:
                self.stream.push(PairingEvent.from_code(code))

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.is_connected = False
        if self.stream is not None:
            self.stream.end()

    async def send_message(self, jid: str, body: str) -> str:
        if self.send_error is not None:
            raise self.send_error
        self.sent.append((jid, body))
        return f"3EB0{len(self.sent):04d}"

    async def logout(self) -> None:
        self.logout_calls += 1
        if self.logout_error is not None:
            raise self.logout_error
        self.identity = None
        self.is_connected = False

    def add_event_handler(self, handler: Callable[[Any], None]) -> None:
        self.handlers.append(handler)

    # Test helpers

    def emit(self, event: Any) -> None:
        for handler in self.handlers:
            handler(event)

    def push_code(self, code: str) -> None:
        assert self.stream is not None
        self.stream.push(PairingEvent.from_code(code))

    def complete_pairing(self, jid: str = PAIRED_JID) -> None:
        assert self.stream is not None
        self.identity = jid
        self.is_connected = True
        self.stream.push(PairingEvent(PairingEventKind.SUCCESS))


@pytest.fixture
def fake_client() -> FakeProtocolClient:
    """Unpaired, disconnected client."""
    return FakeProtocolClient()


@pytest.fixture
def paired_client() -> FakeProtocolClient:
    """Client with a stored identity, not yet connected."""
    return FakeProtocolClient(identity=PAIRED_JID)


@pytest.fixture
def connected_client() -> FakeProtocolClient:
    return FakeProtocolClient(identity=PAIRED_JID, connected=True)


async def collect(channel: PairingChannel, timeout: float = 1.0) -> list[str]:
    """Read a pairing channel to its end."""

    async def _drain() -> list[str]:
        return [value async for value in channel]

    return await asyncio.wait_for(_drain(), timeout)


class FakeWebSocket:
    """Bridge WebSocket double.

    ``responder`` maps each request frame to the reply fields (``result`` or
    ``error``); returning None leaves the request unanswered.
    """

    def __init__(
        self, responder: Callable[[dict[str, Any]], dict[str, Any] | None] | None = None
    ) -> None:
        self.responder = responder
        self.sent: list[dict[str, Any]] = []
        self.closed = False
        self._incoming: asyncio.Queue[str | None] = asyncio.Queue()

    async def send(self, data: str) -> None:
        frame = json.loads(data)
        self.sent.append(frame)
        if self.responder is None:
            return
        reply = self.responder(frame)
        if reply is not None:
            self.feed({"jsonrpc": "2.0", "id": frame["id"], **reply})

    def feed(self, frame: dict[str, Any]) -> None:
        self._incoming.put_nowait(json.dumps(frame))

    def notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        self.feed({"jsonrpc": "2.0", "method": method, "params": params or {}})

    def drop(self) -> None:
        """Simulate the bridge closing the socket."""
        self._incoming.put_nowait(None)

    async def close(self) -> None:
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self._iter()

    async def _iter(self):
        while True:
            item = await self._incoming.get()
            if item is None:
                return
            yield item
