"""Protocol client contract, pairing events and bridge frame helpers."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Protocol

DEFAULT_USER_SERVER = "s.whatsapp.net"


class PairingEventKind(Enum):
    """Events produced by a pairing stream."""

    CODE = "code"
    SUCCESS = "success"
    TIMEOUT = "timeout"
    ERROR = "error"


@dataclass(frozen=True, slots=True)
class PairingEvent:
    """One item of a pairing stream."""

    kind: PairingEventKind
    code: str = ""

    @classmethod
    def from_code(cls, code: str) -> PairingEvent:
        return cls(PairingEventKind.CODE, code)

    @property
    def is_terminal(self) -> bool:
        return self.kind is not PairingEventKind.CODE


@dataclass(frozen=True, slots=True)
class GatewayEvent:
    """Asynchronous lifecycle or message event from the protocol client."""

    name: str
    params: dict[str, Any] = field(default_factory=dict)


class PairingEventStream:
    """Ordered pairing challenge stream ending after its first terminal event."""

    _END: Any = object()

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._ended = False

    @property
    def ended(self) -> bool:
        return self._ended

    def push(self, event: PairingEvent) -> None:
        """Append an event. Ignored once the stream has ended."""
        if self._ended:
            return
        self._queue.put_nowait(event)
        if event.is_terminal:
            self.end()

    def end(self) -> None:
        """Close the stream. Consumers finish after draining queued events."""
        if self._ended:
            return
        self._ended = True
        self._queue.put_nowait(self._END)

    def __aiter__(self) -> AsyncIterator[PairingEvent]:
        return self._iter_events()

    async def _iter_events(self) -> AsyncIterator[PairingEvent]:
        while True:
            item = await self._queue.get()
            if item is self._END:
                self._queue.put_nowait(self._END)
                return
            yield item


EventHandler = Callable[[Any], None]


class ProtocolClient(Protocol):
    """Operations the gateway consumes from the multidevice client."""

    @property
    def is_connected(self) -> bool: ...

    @property
    def identity(self) -> str | None: ...

    def get_pairing_channel(self) -> PairingEventStream:
        """Prepare a pairing stream. Must be requested before ``connect``."""
        ...

    async def connect(self) -> None: ...

    async def disconnect(self) -> None: ...

    async def send_message(self, jid: str, body: str) -> str: ...

    async def logout(self) -> None: ...

    def add_event_handler(self, handler: EventHandler) -> None: ...


def normalize_phone(phone: str) -> str:
    """Strip a leading ``+``, spaces and hyphens from a phone number."""
    phone = phone.removeprefix("+")
    return phone.replace(" ", "").replace("-", "")


def build_user_jid(phone: str, server: str = DEFAULT_USER_SERVER) -> str:
    """Build the recipient address for a phone number."""
    return f"{normalize_phone(phone)}@{server}"


def build_request(
    method: str,
    request_id: int,
    params: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a JSON-RPC 2.0 request frame for the bridge."""
    frame: dict[str, Any] = {"jsonrpc": "2.0", "id": request_id, "method": method}
    if params:
        frame["params"] = params
    return frame


def is_notification(frame: dict[str, Any]) -> bool:
    """Return True for server-initiated event frames (method without id)."""
    return "method" in frame and frame.get("id") is None


def parse_response(frame: dict[str, Any]) -> tuple[Any, dict[str, Any] | None]:
    """Split a JSON-RPC response into ``(result, error)``."""
    error = frame.get("error")
    if error is not None and not isinstance(error, dict):
        error = {"code": -32603, "message": str(error)}
    return frame.get("result"), error
