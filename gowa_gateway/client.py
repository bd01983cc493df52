"""JSON-RPC client for the multidevice bridge service.

The bridge owns the protocol handshake and encryption. This client opens a
WebSocket to it, issues ``connect``/``send``/``logout`` requests and turns
server notifications into pairing events and gateway events.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Awaitable
from typing import TYPE_CHECKING, Any

from websockets.exceptions import ConnectionClosed

from .errors import (
    DeviceError,
    ProtocolClientError,
    ProtocolConnectionError,
    ProtocolResponseError,
    ProtocolTimeout,
)
from .protocol import (
    EventHandler,
    GatewayEvent,
    PairingEvent,
    PairingEventKind,
    PairingEventStream,
    build_request,
    is_notification,
    parse_response,
)
from .ws import open_bridge_socket

if TYPE_CHECKING:
    from websockets.asyncio.client import ClientConnection

    from .store import CredentialStore, DeviceRecord

_LOGGER = logging.getLogger(__name__)


class BridgeClient:
    """Protocol client for one device, backed by a bridge WebSocket."""

    def __init__(
        self,
        url: str,
        device: DeviceRecord,
        store: CredentialStore,
        *,
        token: str | None = None,
        request_timeout: float = 30.0,
        connect_timeout: float = 10.0,
    ) -> None:
        self.url = url
        self.device = device
        self._store = store
        self._token = token
        self._request_timeout = request_timeout
        self._connect_timeout = connect_timeout

        self._ws: ClientConnection | None = None
        self._recv_task: asyncio.Task[None] | None = None
        self._request_id = 0
        self._pending: dict[int, asyncio.Future[dict[str, Any]]] = {}
        self._connected = False
        self._pairing: PairingEventStream | None = None
        self._handlers: list[EventHandler] = []
        self._store_writes: set[asyncio.Task[None]] = set()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """True while the account session on the bridge is logged in."""
        return self._ws is not None and self._connected

    @property
    def identity(self) -> str | None:
        return self.device.jid

    def add_event_handler(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def get_pairing_channel(self) -> PairingEventStream:
        """Prepare the pairing stream for the next ``connect``."""
        if self.device.jid is not None:
            raise ProtocolClientError("Device already has a stored identity")
        if self.is_connected:
            raise ProtocolClientError("Client is already connected")
        if self._pairing is not None:
            self._pairing.end()
        self._pairing = PairingEventStream()
        return self._pairing

    async def connect(self) -> None:
        """Open the bridge socket and log the device in."""
        if self._ws is None:
            _LOGGER.info("[%s] Connecting to %s", self.device.device_id, self.url)
            self._ws = await open_bridge_socket(
                self.url,
                self.device.device_id,
                token=self._token,
                open_timeout=self._connect_timeout,
            )
            self._recv_task = asyncio.create_task(self._receive_loop())

        try:
            result = await self._call(
                "connect",
                {
                    "device_id": self.device.device_id,
                    "jid": self.device.jid,
                    "auth": self.device.auth_token,
                },
            )
        except ProtocolClientError:
            await self._close_socket()
            raise

        if isinstance(result, dict) and result.get("connected"):
            self._connected = True
            _LOGGER.info("[%s] Connected as %s", self.device.device_id, self.device.jid)

    async def disconnect(self) -> None:
        """Close the bridge socket. Safe to call when not connected."""
        if self._ws is not None or self._recv_task is not None:
            _LOGGER.info("[%s] Disconnecting", self.device.device_id)
            await self._close_socket()
        await self._flush_store_writes()

    async def send_message(self, jid: str, body: str) -> str:
        """Send a text message and return the message id."""
        result = await self._call("send", {"to": jid, "text": body})
        if not isinstance(result, dict) or not result.get("message_id"):
            raise ProtocolResponseError(-32603, "Bridge returned no message id")
        return str(result["message_id"])

    async def logout(self) -> None:
        """Log the device out and forget its stored identity."""
        await self._call("logout")
        self._connected = False
        await self._write_store(self._store.clear_identity(self.device), "clear identity")
        _LOGGER.info("[%s] Logged out", self.device.device_id)

    # -------------------------------------------------------------------------
    # Internal: Requests
    # -------------------------------------------------------------------------

    async def _call(self, method: str, params: dict[str, Any] | None = None) -> Any:
        if self._ws is None:
            raise ProtocolConnectionError("Bridge WebSocket is not connected")

        self._request_id += 1
        request_id = self._request_id
        future: asyncio.Future[dict[str, Any]] = (
            asyncio.get_running_loop().create_future()
        )
        self._pending[request_id] = future

        try:
            await self._ws.send(json.dumps(build_request(method, request_id, params)))
            _LOGGER.debug("[%s] Request %s id=%d", self.device.device_id, method, request_id)
            frame = await asyncio.wait_for(future, self._request_timeout)
        except TimeoutError as err:
            raise ProtocolTimeout(
                f"Request '{method}' timed out after {self._request_timeout}s"
            ) from err
        except ConnectionClosed as err:
            raise ProtocolConnectionError(f"Connection lost during '{method}'") from err
        finally:
            self._pending.pop(request_id, None)

        result, error = parse_response(frame)
        if error is not None:
            raise ProtocolResponseError(
                int(error.get("code", -32603)), str(error.get("message", "RPC error"))
            )
        return result

    # -------------------------------------------------------------------------
    # Internal: Receive loop
    # -------------------------------------------------------------------------

    async def _receive_loop(self) -> None:
        ws = self._ws
        if ws is None:
            return

        try:
            async for raw in ws:
                if isinstance(raw, bytes):
                    continue
                try:
                    frame = json.loads(raw)
                except ValueError as err:
                    _LOGGER.warning("[%s] Invalid frame: %s", self.device.device_id, err)
                    continue
                if not isinstance(frame, dict):
                    continue

                if is_notification(frame):
                    params = frame.get("params")
                    self._handle_notification(
                        str(frame["method"]), params if isinstance(params, dict) else {}
                    )
                    continue

                request_id = frame.get("id")
                if not isinstance(request_id, int) or isinstance(request_id, bool):
                    _LOGGER.warning(
                        "[%s] Response with invalid id: %r", self.device.device_id, request_id
                    )
                    continue
                future = self._pending.get(request_id)
                if future is not None and not future.done():
                    future.set_result(frame)

        except asyncio.CancelledError:
            raise
        except ConnectionClosed as err:
            _LOGGER.info("[%s] Bridge closed connection: %s", self.device.device_id, err)
        except Exception as err:
            _LOGGER.exception("[%s] Receive loop error: %s", self.device.device_id, err)
        finally:
            self._on_socket_lost(ws)

    def _on_socket_lost(self, ws: ClientConnection) -> None:
        if self._ws is not ws:
            return
        was_connected = self._connected
        self._ws = None
        self._recv_task = None
        self._connected = False
        self._end_pairing()
        self._fail_pending()
        if was_connected:
            self._dispatch(GatewayEvent("event.disconnected", {"reason": "socket closed"}))

    async def _close_socket(self) -> None:
        ws, task = self._ws, self._recv_task
        self._ws = None
        self._recv_task = None
        self._connected = False
        self._end_pairing()
        self._fail_pending()

        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        if ws is not None:
            try:
                await asyncio.wait_for(ws.close(), timeout=2.0)
            except TimeoutError:
                _LOGGER.warning("[%s] WebSocket close timed out", self.device.device_id)

    # -------------------------------------------------------------------------
    # Internal: Notifications
    # -------------------------------------------------------------------------

    def _handle_notification(self, method: str, params: dict[str, Any]) -> None:
        _LOGGER.debug("[%s] Event %s", self.device.device_id, method)

        if method == "event.qr_code":
            code = params.get("code")
            if code and self._pairing is not None:
                self._pairing.push(PairingEvent.from_code(str(code)))

        elif method == "event.pair_success":
            self.device.jid = params.get("jid")
            self.device.auth_token = params.get("auth")
            self._schedule_store_write(self._store.save_device(self.device), "store pairing")
            _LOGGER.info("[%s] Paired as %s", self.device.device_id, self.device.jid)

        elif method == "event.connected":
            self._connected = True
            if self._pairing is not None:
                self._pairing.push(PairingEvent(PairingEventKind.SUCCESS))
                self._pairing = None

        elif method == "event.pair_timeout":
            if self._pairing is not None:
                self._pairing.push(PairingEvent(PairingEventKind.TIMEOUT))
                self._pairing = None

        elif method == "event.pair_error":
            _LOGGER.error(
                "[%s] Pairing failed: %s", self.device.device_id, params.get("error")
            )
            if self._pairing is not None:
                self._pairing.push(PairingEvent(PairingEventKind.ERROR))
                self._pairing = None

        elif method == "event.disconnected":
            self._connected = False

        elif method == "event.logged_out":
            _LOGGER.warning(
                "[%s] Logged out by server: %s", self.device.device_id, params.get("reason")
            )
            self._connected = False
            self._forget_identity()

        self._dispatch(GatewayEvent(method, params))

    def _forget_identity(self) -> None:
        self.device.jid = None
        self.device.auth_token = None
        self._schedule_store_write(self._store.clear_identity(self.device), "clear identity")

    # -------------------------------------------------------------------------
    # Internal: Credential writes
    # -------------------------------------------------------------------------

    async def _write_store(self, write: Awaitable[None], action: str) -> None:
        try:
            await write
        except DeviceError as err:
            _LOGGER.error("[%s] Failed to %s: %s", self.device.device_id, action, err)

    def _schedule_store_write(self, write: Awaitable[None], action: str) -> None:
        """Run a store write without holding up the receive loop."""
        task = asyncio.create_task(self._write_store(write, action))
        self._store_writes.add(task)
        task.add_done_callback(self._store_writes.discard)

    async def _flush_store_writes(self) -> None:
        if self._store_writes:
            await asyncio.gather(*self._store_writes, return_exceptions=True)

    def _fail_pending(self) -> None:
        for future in self._pending.values():
            if not future.done():
                future.set_exception(ProtocolConnectionError("Bridge connection lost"))

    def _end_pairing(self) -> None:
        if self._pairing is not None:
            self._pairing.end()
            self._pairing = None

    def _dispatch(self, event: GatewayEvent) -> None:
        for handler in self._handlers:
            try:
                handler(event)
            except Exception as err:
                _LOGGER.exception(
                    "[%s] Event handler error: %s", self.device.device_id, err
                )
