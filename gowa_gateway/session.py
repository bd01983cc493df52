"""Session coordinator for a single messaging account.

This module bridges the event-driven protocol client to the request/response
API of the HTTP facade. It handles:
- Connection and re-authentication
- Pairing: at most one attempt in flight, codes relayed in order
- Message send and logout, guarded by the live connection state
- Non-blocking, bounded buffering of client events
"""

from __future__ import annotations

import asyncio
import logging
import os
from typing import TYPE_CHECKING, Any

from .client import BridgeClient
from .errors import (
    ConnectError,
    DeviceError,
    LogoutError,
    NotConnectedError,
    ProtocolClientError,
    SendError,
    StorageError,
)
from .pairing import PairingChannel
from .protocol import PairingEventKind, build_user_jid
from .store import CredentialStore

if TYPE_CHECKING:
    from .config import GatewayConfig
    from .protocol import PairingEventStream, ProtocolClient

_LOGGER = logging.getLogger(__name__)

EVENT_BUFFER_SIZE = 100


class GatewaySession:
    """Owns the protocol client and exposes the gateway operations.

    Usage:
        gateway = await GatewaySession.from_config(config)
        channel = PairingChannel()
        await gateway.connect(channel)
        code = await channel.get()
        message_id = await gateway.send_message("+1 555-0100", "hi")
        await gateway.close()
    """

    def __init__(
        self,
        client: ProtocolClient,
        *,
        event_buffer_size: int = EVENT_BUFFER_SIZE,
        store: CredentialStore | None = None,
    ) -> None:
        """Initialize session.

        Args:
            client: Protocol client owned by this session for its lifetime
            event_buffer_size: Capacity of the client event buffer
            store: Credential store closed together with the session
        """
        self._client = client
        self._store = store

        self._events: asyncio.Queue[Any] = asyncio.Queue(maxsize=event_buffer_size)
        self._dropped_events = 0

        # Pairing
        self._connect_lock = asyncio.Lock()
        self._relay_task: asyncio.Task[None] | None = None
        self._pairing_channels: list[PairingChannel] = []
        self._last_code: str | None = None

        self._closed = False

        client.add_event_handler(self._handle_event)

    @classmethod
    async def from_config(cls, config: GatewayConfig) -> GatewaySession:
        """Open the credential store and build the session for its first device.

        Raises:
            StorageError: Session directory or credential store unavailable
            DeviceError: Device record could not be loaded
        """
        try:
            os.makedirs(config.session_path, mode=0o700, exist_ok=True)
        except OSError as err:
            raise StorageError(f"failed to create session directory: {err}") from err

        store = await CredentialStore.open(config.database_path)
        try:
            device = await store.get_first_device() or store.new_device()
        except DeviceError:
            await store.close()
            raise
        _LOGGER.info(
            "Loaded device %s (%s)", device.device_id, device.jid or "not paired"
        )

        client = BridgeClient(config.bridge_url, device, store, token=config.bridge_token)
        return cls(client, event_buffer_size=config.event_buffer_size, store=store)

    # -------------------------------------------------------------------------
    # Public API: Connection Management
    # -------------------------------------------------------------------------

    @property
    def is_connected(self) -> bool:
        """Live connection state of the protocol client."""
        return self._client.is_connected

    @property
    def jid(self) -> str:
        """Account identity, or an empty string before the first pairing."""
        return self._client.identity or ""

    @property
    def pairing_in_progress(self) -> bool:
        return self._relay_task is not None and not self._relay_task.done()

    async def connect(self, result: PairingChannel) -> None:
        """Connect, pairing first if the device has no identity.

        Returns once the connection attempt is accepted. Pairing codes then
        arrive on ``result`` followed by the completion sentinel. A channel
        that receives the sentinel without codes needed no pairing.

        Raises:
            ConnectError: Pairing stream request or connection attempt failed,
                or the session is closed
        """
        async with self._connect_lock:
            if self._closed:
                raise ConnectError("gateway closed")

            if self._client.is_connected:
                _LOGGER.debug("Already connected, no pairing needed")
                result.complete()
                return

            if self.pairing_in_progress:
                self._join_pairing(result)
                return

            if self._client.identity is None:
                await self._start_pairing(result)
                return

            try:
                await self._client.connect()
            except ProtocolClientError as err:
                _LOGGER.warning("Reconnect failed: %s", err)
                raise ConnectError(f"failed to connect: {err}") from err

            _LOGGER.info("Reconnected as %s", self._client.identity)
            result.complete()

    async def close(self) -> None:
        """Disconnect the client. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        _LOGGER.info("Closing gateway session")

        # Waits out an in-flight connect so its socket is torn down too
        async with self._connect_lock:
            if self._relay_task is not None:
                self._relay_task.cancel()
                try:
                    await self._relay_task
                except asyncio.CancelledError:
                    pass
                self._relay_task = None

            await self._client.disconnect()

        if self._store is not None:
            await self._store.close()

    # -------------------------------------------------------------------------
    # Public API: Messaging
    # -------------------------------------------------------------------------

    async def send_message(self, destination: str, body: str) -> str:
        """Send a text message to a phone number.

        Returns:
            Message identifier assigned by the client

        Raises:
            NotConnectedError: Client is not connected
            SendError: Dispatch failed
        """
        if not self._client.is_connected:
            raise NotConnectedError("client not connected")

        jid = build_user_jid(destination)
        try:
            message_id = await self._client.send_message(jid, body)
        except ProtocolClientError as err:
            _LOGGER.error("Failed to send message to %s: %s", jid, err)
            raise SendError(f"failed to send message: {err}") from err

        _LOGGER.debug("Sent message %s to %s", message_id, jid)
        return message_id

    async def logout(self) -> None:
        """Log out; the client invalidates the stored identity.

        Raises:
            NotConnectedError: Client is not connected
            LogoutError: Logout request failed
        """
        if not self._client.is_connected:
            raise NotConnectedError("client not connected")

        try:
            await self._client.logout()
        except ProtocolClientError as err:
            raise LogoutError(f"failed to logout: {err}") from err
        _LOGGER.info("Logged out")

    # -------------------------------------------------------------------------
    # Public API: Events
    # -------------------------------------------------------------------------

    @property
    def event_buffer(self) -> asyncio.Queue[Any]:
        return self._events

    @property
    def dropped_events(self) -> int:
        return self._dropped_events

    def _handle_event(self, event: Any) -> None:
        """Buffer a client event, dropping it when the buffer is full."""
        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull:
            self._dropped_events += 1

    # -------------------------------------------------------------------------
    # Internal: Pairing
    # -------------------------------------------------------------------------

    async def _start_pairing(self, result: PairingChannel) -> None:
        try:
            stream = self._client.get_pairing_channel()
        except ProtocolClientError as err:
            if self._client.is_connected:
                _LOGGER.debug("Pairing stream refused, client already connected")
                result.complete()
                return
            raise ConnectError(f"failed to get QR channel: {err}") from err

        try:
            await self._client.connect()
        except ProtocolClientError as err:
            stream.end()
            raise ConnectError(f"failed to connect: {err}") from err

        _LOGGER.info("Pairing started")
        self._last_code = None
        self._pairing_channels = [result]
        self._relay_task = asyncio.create_task(self._relay_pairing(stream))

    def _join_pairing(self, result: PairingChannel) -> None:
        _LOGGER.debug("Pairing in progress, joining")
        if self._last_code is not None:
            result.publish(self._last_code)
        self._pairing_channels.append(result)

    async def _relay_pairing(self, stream: PairingEventStream) -> None:
        """Forward pairing codes to every waiting channel until a terminal event."""
        error: ConnectError | None = None
        try:
            async for event in stream:
                if event.kind is PairingEventKind.CODE:
                    self._last_code = event.code
                    for channel in self._pairing_channels:
                        channel.publish(event.code)
                elif event.kind is PairingEventKind.SUCCESS:
                    _LOGGER.info("Pairing complete")
                    for channel in self._pairing_channels:
                        channel.complete()
                    return
                else:
                    _LOGGER.warning("Pairing ended: %s", event.kind.value)
                    error = ConnectError(f"pairing {event.kind.value}")
                    break
            if error is None:
                error = ConnectError("pairing stream closed")
        except asyncio.CancelledError:
            error = ConnectError("pairing cancelled")
            raise
        finally:
            if error is not None:
                for channel in self._pairing_channels:
                    channel.fail(error)
            self._pairing_channels = []
            self._last_code = None
