"""Error types for the gowa gateway."""

from __future__ import annotations


class GatewayError(Exception):
    """Base error for gateway operations."""


class ConfigError(GatewayError):
    """Configuration value is missing or malformed."""


class StorageError(GatewayError):
    """Session directory or credential store is unavailable."""


class DeviceError(GatewayError):
    """No usable device record could be loaded or created."""


class ConnectError(GatewayError):
    """Pairing stream request or connection attempt failed."""


class NotConnectedError(GatewayError):
    """Operation requires an active session."""


class SendError(GatewayError):
    """Message dispatch failed."""


class LogoutError(GatewayError):
    """Logout request failed."""


class ProtocolClientError(Exception):
    """Base error for protocol client failures."""


class ProtocolTimeout(ProtocolClientError):
    """Timeout while communicating with the bridge."""


class ProtocolConnectionError(ProtocolClientError):
    """Network connection to the bridge failed."""


class ProtocolHandshakeError(ProtocolClientError):
    """WebSocket handshake failed."""


class ProtocolResponseError(ProtocolClientError):
    """Bridge answered a request with an error."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
