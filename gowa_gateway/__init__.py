"""Single-account messaging gateway with a synchronous HTTP API."""

__version__ = "0.1.0"

from .config import GatewayConfig, load_config
from .errors import (
    ConfigError,
    ConnectError,
    DeviceError,
    GatewayError,
    LogoutError,
    NotConnectedError,
    ProtocolClientError,
    ProtocolConnectionError,
    ProtocolHandshakeError,
    ProtocolResponseError,
    ProtocolTimeout,
    SendError,
    StorageError,
)
from .pairing import PAIRING_COMPLETE, PairingChannel
from .protocol import (
    GatewayEvent,
    PairingEvent,
    PairingEventKind,
    PairingEventStream,
    ProtocolClient,
    build_user_jid,
    normalize_phone,
)
from .session import GatewaySession

__all__ = [
    "PAIRING_COMPLETE",
    "ConfigError",
    "ConnectError",
    "DeviceError",
    "GatewayConfig",
    "GatewayError",
    "GatewayEvent",
    "GatewaySession",
    "LogoutError",
    "NotConnectedError",
    "PairingChannel",
    "PairingEvent",
    "PairingEventKind",
    "PairingEventStream",
    "ProtocolClient",
    "ProtocolClientError",
    "ProtocolConnectionError",
    "ProtocolHandshakeError",
    "ProtocolResponseError",
    "ProtocolTimeout",
    "SendError",
    "StorageError",
    "__version__",
    "build_user_jid",
    "load_config",
    "normalize_phone",
]
