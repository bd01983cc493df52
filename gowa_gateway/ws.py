"""Bridge WebSocket connection setup."""

from __future__ import annotations

import websockets
from websockets.asyncio.client import ClientConnection
from websockets.exceptions import (
    InvalidHandshake,
    InvalidStatus,
    InvalidURI,
    WebSocketException,
)

from .errors import (
    ProtocolConnectionError,
    ProtocolHandshakeError,
    ProtocolTimeout,
)

DEVICE_HEADER = "X-Gowa-Device"

# Bridge frames carry small JSON-RPC payloads; media is out of scope
MAX_FRAME_SIZE = 1 << 20


def bridge_headers(device_id: str, token: str | None = None) -> dict[str, str]:
    """Handshake headers identifying the device, and authenticating when a token is set."""
    headers = {DEVICE_HEADER: device_id}
    if token:
        headers["Authorization"] = f"Bearer {token}"
    return headers


async def open_bridge_socket(
    url: str,
    device_id: str,
    *,
    token: str | None = None,
    open_timeout: float = 10.0,
    ping_interval: float | None = 30,
) -> ClientConnection:
    """Open the RPC socket to the bridge for ``device_id``.

    Raises:
        ProtocolTimeout: The handshake did not finish within ``open_timeout``
        ProtocolHandshakeError: The bridge rejected the handshake
        ProtocolConnectionError: The bridge could not be reached
    """
    try:
        return await websockets.connect(
            url,
            additional_headers=bridge_headers(device_id, token),
            open_timeout=open_timeout,
            ping_interval=ping_interval,
            max_size=MAX_FRAME_SIZE,
        )
    except TimeoutError as err:
        raise ProtocolTimeout(f"Bridge handshake timed out after {open_timeout}s") from err
    except InvalidStatus as err:
        status = err.response.status_code
        if status in (401, 403):
            raise ProtocolHandshakeError(f"Bridge refused credentials (HTTP {status})") from err
        raise ProtocolHandshakeError(f"Bridge rejected handshake (HTTP {status})") from err
    except (InvalidHandshake, InvalidURI) as err:
        raise ProtocolHandshakeError(f"Bridge handshake failed: {err}") from err
    except (OSError, WebSocketException) as err:
        raise ProtocolConnectionError(f"Bridge unreachable at {url}: {err}") from err
