"""HTTP API for the gateway."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from aiohttp import web
from qrcode.exceptions import DataOverflowError

from .config import GatewayConfig
from .errors import ConnectError, LogoutError, NotConnectedError, SendError
from .pairing import PAIRING_COMPLETE, PairingChannel
from .qr import qr_code_to_base64
from .session import GatewaySession

_LOGGER = logging.getLogger(__name__)

SERVICE_NAME = "gowa"
MAX_MESSAGE_LENGTH = 4096

GATEWAY_KEY = web.AppKey("gateway", GatewaySession)
CONFIG_KEY = web.AppKey("config", GatewayConfig)

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"error": message}, status=status)


@web.middleware
async def recover_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Turn unexpected handler exceptions into a JSON 500."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as err:
        _LOGGER.exception("Unhandled error on %s %s: %s", request.method, request.path, err)
        return _error(500, "Internal server error")


async def handle_health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok", "service": SERVICE_NAME})


async def handle_qr(request: web.Request) -> web.Response:
    """Start pairing and return the current QR code."""
    gateway = request.app[GATEWAY_KEY]
    config = request.app[CONFIG_KEY]

    if gateway.is_connected:
        return _error(400, "Already connected")

    channel = PairingChannel()
    try:
        await gateway.connect(channel)
        code = await asyncio.wait_for(channel.get(), config.qr_timeout)
    except ConnectError as err:
        return _error(500, str(err))
    except TimeoutError:
        _LOGGER.warning("No QR code within %.0fs", config.qr_timeout)
        return _error(504, "Timed out waiting for QR code")

    if code == PAIRING_COMPLETE:
        return web.json_response({"status": "connected"})

    try:
        qr_image = qr_code_to_base64(code)
    except (DataOverflowError, ValueError, OSError) as err:
        _LOGGER.error("QR encoding failed: %s", err)
        return _error(500, "Failed to generate QR code")

    return web.json_response({"qr_code": code, "qr_image": qr_image})


async def handle_status(request: web.Request) -> web.Response:
    gateway = request.app[GATEWAY_KEY]
    connected = gateway.is_connected
    return web.json_response(
        {"connected": connected, "jid": gateway.jid if connected else ""}
    )


async def _read_body(request: web.Request) -> dict[str, Any] | None:
    """Parse a JSON or form body; None when unparsable."""
    if request.content_type in ("application/x-www-form-urlencoded", "multipart/form-data"):
        return dict(await request.post())
    try:
        data = await request.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


async def handle_send(request: web.Request) -> web.Response:
    gateway = request.app[GATEWAY_KEY]

    if not gateway.is_connected:
        return _error(400, "Not connected")

    body = await _read_body(request)
    if body is None:
        return _error(400, "Invalid request body")

    phone = body.get("phone")
    message = body.get("message")
    if not isinstance(phone, str) or not isinstance(message, str) or not phone or not message:
        return _error(400, "Phone and message are required")
    if len(message) > MAX_MESSAGE_LENGTH:
        return _error(400, f"Message exceeds {MAX_MESSAGE_LENGTH} characters")

    try:
        message_id = await gateway.send_message(phone, message)
    except NotConnectedError:
        return _error(400, "Not connected")
    except SendError as err:
        return _error(500, str(err))

    return web.json_response({"status": "sent", "message_id": message_id})


async def handle_logout(request: web.Request) -> web.Response:
    gateway = request.app[GATEWAY_KEY]

    if not gateway.is_connected:
        return _error(400, "Not connected")

    try:
        await gateway.logout()
    except NotConnectedError:
        return _error(400, "Not connected")
    except LogoutError as err:
        return _error(500, str(err))

    return web.json_response({"status": "logged out"})


async def _close_gateway(app: web.Application) -> None:
    await app[GATEWAY_KEY].close()


def create_app(gateway: GatewaySession, config: GatewayConfig) -> web.Application:
    """Build the aiohttp application serving ``gateway``."""
    app = web.Application(middlewares=[recover_middleware])
    app[GATEWAY_KEY] = gateway
    app[CONFIG_KEY] = config

    app.router.add_get("/health", handle_health)
    app.router.add_get("/qr", handle_qr)
    app.router.add_get("/status", handle_status)
    app.router.add_post("/send", handle_send)
    app.router.add_post("/logout", handle_logout)

    app.on_cleanup.append(_close_gateway)
    return app
