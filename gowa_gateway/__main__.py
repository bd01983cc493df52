"""Run the gateway: ``python -m gowa_gateway``."""

from __future__ import annotations

import logging
import sys

from aiohttp import web

from .config import GatewayConfig, load_config
from .errors import ConfigError, DeviceError, StorageError
from .server import create_app
from .session import GatewaySession

_LOGGER = logging.getLogger("gowa_gateway")


async def build_app(config: GatewayConfig) -> web.Application:
    """Open the session on the server's event loop and wrap it in the HTTP app."""
    gateway = await GatewaySession.from_config(config)
    return create_app(gateway, config)


def main() -> int:
    try:
        config = load_config()
    except ConfigError as err:
        logging.basicConfig(level=logging.INFO)
        _LOGGER.critical("Invalid configuration: %s", err)
        return 1

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if config.webhook_url:
        _LOGGER.info("Webhook delivery is not supported; ignoring %s", config.webhook_url)

    _LOGGER.info("Starting server on %s:%d", config.host, config.port)
    try:
        # run_app handles SIGINT/SIGTERM and runs the cleanup that closes the gateway
        web.run_app(
            build_app(config),
            host=config.host,
            port=config.port,
            print=None,
        )
    except (StorageError, DeviceError) as err:
        _LOGGER.critical("Failed to initialize gateway: %s", err)
        return 1

    _LOGGER.info("Shut down gracefully")
    return 0


if __name__ == "__main__":
    sys.exit(main())
