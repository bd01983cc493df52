"""Gateway configuration loading.

Settings come from three layers, lowest priority first: built-in defaults,
an optional YAML file, and environment variables.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

CONFIG_FILE_ENV = "GOWA_CONFIG"
_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
DEFAULT_BRIDGE_URL = "ws://localhost:9400/ws/rpc"

# Environment variable -> config field
_ENV_FIELDS: dict[str, str] = {
    "PORT": "port",
    "HOST": "host",
    "SESSION_PATH": "session_path",
    "WEBHOOK_URL": "webhook_url",
    "BRIDGE_URL": "bridge_url",
    "BRIDGE_TOKEN": "bridge_token",
    "LOG_LEVEL": "log_level",
    "QR_TIMEOUT": "qr_timeout",
    "EVENT_BUFFER_SIZE": "event_buffer_size",
}


@dataclass(frozen=True, slots=True)
class GatewayConfig:
    """Process configuration for a single-account gateway."""

    port: int = 3000
    host: str = "0.0.0.0"
    session_path: Path = Path("./sessions")
    webhook_url: str | None = None
    bridge_url: str = DEFAULT_BRIDGE_URL
    bridge_token: str | None = None
    log_level: str = "INFO"
    qr_timeout: float = 60.0
    event_buffer_size: int = 100

    @property
    def database_path(self) -> Path:
        """Location of the credential store."""
        return self.session_path / "session.db"


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load YAML file with error handling."""
    if not path.exists():
        raise ConfigError(f"Config file not found: {path}")
    try:
        with path.open() as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as err:
        raise ConfigError(f"Invalid YAML in {path}: {err}") from err
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")
    return data


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw setting to the type of its config field."""
    if value is None or value == "":
        return None
    try:
        if name in ("port", "event_buffer_size"):
            number = int(value)
            if number <= 0:
                raise ValueError("must be positive")
            return number
        if name == "qr_timeout":
            timeout = float(value)
            if timeout <= 0:
                raise ValueError("must be positive")
            return timeout
    except (TypeError, ValueError) as err:
        raise ConfigError(f"Invalid value for {name}: {value!r} ({err})") from err
    if name == "session_path":
        return Path(value).expanduser()
    if name == "log_level":
        level = str(value).upper()
        if level not in _LOG_LEVELS:
            raise ConfigError(f"Invalid value for log_level: {value!r}")
        return level
    return str(value)


def load_config(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> GatewayConfig:
    """Build the gateway configuration.

    Args:
        path: Optional YAML config file. Falls back to ``$GOWA_CONFIG``.
        environ: Environment mapping, ``os.environ`` when omitted.

    Returns:
        Resolved GatewayConfig.

    Raises:
        ConfigError: If the file is unreadable or a value is malformed.
    """
    env = os.environ if environ is None else environ
    config = GatewayConfig()
    known = {f.name for f in fields(GatewayConfig)}

    file_path = path or env.get(CONFIG_FILE_ENV)
    if file_path:
        overrides: dict[str, Any] = {}
        for key, value in _load_yaml(Path(file_path)).items():
            if key not in known:
                raise ConfigError(f"Unknown config key: {key}")
            coerced = _coerce(key, value)
            if coerced is not None:
                overrides[key] = coerced
        config = replace(config, **overrides)

    env_overrides: dict[str, Any] = {}
    for env_name, field_name in _ENV_FIELDS.items():
        coerced = _coerce(field_name, env.get(env_name))
        if coerced is not None:
            env_overrides[field_name] = coerced
    return replace(config, **env_overrides)
