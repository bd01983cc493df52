"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from gowa_gateway.config import DEFAULT_BRIDGE_URL, GatewayConfig, load_config
from gowa_gateway.errors import ConfigError


def test_defaults():
    config = load_config(environ={})

    assert config == GatewayConfig()
    assert config.port == 3000
    assert config.session_path == Path("./sessions")
    assert config.webhook_url is None
    assert config.bridge_url == DEFAULT_BRIDGE_URL
    assert config.bridge_token is None
    assert config.database_path == Path("./sessions/session.db")


def test_environment_overrides():
    config = load_config(
        environ={
            "PORT": "8080",
            "SESSION_PATH": "/var/lib/gowa",
            "WEBHOOK_URL": "https://example.com/hook",
            "LOG_LEVEL": "debug",
            "QR_TIMEOUT": "15",
            "EVENT_BUFFER_SIZE": "10",
            "BRIDGE_TOKEN": "s3cret",
        }
    )

    assert config.port == 8080
    assert config.session_path == Path("/var/lib/gowa")
    assert config.webhook_url == "https://example.com/hook"
    assert config.log_level == "DEBUG"
    assert config.qr_timeout == 15.0
    assert config.event_buffer_size == 10
    assert config.bridge_token == "s3cret"


def test_empty_environment_values_ignored():
    config = load_config(environ={"PORT": "", "SESSION_PATH": ""})
    assert config.port == 3000
    assert config.session_path == Path("./sessions")


def test_yaml_file_then_environment(tmp_path):
    config_file = tmp_path / "gowa.yaml"
    config_file.write_text("port: 4000\nbridge_url: ws://bridge:9400/ws/rpc\n")

    config = load_config(environ={"GOWA_CONFIG": str(config_file), "PORT": "5000"})

    assert config.port == 5000
    assert config.bridge_url == "ws://bridge:9400/ws/rpc"


def test_explicit_path(tmp_path):
    config_file = tmp_path / "gowa.yaml"
    config_file.write_text("session_path: /data/sessions\n")

    config = load_config(config_file, environ={})

    assert config.session_path == Path("/data/sessions")


@pytest.mark.parametrize(
    ("content", "message"),
    [
        ("port: [1, 2]\n", "Invalid value for port"),
        ("colour: blue\n", "Unknown config key"),
        ("- a\n- b\n", "must contain a mapping"),
        ("port: [\n", "Invalid YAML"),
    ],
)
def test_invalid_file(tmp_path, content, message):
    config_file = tmp_path / "gowa.yaml"
    config_file.write_text(content)

    with pytest.raises(ConfigError, match=message):
        load_config(config_file, environ={})


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "missing.yaml", environ={})


@pytest.mark.parametrize(
    "environ",
    [{"PORT": "abc"}, {"PORT": "-1"}, {"QR_TIMEOUT": "0"}, {"LOG_LEVEL": "loud"}],
)
def test_invalid_environment(environ):
    with pytest.raises(ConfigError):
        load_config(environ=environ)
