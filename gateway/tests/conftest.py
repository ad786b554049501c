"""
Shared test fixtures for gateway tests.

Provides environment isolation for GatewaySettings, JSON config file
fixtures, and a SensorSpec factory.

CHANGELOG:
- 2026-10-07: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import json
from collections.abc import Callable
from pathlib import Path

import pytest
from gateway.src.config import SensorSpec

# All GatewaySettings environment variable names, used for cleanup.
_ALL_GATEWAY_ENV_VARS = (
    "MODBUS_CONFIG_PATH",
    "MQTT_CONFIG_PATH",
    "LOG_CONFIG_PATH",
    "LOG_LEVEL",
    "HEALTH_PATH",
    "QUEUE_SIZE",
)


@pytest.fixture(autouse=True)
def _clean_gateway_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Remove all gateway env vars and isolate from .env files before each test.

    Changes working directory to tmp_path so no .env file or config/
    directory is accidentally picked up.
    """
    for var in _ALL_GATEWAY_ENV_VARS:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture()
def make_sensor() -> Callable[..., SensorSpec]:
    """Return a factory building SensorSpec instances with sensible defaults."""

    def _make(**overrides: object) -> SensorSpec:
        fields: dict[str, object] = {
            "register_name": "voltage_l1",
            "slave_id": 1,
            "modbus_address": 100,
            "data_type": "uint16",
            "size": 1,
            "ip": "192.168.1.50",
        }
        fields.update(overrides)
        return SensorSpec(**fields)

    return _make


@pytest.fixture()
def modbus_config_dict() -> dict[str, object]:
    """A valid Modbus config document with two sensors."""
    return {
        "polling_interval": 10,
        "timeout": 3,
        "sensors": [
            {
                "register_name": "voltage_l1",
                "slave_id": 1,
                "modbus_address": 100,
                "data_type": "uint16",
                "size": 1,
                "ip": "192.168.1.50",
            },
            {
                "register_name": "energy_total",
                "slave_id": 2,
                "modbus_address": 200,
                "data_type": "float32",
                "size": 2,
                "ip": "192.168.1.51",
            },
        ],
    }


@pytest.fixture()
def mqtt_config_dict() -> dict[str, object]:
    """A valid plaintext MQTT config document."""
    return {
        "hostname": "broker.example.com",
        "port": 1883,
        "username": "gateway",
        "password": "s3cret-password",
        "qos": 1,
        "cert": "",
        "topic": "plant/line1/telemetry",
    }


@pytest.fixture()
def write_json(tmp_path: Path) -> Callable[[str, object], Path]:
    """Return a helper writing a JSON document to tmp_path/<name>."""

    def _write(name: str, document: object) -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(document))
        return path

    return _write
