"""
Gateway configuration: JSON config files plus environment settings.

Three JSON files describe the deployment:

- ``modbus_config.json`` -- polling interval, per-read timeout, sensor list.
- ``mqtt_config.json`` -- broker address, credentials, QoS, TLS trust root,
  target topic.
- ``log_config.json`` -- log4js-style ``appenders.file`` block with file
  name, rotation size (bytes), backup count and compression flag.

Where those files live, and a few process-level knobs, come from environment
variables (or a ``.env`` file) via :class:`GatewaySettings`.

CHANGELOG:
- 2026-10-12: Add LogConfig parsing for the appenders.file block
- 2026-10-07: Initial creation (STORY-001)

TODO:
- None
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings

DEFAULT_POLLING_INTERVAL_S: float = 5.0
"""Polling interval used when the config leaves it unset or non-positive."""

DEFAULT_TIMEOUT_S: float = 2.0
"""Per-read Modbus timeout used when the config leaves it unset or non-positive."""


class ConfigError(ValueError):
    """A configuration file is missing, unreadable or invalid."""


# ---------------------------------------------------------------------------
# Modbus
# ---------------------------------------------------------------------------


class SensorSpec(BaseModel):
    """Static description of one polled register.

    Attributes:
        register_name: Unique human-readable label, used as the envelope's
            ``register`` field.
        slave_id: Modbus unit identifier behind the TCP endpoint.
        modbus_address: Holding register start address.
        data_type: Decoder type tag (``"uint16"``, ``"float32"``, ``"bcd"``...).
            Unknown tags are accepted and decode to raw bytes.
        size: Number of 16-bit registers to read.
        ip: Device IP address or hostname (port 502 is implied).
    """

    model_config = ConfigDict(frozen=True)

    register_name: str = Field(min_length=1)
    slave_id: int = Field(ge=0, le=255)
    modbus_address: int = Field(ge=0, le=65535)
    data_type: str
    size: int = Field(ge=1, le=125)
    ip: str = Field(min_length=1)


class ModbusConfig(BaseModel):
    """Polling parameters and the ordered sensor list.

    ``polling_interval`` and ``timeout`` are whole seconds; zero or a
    negative value selects the default.
    """

    polling_interval: int = 0
    timeout: int = 0
    sensors: list[SensorSpec] = Field(default_factory=list)

    @field_validator("sensors")
    @classmethod
    def register_names_must_be_unique(cls, v: list[SensorSpec]) -> list[SensorSpec]:
        """Reject duplicate register names; they label the published readings."""
        seen: set[str] = set()
        for sensor in v:
            if sensor.register_name in seen:
                raise ValueError(f"duplicate register_name '{sensor.register_name}'")
            seen.add(sensor.register_name)
        return v

    @property
    def interval_s(self) -> float:
        """Effective polling interval in seconds."""
        if self.polling_interval > 0:
            return float(self.polling_interval)
        return DEFAULT_POLLING_INTERVAL_S

    @property
    def timeout_s(self) -> float:
        """Effective per-read timeout in seconds."""
        if self.timeout > 0:
            return float(self.timeout)
        return DEFAULT_TIMEOUT_S


# ---------------------------------------------------------------------------
# MQTT
# ---------------------------------------------------------------------------


class MqttConfig(BaseModel):
    """Broker session parameters.

    Attributes:
        hostname: Broker host.
        port: Broker port (1883 plaintext, 8883 TLS by convention).
        username: Optional user name; empty disables authentication.
        password: Password for *username*.
        qos: MQTT QoS level used for every publish (0, 1 or 2).
        cert: Path to a PEM trust-root (CA) file.  When set, the session
            uses TLS; when empty, plaintext TCP.
        topic: Fixed topic every reading is published to.
        client_id: MQTT client identifier; empty lets the broker assign one.
    """

    hostname: str = Field(min_length=1)
    port: int = Field(default=1883, ge=1, le=65535)
    username: str = ""
    password: str = ""
    qos: int = Field(default=0, ge=0, le=2)
    cert: str = ""
    topic: str = Field(min_length=1)
    client_id: str = ""

    @property
    def use_tls(self) -> bool:
        """True when a trust-root certificate path is configured."""
        return bool(self.cert)


# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------


class LogConfig(BaseModel):
    """Log sink parameters.

    Attributes:
        filename: Log file path.
        max_bytes: Rotate once the file reaches this size.
        backups: Number of rotated files to keep.
        compress: Gzip rotated files.
        log_to_file: Write to *filename* in addition to stderr.
    """

    filename: str = "app.log"
    max_bytes: int = Field(default=5 * 1024 * 1024, ge=0)
    backups: int = Field(default=3, ge=0)
    compress: bool = True
    log_to_file: bool = True

    @classmethod
    def from_appenders(cls, raw: dict[str, Any]) -> LogConfig:
        """Build from a log4js-style document with an ``appenders.file`` block."""
        try:
            appender = raw["appenders"]["file"]
        except (KeyError, TypeError) as exc:
            raise ConfigError("log config has no appenders.file block") from exc
        if not isinstance(appender, dict):
            raise ConfigError("log config appenders.file must be an object")
        return cls(
            filename=appender.get("filename", "app.log"),
            max_bytes=appender.get("maxSize", 5 * 1024 * 1024),
            backups=appender.get("backups", 3),
            compress=appender.get("compress", True),
        )


# ---------------------------------------------------------------------------
# Environment settings
# ---------------------------------------------------------------------------


class GatewaySettings(BaseSettings):
    """Process-level settings loaded from environment variables.

    Attributes:
        modbus_config_path: Path of the Modbus JSON config.
        mqtt_config_path: Path of the MQTT JSON config.
        log_config_path: Path of the logging JSON config.  A missing file
            means "log to stderr only".
        log_level: Root log level name.
        health_path: Health JSON file path; empty disables health writes.
        queue_size: Capacity of the delivery channel.
    """

    modbus_config_path: str = "config/modbus_config.json"
    mqtt_config_path: str = "config/mqtt_config.json"
    log_config_path: str = "config/log_config.json"
    log_level: str = "INFO"
    health_path: str = ""
    queue_size: int = 100

    @field_validator("log_level")
    @classmethod
    def log_level_must_be_known(cls, v: str) -> str:
        """Validate and upper-case the log level name."""
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"LOG_LEVEL must be a standard level name (got: '{v}')")
        return level

    @field_validator("queue_size")
    @classmethod
    def queue_size_must_be_positive(cls, v: int) -> int:
        """Validate the delivery channel is bounded and non-empty."""
        if v < 1:
            raise ValueError("QUEUE_SIZE must be >= 1")
        return v

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


# ---------------------------------------------------------------------------
# Loaders
# ---------------------------------------------------------------------------


def _read_json(path: str | Path) -> Any:
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"invalid JSON in {path}: {exc}") from exc


def load_modbus_config(path: str | Path) -> ModbusConfig:
    """Load and validate the Modbus config file.

    Raises:
        ConfigError: If the file is missing, not JSON, or fails validation.
    """
    try:
        return ModbusConfig.model_validate(_read_json(path))
    except ValidationError as exc:
        raise ConfigError(f"invalid Modbus config {path}: {exc}") from exc


def load_mqtt_config(path: str | Path) -> MqttConfig:
    """Load and validate the MQTT config file.

    Raises:
        ConfigError: If the file is missing, not JSON, or fails validation.
    """
    try:
        return MqttConfig.model_validate(_read_json(path))
    except ValidationError as exc:
        raise ConfigError(f"invalid MQTT config {path}: {exc}") from exc


def load_log_config(path: str | Path) -> LogConfig:
    """Load the logging config file.

    Raises:
        ConfigError: If the file is missing, not JSON, or has no usable
            ``appenders.file`` block.
    """
    raw = _read_json(path)
    try:
        return LogConfig.from_appenders(raw)
    except ValidationError as exc:
        raise ConfigError(f"invalid log config {path}: {exc}") from exc
