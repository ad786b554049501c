"""
Gateway daemon entrypoint: Modbus TCP acquisition -> MQTT publishing.

Runs two concurrent asyncio loops coordinated only through a bounded
:class:`~gateway.src.channel.DeliveryChannel`:

1. **Acquisition loop**: polls every configured sensor each interval and
   enqueues one JSON payload per reading (blocking while the channel is full).
2. **Publish loop**: dequeues payloads in FIFO order and publishes each one
   to the broker.  A failed publish is logged and the payload is dropped;
   the next polling cycle supersedes it.

Startup order matters: configuration is loaded and the broker session is
connected before acquisition starts.  Configuration errors (files or
environment) and an unreachable broker at startup are the only fatal
conditions; the process exits with status 1.

Graceful shutdown on SIGTERM/SIGINT sets a shared asyncio.Event.  The
acquisition loop finishes the sensor in progress and stops, the channel is
closed, and the publish loop drains what is left (an in-flight publish is
allowed to complete) before the broker session is closed.

Structured JSON logging is used for all events, optionally also written to a
size-rotated log file.

CHANGELOG:
- 2026-10-16: Exit with status 1 on invalid environment settings
- 2026-10-14: Rotate and gzip the log file per log_config.json
- 2026-10-11: Replace poll/upload loops with acquisition/publish pipeline
- 2026-10-06: Initial creation (STORY-014)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import gzip
import hashlib
import json
import logging
import logging.handlers
import os
import shutil
import signal
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

from gateway.src.config import ConfigError, load_log_config
from gateway.src.publisher import BrokerUnreachableError, PublishError
from pydantic import ValidationError

if TYPE_CHECKING:
    from gateway.src.acquisition import AcquisitionLoop
    from gateway.src.channel import DeliveryChannel
    from gateway.src.config import GatewaySettings, LogConfig, ModbusConfig, MqttConfig
    from gateway.src.health import HealthWriter
    from gateway.src.publisher import TelemetryPublisher

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Structured JSON logging setup
# ---------------------------------------------------------------------------


class _JsonFormatter(logging.Formatter):
    """Minimal JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "src": f"{record.filename}:{record.lineno}",
            "msg": record.getMessage(),
        }
        if record.exc_info and record.exc_info[1] is not None:
            log_entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_entry)


def _gzip_namer(name: str) -> str:
    return name + ".gz"


def _gzip_rotator(source: str, dest: str) -> None:
    with open(source, "rb") as src, gzip.open(dest, "wb") as dst:
        shutil.copyfileobj(src, dst)
    os.remove(source)


def configure_logging(log_config: LogConfig | None = None, level: str = "INFO") -> None:
    """Configure structured JSON logging for the gateway daemon.

    Sets up the root logger with a JSON-formatted handler writing to stderr
    and, when *log_config* asks for it, a size-rotated file handler.

    Args:
        log_config: File sink settings, or None for stderr only.
        level: Root log level name.
    """
    formatter = _JsonFormatter()
    handlers: list[logging.Handler] = []

    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    if log_config is not None and log_config.log_to_file:
        log_path = Path(log_config.filename)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_path,
            maxBytes=log_config.max_bytes,
            backupCount=log_config.backups,
            encoding="utf-8",
        )
        if log_config.compress:
            file_handler.namer = _gzip_namer
            file_handler.rotator = _gzip_rotator
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    root = logging.getLogger()
    root.handlers.clear()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


def _masked_token(value: str | None) -> str:
    """Return a short non-reversible token fingerprint for diagnostics."""
    if not value:
        return "empty"
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()[:10]
    return f"len={len(value)} sha256={digest}"


# ---------------------------------------------------------------------------
# Startup config logging
# ---------------------------------------------------------------------------


def log_config_summary(mqtt_config: MqttConfig, modbus_config: ModbusConfig) -> None:
    """Log a config summary at startup, excluding secrets.

    The broker password is replaced by a masked fingerprint.

    Args:
        mqtt_config: Broker session parameters.
        modbus_config: Polling parameters and sensor list.
    """
    logger.info(
        "Gateway starting with config: "
        "mqtt_host=%s, mqtt_port=%s, mqtt_topic=%s, mqtt_qos=%s, "
        "mqtt_tls=%s, mqtt_username=%s, mqtt_password_masked=%s, "
        "polling_interval_s=%s, timeout_s=%s, sensors=%s",
        mqtt_config.hostname,
        mqtt_config.port,
        mqtt_config.topic,
        mqtt_config.qos,
        mqtt_config.use_tls,
        mqtt_config.username or "none",
        _masked_token(mqtt_config.password),
        modbus_config.interval_s,
        modbus_config.timeout_s,
        [s.register_name for s in modbus_config.sensors],
    )


# ---------------------------------------------------------------------------
# Publish loop
# ---------------------------------------------------------------------------


async def _publish_once(
    *,
    publisher: TelemetryPublisher,
    payload: str,
    health: HealthWriter | None = None,
) -> bool:
    """Publish a single payload.

    Catches all exceptions so that the caller's loop is never broken.
    A failed payload is not retried.

    Returns:
        True if the broker accepted the payload, False otherwise.
    """
    ok = False
    try:
        await publisher.publish(payload)
        ok = True
    except PublishError as exc:
        logger.warning("MQTT publish error: %s", exc)
    except Exception:
        logger.error("Publish cycle error", exc_info=True)

    if health is not None:
        try:
            if ok:
                health.record_publish()
            health.set_broker_connected(publisher.is_connected)
        except OSError:
            logger.warning("Failed to write health file", exc_info=True)
    return ok


async def _publish_loop(
    *,
    channel: DeliveryChannel,
    publisher: TelemetryPublisher,
    health: HealthWriter | None = None,
) -> int:
    """Drain *channel* into *publisher* until it is closed and empty.

    Returns:
        Number of payloads published successfully.
    """
    logger.info("Publish loop started (topic=%s)", publisher.topic)
    published = 0
    while True:
        payload = await channel.dequeue()
        if payload is None:
            break
        if await _publish_once(publisher=publisher, payload=payload, health=health):
            published += 1
    logger.info("Publish loop stopped (published=%d)", published)
    return published


# ---------------------------------------------------------------------------
# Concurrent runner with graceful shutdown
# ---------------------------------------------------------------------------


async def run_gateway(
    *,
    acquisition: AcquisitionLoop,
    channel: DeliveryChannel,
    publisher: TelemetryPublisher,
    stop_event: asyncio.Event,
    health: HealthWriter | None = None,
) -> None:
    """Run acquisition and publishing concurrently until shutdown.

    The publisher must already be connected.  When *stop_event* is set the
    acquisition loop stops, the channel is closed, and the publish loop
    drains the remaining payloads before this coroutine returns.

    Args:
        acquisition: Producer side of the pipeline.
        channel: The bounded handoff between the two loops.
        publisher: Connected broker session.
        stop_event: Event to signal graceful shutdown.
        health: HealthWriter instance, or None to skip health writes.
    """
    logger.info("Starting concurrent acquisition and publish loops")
    publish_task = asyncio.create_task(
        _publish_loop(channel=channel, publisher=publisher, health=health)
    )
    try:
        await acquisition.run(stop_event)
    finally:
        logger.info("Draining %d queued payloads before exit", channel.count())
        await channel.close()
        await publish_task
    logger.info("Shutdown complete")


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------


def _load_log_config(settings: GatewaySettings) -> LogConfig | None:
    """Load the log config, or return None when the file does not exist."""
    if not Path(settings.log_config_path).exists():
        return None
    return load_log_config(settings.log_config_path)


async def async_main() -> int:
    """Async entrypoint: load config, connect, run the pipeline.

    Sets up SIGTERM/SIGINT handlers to trigger graceful shutdown.

    Returns:
        Process exit status: 0 after a graceful shutdown, 1 on a startup
        failure.
    """
    from gateway.src.acquisition import AcquisitionLoop
    from gateway.src.channel import DeliveryChannel
    from gateway.src.config import GatewaySettings, load_modbus_config, load_mqtt_config
    from gateway.src.health import HealthWriter
    from gateway.src.poller import SensorPoller
    from gateway.src.publisher import TelemetryPublisher

    try:
        settings = GatewaySettings()
    except ValidationError as exc:
        configure_logging(None)
        logger.critical("Invalid environment settings: %s", exc)
        return 1
    try:
        log_config = _load_log_config(settings)
    except ConfigError as exc:
        configure_logging(None, settings.log_level)
        logger.critical("Failed to load log config: %s", exc)
        return 1
    configure_logging(log_config, settings.log_level)
    logger.info("Logger initialized.")

    try:
        mqtt_config = load_mqtt_config(settings.mqtt_config_path)
        modbus_config = load_modbus_config(settings.modbus_config_path)
        log_config_summary(mqtt_config, modbus_config)
        publisher = TelemetryPublisher(mqtt_config, logger=logging.getLogger("gateway.mqtt"))
    except ConfigError as exc:
        logger.critical("Failed to load config: %s", exc)
        return 1

    try:
        await publisher.connect()
    except BrokerUnreachableError as exc:
        logger.critical("Failed to connect to MQTT broker: %s", exc)
        return 1

    health = HealthWriter(settings.health_path) if settings.health_path else None
    channel = DeliveryChannel(capacity=settings.queue_size)
    acquisition = AcquisitionLoop(
        sensors=modbus_config.sensors,
        poller=SensorPoller(
            timeout_s=modbus_config.timeout_s,
            logger=logging.getLogger("gateway.modbus"),
        ),
        channel=channel,
        interval_s=modbus_config.interval_s,
        health=health,
        logger=logging.getLogger("gateway.acquisition"),
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(
            sig,
            lambda: _handle_signal(stop_event),
        )

    logger.info("Modbus TCP gateway started. Press Ctrl+C to exit.")
    try:
        await run_gateway(
            acquisition=acquisition,
            channel=channel,
            publisher=publisher,
            stop_event=stop_event,
            health=health,
        )
    finally:
        await publisher.disconnect()
    return 0


def _handle_signal(stop_event: asyncio.Event) -> None:
    """Handle SIGTERM/SIGINT by setting the stop event.

    Args:
        stop_event: The event to set for graceful shutdown.
    """
    logger.info("Received shutdown signal, initiating graceful shutdown")
    stop_event.set()


def main() -> None:
    """Synchronous entrypoint for the gateway daemon."""
    sys.exit(asyncio.run(async_main()))


if __name__ == "__main__":
    main()
