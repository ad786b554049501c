"""
MQTT telemetry publisher owning the gateway's single broker session.

Wraps a paho-mqtt client configured for unattended operation:

- TLS whenever a trust-root (CA) file is configured, plaintext otherwise.
- Automatic reconnection by paho's network thread with a fixed 5 s retry
  interval and no retry limit.
- Every publish uses the configured topic and QoS, and waits for the broker
  acknowledgement (QoS 1/2) or the socket write (QoS 0).

Blocking paho calls run in a worker thread via :func:`asyncio.to_thread` so
the event loop, and with it Modbus acquisition, keeps running.

Operations:
- connect(): open the session; raises BrokerUnreachableError on failure.
- publish(payload): publish one JSON payload; raises PublishError on failure.
- disconnect(): stop the network loop and close the session.

Connection lost / reconnect events are logged from paho callbacks and never
surface to publish() callers.  publish() does not retry: a failed payload is
reported to the caller and not re-delivered.  Publishing while the session
is down fails without handing the payload to paho, and paho holds at most
:data:`MAX_QUEUED_MESSAGES` unacknowledged messages.

CHANGELOG:
- 2026-10-16: Refuse to publish while disconnected; cap paho's message queue
- 2026-10-13: Log failed reconnect attempts via on_connect_fail
- 2026-10-09: Replace HTTPS batch uploader with MQTT publisher (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging
import ssl
import threading
from typing import TYPE_CHECKING, Any

import paho.mqtt.client as mqtt
from gateway.src.config import ConfigError

if TYPE_CHECKING:
    from gateway.src.config import MqttConfig

RECONNECT_DELAY_S: int = 5
"""Fixed delay between automatic reconnection attempts."""

CONNECT_TIMEOUT_S: float = 10.0
"""How long connect() waits for the broker's CONNACK."""

PUBLISH_TIMEOUT_S: float = 30.0
"""How long publish() waits for the broker to acknowledge a message."""

KEEPALIVE_S: int = 60

MAX_QUEUED_MESSAGES: int = 1
"""Cap on QoS 1/2 messages paho may hold unacknowledged; one in flight at a time."""


class BrokerUnreachableError(ConnectionError):
    """The broker session could not be established."""


class PublishError(ConnectionError):
    """The broker did not accept a published payload."""


class TelemetryPublisher:
    """Single MQTT session publishing reading payloads to a fixed topic.

    Args:
        config: Broker session parameters.
        logger: Logger for session events.  Defaults to this module's logger.

    Raises:
        ConfigError: If the configured trust-root file cannot be loaded.

    Usage::

        publisher = TelemetryPublisher(mqtt_config)
        await publisher.connect()
        await publisher.publish('{"register": "x", ...}')
        await publisher.disconnect()
    """

    def __init__(
        self,
        config: MqttConfig,
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._config = config
        self._log = logger or logging.getLogger(__name__)
        self._connack = threading.Event()
        self._connect_reason: Any = None

        client = mqtt.Client(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id=config.client_id,
            protocol=mqtt.MQTTv311,
        )
        if config.username:
            client.username_pw_set(config.username, config.password or None)
        if config.use_tls:
            try:
                client.tls_set(ca_certs=config.cert)
            except (OSError, ValueError) as exc:
                raise ConfigError(f"cannot load MQTT trust root {config.cert}: {exc}") from exc
        client.reconnect_delay_set(min_delay=RECONNECT_DELAY_S, max_delay=RECONNECT_DELAY_S)
        client.max_queued_messages_set(MAX_QUEUED_MESSAGES)
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_connect_fail = self._on_connect_fail
        self._client = client

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def broker_url(self) -> str:
        """Broker address in ``scheme://host:port`` form, for logging."""
        scheme = "ssl" if self._config.use_tls else "tcp"
        return f"{scheme}://{self._config.hostname}:{self._config.port}"

    @property
    def topic(self) -> str:
        """Topic every payload is published to."""
        return self._config.topic

    @property
    def is_connected(self) -> bool:
        """True while the broker session is up."""
        return bool(self._client.is_connected())

    async def connect(self) -> None:
        """Establish the broker session and start the network loop.

        Raises:
            BrokerUnreachableError: If the broker cannot be reached, refuses
                the connection, or does not answer within
                :data:`CONNECT_TIMEOUT_S`.
        """
        await asyncio.to_thread(self._connect_blocking)

    async def publish(self, payload: str) -> None:
        """Publish *payload* to the configured topic at the configured QoS.

        Blocks (in a worker thread) until the message is acknowledged or
        written, depending on QoS.

        Raises:
            PublishError: If the client is not connected, paho rejects the
                message, or no acknowledgement arrives in time.
        """
        await asyncio.to_thread(self._publish_blocking, payload)

    async def disconnect(self) -> None:
        """Stop the network loop and close the session."""
        await asyncio.to_thread(self._disconnect_blocking)

    # ------------------------------------------------------------------
    # Blocking implementations (run in worker threads)
    # ------------------------------------------------------------------

    def _connect_blocking(self) -> None:
        self._connack.clear()
        self._connect_reason = None
        self._log.info("[MQTT] Connecting to %s", self.broker_url)
        try:
            self._client.connect(
                self._config.hostname,
                self._config.port,
                keepalive=KEEPALIVE_S,
            )
        except (OSError, ssl.SSLError) as exc:
            self._log.error("[MQTT] Connect error: %s", exc)
            raise BrokerUnreachableError(f"cannot reach broker {self.broker_url}: {exc}") from exc

        self._client.loop_start()

        if not self._connack.wait(CONNECT_TIMEOUT_S):
            self._stop_loop()
            raise BrokerUnreachableError(
                f"no CONNACK from {self.broker_url} within {CONNECT_TIMEOUT_S}s"
            )
        reason = self._connect_reason
        if reason is not None and reason.is_failure:
            self._stop_loop()
            raise BrokerUnreachableError(f"broker {self.broker_url} refused connection: {reason}")
        self._log.info("[MQTT] Connect successful")

    def _publish_blocking(self, payload: str) -> None:
        topic = self._config.topic
        # paho keeps QoS 1/2 messages published while offline and resends them on
        # reconnect; a payload reported as failed must not be delivered later.
        if not self._client.is_connected():
            self._log.warning("[MQTT] Publish error: not connected to %s", self.broker_url)
            raise PublishError(f"publish to '{topic}' failed: not connected")
        info = self._client.publish(topic, payload, qos=self._config.qos)
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            message = mqtt.error_string(info.rc)
            self._log.warning("[MQTT] Publish error: %s", message)
            raise PublishError(f"publish to '{topic}' failed: {message}")
        try:
            info.wait_for_publish(timeout=PUBLISH_TIMEOUT_S)
        except (RuntimeError, ValueError) as exc:
            self._log.warning("[MQTT] Publish error: %s", exc)
            raise PublishError(f"publish to '{topic}' failed: {exc}") from exc
        if not info.is_published():
            self._log.warning("[MQTT] Publish to %s not acknowledged in time", topic)
            raise PublishError(
                f"publish to '{topic}' not acknowledged within {PUBLISH_TIMEOUT_S}s"
            )
        self._log.info("[MQTT] Message published to topic: %s", topic)
        self._log.debug("[MQTT] Payload: %s", payload)

    def _disconnect_blocking(self) -> None:
        self._client.disconnect()
        self._client.loop_stop()
        self._log.info("[MQTT] Disconnected from %s", self.broker_url)

    def _stop_loop(self) -> None:
        self._client.loop_stop()
        self._client.disconnect()

    # ------------------------------------------------------------------
    # paho callbacks (network thread)
    # ------------------------------------------------------------------

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self._connect_reason = reason_code
        self._connack.set()
        if reason_code.is_failure:
            self._log.error("[MQTT] Connection refused: %s", reason_code)
        else:
            self._log.info("[MQTT] Connected to broker %s", self.broker_url)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code.is_failure:
            self._log.warning("[MQTT] Connection lost: %s", reason_code)
        else:
            self._log.info("[MQTT] Disconnected cleanly")

    def _on_connect_fail(self, client, userdata) -> None:
        self._log.warning(
            "[MQTT] Reconnecting to broker %s in %ds...",
            self.broker_url,
            RECONNECT_DELAY_S,
        )
