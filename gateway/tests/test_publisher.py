"""
Unit tests for the MQTT telemetry publisher.

Tests verify:
- The paho client is built with callback API v2, MQTT 3.1.1, the configured
  client id and a fixed 5 s reconnect delay.
- TLS is enabled exactly when a trust-root path is configured; an unloadable
  trust root is a ConfigError.
- Credentials are set only when a username is configured.
- connect() starts the network loop on CONNACK, and raises
  BrokerUnreachableError on socket errors, refusal or timeout.
- publish() sends to the configured topic at the configured QoS, waits for
  completion, and raises PublishError instead of dropping silently.
- Publishing while disconnected leaves nothing in paho's outgoing queue.
- Connection-loss and reconnect callbacks only log.

CHANGELOG:
- 2026-10-16: Offline publishes leave nothing queued in paho
- 2026-10-09: Initial creation (STORY-006)

TODO:
- None
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from unittest.mock import MagicMock, patch

import paho.mqtt.client as mqtt
import pytest
from gateway.src.config import ConfigError, MqttConfig
from gateway.src.publisher import (
    MAX_QUEUED_MESSAGES,
    RECONNECT_DELAY_S,
    BrokerUnreachableError,
    PublishError,
    TelemetryPublisher,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _make_config(**overrides: object) -> MqttConfig:
    fields: dict[str, object] = {
        "hostname": "broker.example.com",
        "port": 1883,
        "qos": 1,
        "topic": "plant/line1/telemetry",
        "client_id": "gateway-test",
    }
    fields.update(overrides)
    return MqttConfig(**fields)


def _reason(is_failure: bool = False) -> MagicMock:
    reason = MagicMock()
    reason.is_failure = is_failure
    reason.__str__.return_value = "Not authorized" if is_failure else "Success"
    return reason


def _make_info(
    rc: int = mqtt.MQTT_ERR_SUCCESS,
    published: bool = True,
    wait_raises: Exception | None = None,
) -> MagicMock:
    info = MagicMock()
    info.rc = rc
    info.is_published.return_value = published
    if wait_raises is not None:
        info.wait_for_publish.side_effect = wait_raises
    return info


@pytest.fixture()
def mock_client() -> Iterator[MagicMock]:
    """Patch paho's Client class and yield the instance the publisher gets."""
    client = MagicMock()
    client.publish.return_value = _make_info()
    client.is_connected.return_value = True
    with patch("gateway.src.publisher.mqtt.Client", return_value=client) as mock_cls:
        client.mock_cls = mock_cls
        yield client


def _connack_on_loop_start(client: MagicMock, publisher: TelemetryPublisher, is_failure: bool = False) -> None:
    """Simulate the broker answering CONNACK once the network loop starts."""
    client.loop_start.side_effect = lambda: publisher._on_connect(
        client, None, None, _reason(is_failure), None
    )


# ===========================================================================
# Client construction
# ===========================================================================


class TestClientConstruction:
    """The paho client is configured for unattended operation."""

    def test_client_created_with_v2_callbacks(self, mock_client: MagicMock) -> None:
        TelemetryPublisher(_make_config())

        mock_client.mock_cls.assert_called_once_with(
            callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
            client_id="gateway-test",
            protocol=mqtt.MQTTv311,
        )

    def test_fixed_reconnect_delay(self, mock_client: MagicMock) -> None:
        TelemetryPublisher(_make_config())

        mock_client.reconnect_delay_set.assert_called_once_with(
            min_delay=RECONNECT_DELAY_S, max_delay=RECONNECT_DELAY_S
        )
        assert RECONNECT_DELAY_S == 5

    def test_paho_message_queue_is_capped(self, mock_client: MagicMock) -> None:
        TelemetryPublisher(_make_config())

        mock_client.max_queued_messages_set.assert_called_once_with(MAX_QUEUED_MESSAGES)

    def test_credentials_set_when_username_configured(self, mock_client: MagicMock) -> None:
        TelemetryPublisher(_make_config(username="gw", password="pw"))

        mock_client.username_pw_set.assert_called_once_with("gw", "pw")

    def test_no_credentials_without_username(self, mock_client: MagicMock) -> None:
        TelemetryPublisher(_make_config())

        mock_client.username_pw_set.assert_not_called()


class TestTransportSelection:
    """TLS is used whenever a trust root is configured."""

    def test_tls_with_cert(self, mock_client: MagicMock) -> None:
        publisher = TelemetryPublisher(_make_config(cert="/etc/ssl/ca.pem", port=8883))

        mock_client.tls_set.assert_called_once_with(ca_certs="/etc/ssl/ca.pem")
        assert publisher.broker_url == "ssl://broker.example.com:8883"

    def test_plaintext_without_cert(self, mock_client: MagicMock) -> None:
        publisher = TelemetryPublisher(_make_config())

        mock_client.tls_set.assert_not_called()
        assert publisher.broker_url == "tcp://broker.example.com:1883"

    def test_unloadable_trust_root_is_config_error(self, mock_client: MagicMock) -> None:
        mock_client.tls_set.side_effect = FileNotFoundError("no such file")

        with pytest.raises(ConfigError, match="trust root"):
            TelemetryPublisher(_make_config(cert="/missing/ca.pem"))


# ===========================================================================
# connect()
# ===========================================================================


class TestConnect:
    """connect() waits for CONNACK and surfaces failures."""

    @pytest.mark.asyncio
    async def test_successful_connect(self, mock_client: MagicMock) -> None:
        publisher = TelemetryPublisher(_make_config())
        _connack_on_loop_start(mock_client, publisher)

        await publisher.connect()

        mock_client.connect.assert_called_once_with("broker.example.com", 1883, keepalive=60)
        mock_client.loop_start.assert_called_once()

    @pytest.mark.asyncio
    async def test_socket_error_is_broker_unreachable(self, mock_client: MagicMock) -> None:
        mock_client.connect.side_effect = ConnectionRefusedError("refused")
        publisher = TelemetryPublisher(_make_config())

        with pytest.raises(BrokerUnreachableError, match="cannot reach broker"):
            await publisher.connect()
        mock_client.loop_start.assert_not_called()

    @pytest.mark.asyncio
    async def test_refused_connack_is_broker_unreachable(self, mock_client: MagicMock) -> None:
        publisher = TelemetryPublisher(_make_config())
        _connack_on_loop_start(mock_client, publisher, is_failure=True)

        with pytest.raises(BrokerUnreachableError, match="refused"):
            await publisher.connect()
        mock_client.loop_stop.assert_called_once()

    @pytest.mark.asyncio
    async def test_missing_connack_times_out(self, mock_client: MagicMock) -> None:
        publisher = TelemetryPublisher(_make_config())

        with (
            patch("gateway.src.publisher.CONNECT_TIMEOUT_S", 0.01),
            pytest.raises(BrokerUnreachableError, match="no CONNACK"),
        ):
            await publisher.connect()
        mock_client.loop_stop.assert_called_once()


# ===========================================================================
# publish()
# ===========================================================================


class TestPublish:
    """publish() reports every failure to the caller."""

    @pytest.mark.asyncio
    async def test_publishes_to_topic_at_qos_and_waits(self, mock_client: MagicMock) -> None:
        info = _make_info()
        mock_client.publish.return_value = info
        publisher = TelemetryPublisher(_make_config(qos=2))

        await publisher.publish('{"register": "a"}')

        mock_client.publish.assert_called_once_with(
            "plant/line1/telemetry", '{"register": "a"}', qos=2
        )
        info.wait_for_publish.assert_called_once()

    @pytest.mark.asyncio
    async def test_disconnected_client_raises(self, mock_client: MagicMock) -> None:
        """A publish while the session is down is reported, not dropped."""
        mock_client.publish.return_value = _make_info(rc=mqtt.MQTT_ERR_NO_CONN)
        publisher = TelemetryPublisher(_make_config())

        with pytest.raises(PublishError):
            await publisher.publish("{}")

    @pytest.mark.asyncio
    async def test_not_connected_raises_without_handing_payload_to_paho(
        self, mock_client: MagicMock
    ) -> None:
        mock_client.is_connected.return_value = False
        publisher = TelemetryPublisher(_make_config())

        with pytest.raises(PublishError, match="not connected"):
            await publisher.publish("{}")
        mock_client.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_wait_failure_raises(self, mock_client: MagicMock) -> None:
        mock_client.publish.return_value = _make_info(
            wait_raises=RuntimeError("message was not queued")
        )
        publisher = TelemetryPublisher(_make_config())

        with pytest.raises(PublishError, match="not queued"):
            await publisher.publish("{}")

    @pytest.mark.asyncio
    async def test_unacknowledged_publish_raises(self, mock_client: MagicMock) -> None:
        mock_client.publish.return_value = _make_info(published=False)
        publisher = TelemetryPublisher(_make_config())

        with pytest.raises(PublishError, match="not acknowledged"):
            await publisher.publish("{}")


# ===========================================================================
# Session events and teardown
# ===========================================================================


class TestSessionEvents:
    """Connection-loss and reconnect events are logged, never raised."""

    def test_connection_lost_logs_warning(
        self, mock_client: MagicMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        publisher = TelemetryPublisher(_make_config())

        with caplog.at_level(logging.WARNING):
            publisher._on_disconnect(mock_client, None, None, _reason(is_failure=True), None)

        assert any("Connection lost" in r.getMessage() for r in caplog.records)

    def test_reconnect_attempt_logs_warning(
        self, mock_client: MagicMock, caplog: pytest.LogCaptureFixture
    ) -> None:
        publisher = TelemetryPublisher(_make_config())

        with caplog.at_level(logging.WARNING):
            publisher._on_connect_fail(mock_client, None)

        assert any("Reconnecting" in r.getMessage() for r in caplog.records)

    def test_is_connected_follows_client(self, mock_client: MagicMock) -> None:
        publisher = TelemetryPublisher(_make_config())
        mock_client.is_connected.return_value = False

        assert publisher.is_connected is False

    @pytest.mark.asyncio
    async def test_disconnect_stops_loop(self, mock_client: MagicMock) -> None:
        publisher = TelemetryPublisher(_make_config())

        await publisher.disconnect()

        mock_client.disconnect.assert_called_once()
        mock_client.loop_stop.assert_called_once()


class TestOfflinePublishWithRealClient:
    """Failed publishes are not buffered by paho for delivery after reconnect."""

    @pytest.mark.asyncio
    async def test_offline_publishes_are_not_queued(self) -> None:
        publisher = TelemetryPublisher(_make_config(qos=1))

        failures = 0
        for i in range(50):
            try:
                await publisher.publish(f'{{"n": {i}}}')
            except PublishError:
                failures += 1

        assert failures == 50
        assert len(publisher._client._out_messages) == 0
