"""
Async Modbus TCP sensor poller.

Runs one read cycle for one configured sensor: opens a fresh
AsyncModbusTcpClient to ``sensor.ip:502``, reads ``sensor.size`` holding
registers from ``sensor.modbus_address`` on unit ``sensor.slave_id``, decodes
them with the sensor's declared data type and wraps the result in a reading
envelope.

Failure handling is intentionally asymmetric:

- Connection failure -> a :class:`~gateway.src.models.ConnectionFailure`
  envelope carrying the sentinel value, so consumers see the outage.
- Read failure after a successful connect -> no envelope at all; the next
  cycle retries.

Neither path raises to the caller, and there is no retry within a cycle:
the client is built with ``retries=0`` so a silent device costs one timeout.

CHANGELOG:
- 2026-10-16: Disable pymodbus request retries
- 2026-10-10: Drop envelopes whose value cannot be serialized
- 2026-10-08: Inject logger instead of using the module logger directly
- 2026-10-07: Rework group poller into a per-sensor holding-register read (STORY-003)

TODO:
- None
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from gateway.src.decoder import decode_register, registers_to_bytes
from gateway.src.models import ConnectionFailure, Reading
from pymodbus.client import AsyncModbusTcpClient

if TYPE_CHECKING:
    from gateway.src.config import SensorSpec
    from gateway.src.models import ReadingEnvelope

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MODBUS_TCP_PORT: int = 502
"""Modbus TCP port every sensor endpoint listens on."""

DEFAULT_TIMEOUT_S: float = 2.0
"""Default timeout per Modbus TCP request in seconds."""


class SensorPoller:
    """Reads one sensor per call and turns the result into an envelope.

    The poller holds no connection state between calls: each
    :meth:`read` opens, uses and closes its own client.

    Args:
        timeout_s: Connect and request timeout in seconds.
        port: Modbus TCP port (default 502).
        logger: Logger for transport and serialization problems.  Defaults
            to this module's logger.
    """

    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        port: int = MODBUS_TCP_PORT,
        logger: logging.Logger | None = None,
    ) -> None:
        self._timeout_s = timeout_s
        self._port = port
        self._log = logger or logging.getLogger(__name__)

    async def read(self, sensor: SensorSpec) -> ReadingEnvelope | None:
        """Execute a single connect-read-decode cycle for *sensor*.

        Args:
            sensor: The sensor to read.

        Returns:
            A :class:`Reading` on success, a :class:`ConnectionFailure` when
            the endpoint cannot be reached, or ``None`` when the connection
            succeeded but the register read failed.
        """
        client = AsyncModbusTcpClient(
            sensor.ip,
            port=self._port,
            timeout=self._timeout_s,
            retries=0,
        )
        try:
            # -- Connect --
            try:
                ok = await client.connect()
            except Exception as exc:
                self._log.warning(
                    "Modbus connection error for %s (%s:%d): %s",
                    sensor.register_name,
                    sensor.ip,
                    self._port,
                    exc,
                )
                return ConnectionFailure(register_name=sensor.register_name, ts=datetime.now(tz=UTC))

            if not ok:
                self._log.warning(
                    "Modbus connection error for %s (%s:%d): connect returned False",
                    sensor.register_name,
                    sensor.ip,
                    self._port,
                )
                return ConnectionFailure(register_name=sensor.register_name, ts=datetime.now(tz=UTC))

            # -- Read --
            try:
                response = await client.read_holding_registers(
                    sensor.modbus_address,
                    count=sensor.size,
                    device_id=sensor.slave_id,
                )
            except Exception as exc:
                self._log.warning("Modbus read error for %s: %s", sensor.register_name, exc)
                return None

            if response.isError():
                self._log.warning(
                    "Modbus read error for %s (address=%d, count=%d): %s",
                    sensor.register_name,
                    sensor.modbus_address,
                    sensor.size,
                    response,
                )
                return None
        finally:
            client.close()

        decoded = decode_register(registers_to_bytes(response.registers), sensor.data_type)
        if decoded.is_raw:
            self._log.debug(
                "Register %s: %d bytes not decodable as '%s', passing raw bytes",
                sensor.register_name,
                len(decoded.value),  # type: ignore[arg-type]
                sensor.data_type,
            )
        return Reading(
            register_name=sensor.register_name,
            value=decoded.to_json(),
            starttimestamp=datetime.now(tz=UTC),
        )

    async def poll(self, sensor: SensorSpec) -> str | None:
        """Read *sensor* and serialize the envelope to its JSON payload.

        Returns:
            The JSON payload, or ``None`` when the read produced no envelope
            or the envelope could not be serialized.
        """
        envelope = await self.read(sensor)
        if envelope is None:
            return None
        try:
            return envelope.model_dump_json()
        except ValueError as exc:
            self._log.error("JSON marshal error for %s: %s", sensor.register_name, exc)
            return None
