"""
Acquisition loop: polls every configured sensor, every interval, until stopped.

Each cycle walks the sensor list in configuration order, one sensor at a
time, and feeds the resulting payloads into the delivery channel.  A slow or
unreachable sensor delays the sensors after it by up to the per-read timeout.
Enqueuing blocks while the channel is full, so a stalled broker slows
acquisition down instead of losing readings or growing memory.

The loop has two states, RUNNING and STOPPED.  The stop event is checked at
the top of every cycle and between sensors; once set, the loop finishes the
sensor in progress and moves to STOPPED, which is terminal.  Closing the
channel is left to the caller.

CHANGELOG:
- 2026-10-09: Check stop event between sensors
- 2026-10-08: Extract poll loop from main into AcquisitionLoop (STORY-014)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import contextlib
import enum
import logging
from typing import TYPE_CHECKING

from gateway.src.config import DEFAULT_POLLING_INTERVAL_S

if TYPE_CHECKING:
    from collections.abc import Sequence

    from gateway.src.channel import DeliveryChannel
    from gateway.src.config import SensorSpec
    from gateway.src.health import HealthWriter
    from gateway.src.poller import SensorPoller


class LoopState(enum.Enum):
    """Lifecycle state of an :class:`AcquisitionLoop`."""

    RUNNING = "running"
    STOPPED = "stopped"


class AcquisitionLoop:
    """Polls a fixed sensor list forever, feeding a delivery channel.

    Args:
        sensors: Sensors in polling order.  Read-only for the loop's lifetime.
        poller: Performs one sensor read and returns its payload.
        channel: Destination for serialized envelopes.
        interval_s: Pause after each full pass over *sensors*.  Zero means
            "poll again immediately" (still yielding to the event loop).
        health: Optional health writer updated after every cycle.
        logger: Logger for loop lifecycle events.
    """

    def __init__(
        self,
        *,
        sensors: Sequence[SensorSpec],
        poller: SensorPoller,
        channel: DeliveryChannel,
        interval_s: float = DEFAULT_POLLING_INTERVAL_S,
        health: HealthWriter | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._sensors = tuple(sensors)
        self._poller = poller
        self._channel = channel
        self._interval_s = max(interval_s, 0.0)
        self._health = health
        self._log = logger or logging.getLogger(__name__)
        self._state = LoopState.RUNNING
        self._cycles = 0

    @property
    def state(self) -> LoopState:
        """Current lifecycle state."""
        return self._state

    @property
    def cycles(self) -> int:
        """Number of completed passes over the sensor list."""
        return self._cycles

    async def run(self, stop_event: asyncio.Event) -> None:
        """Run polling cycles until *stop_event* is set.

        Args:
            stop_event: Cooperative shutdown signal.
        """
        if self._state is LoopState.STOPPED:
            raise RuntimeError("acquisition loop already stopped")

        self._log.info(
            "Acquisition loop started (sensors=%d, interval=%ss)",
            len(self._sensors),
            self._interval_s,
        )
        try:
            while not stop_event.is_set():
                await self._run_cycle(stop_event)
                # Use wait with timeout so we can check shutdown between sleeps
                with contextlib.suppress(TimeoutError):
                    await asyncio.wait_for(stop_event.wait(), timeout=self._interval_s)
        finally:
            self._state = LoopState.STOPPED
            self._log.info("Stopping Modbus acquisition loop after %d cycles", self._cycles)

    async def _run_cycle(self, stop_event: asyncio.Event) -> None:
        """Poll every sensor once, in order, enqueuing each payload."""
        for sensor in self._sensors:
            if stop_event.is_set():
                return
            try:
                payload = await self._poller.poll(sensor)
            except Exception:
                self._log.error("Poll error for %s", sensor.register_name, exc_info=True)
                continue
            if payload is not None:
                await self._channel.enqueue(payload)

        self._cycles += 1
        if self._health is not None:
            try:
                self._health.set_queue_depth(self._channel.count())
                self._health.record_poll()
            except OSError:
                self._log.warning("Failed to write health file", exc_info=True)
