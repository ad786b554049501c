"""
Liveness file for the gateway daemon.

The acquisition loop and the publish loop both report into one
:class:`HealthWriter`.  Its state is a frozen :class:`HealthStatus` model;
every report swaps in an updated copy and rewrites the file, so the file on
disk is always a complete snapshot::

    {"last_poll_ts": "...", "last_publish_ts": "...",
     "queue_depth": 3, "broker_connected": true}

The file is replaced atomically (write to a sibling temp file, then
``os.replace``) so a container HEALTHCHECK never reads a half-written
document.

CHANGELOG:
- 2026-10-16: Pydantic status model and atomic replace
- 2026-10-11: Publish timestamp, queue depth and broker state (STORY-015)

TODO:
- None
"""

from __future__ import annotations

import os
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict


class HealthStatus(BaseModel):
    """Snapshot written to the health file."""

    model_config = ConfigDict(frozen=True)

    last_poll_ts: datetime | None = None
    last_publish_ts: datetime | None = None
    queue_depth: int = 0
    broker_connected: bool = False


class HealthWriter:
    """Keeps the gateway's :class:`HealthStatus` and mirrors it to *path*.

    Args:
        path: Health JSON file location.  Accepts str or Path.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._status = HealthStatus()

    @property
    def status(self) -> HealthStatus:
        """The most recently written snapshot."""
        return self._status

    def record_poll(self) -> None:
        """Mark an acquisition cycle as completed now."""
        self._update(last_poll_ts=datetime.now(tz=UTC))

    def record_publish(self) -> None:
        """Mark a payload as accepted by the broker now."""
        self._update(last_publish_ts=datetime.now(tz=UTC))

    def set_queue_depth(self, depth: int) -> None:
        self._update(queue_depth=depth)

    def set_broker_connected(self, connected: bool) -> None:
        self._update(broker_connected=connected)

    def _update(self, **changes: Any) -> None:
        status = self._status.model_copy(update=changes)
        tmp = self.path.with_name(f".{self.path.name}.tmp")
        tmp.write_text(status.model_dump_json())
        os.replace(tmp, self.path)
        self._status = status
