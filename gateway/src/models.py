"""
Pydantic models for the reading envelopes published to the MQTT broker.

Two envelope shapes exist and must never be confused:

- :class:`Reading` -- a successful register read::

      {"register": "...", "value": <decoded>, "starttimestamp": "<RFC3339>"}

- :class:`ConnectionFailure` -- the sensor's Modbus endpoint could not be
  reached::

      {"register": "...", "value": "abc", "ts": "<RFC3339>"}

A read failure after a successful connection produces no envelope at all.

CHANGELOG:
- 2026-10-16: Rename register field to register_name, keep "register" on the wire
- 2026-10-10: Reject non-finite floats at serialization time
- 2026-10-06: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_serializer

FAILURE_SENTINEL: Literal["abc"] = "abc"
"""Value carried by a ConnectionFailure envelope in place of a reading."""


class Reading(BaseModel):
    """One decoded observation of a sensor register.

    Attributes:
        register_name: The sensor's register name, serialized as ``register``.
        value: JSON-ready decoded value (see ``DecodedValue.to_json``).
        starttimestamp: UTC capture time, taken right after the read.
    """

    model_config = ConfigDict(frozen=True, serialize_by_alias=True)

    register_name: str = Field(serialization_alias="register")
    value: Any
    starttimestamp: datetime

    @field_serializer("value")
    def _finite_value(self, value: Any) -> Any:
        # JSON has no representation for NaN or infinity.
        if isinstance(value, float) and not math.isfinite(value):
            raise ValueError(f"non-finite value {value!r} for register '{self.register_name}'")
        return value


class ConnectionFailure(BaseModel):
    """Sentinel envelope emitted when a sensor endpoint cannot be reached.

    Attributes:
        register_name: The sensor's register name, serialized as ``register``.
        value: Always :data:`FAILURE_SENTINEL`.
        ts: UTC time of the failed connection attempt.
    """

    model_config = ConfigDict(frozen=True, serialize_by_alias=True)

    register_name: str = Field(serialization_alias="register")
    value: Literal["abc"] = FAILURE_SENTINEL
    ts: datetime


ReadingEnvelope = Reading | ConnectionFailure
