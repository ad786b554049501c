"""
Pure register decoder: raw Modbus bytes + declared data type -> typed value.

Holding-register reads return a sequence of 16-bit words.  The poller flattens
them into a big-endian byte string (see :func:`registers_to_bytes`) and this
module interprets those bytes according to the sensor's ``data_type`` tag.

The result is a :class:`DecodedValue`, a small tagged union carrying the kind
of value alongside the value itself.  :meth:`DecodedValue.to_json` renders each
kind to its canonical JSON representation for the MQTT payload.

Decoding never raises.  An unknown tag, or fewer bytes than a fixed-width type
needs, degrades to a ``"raw"`` value holding the untouched input bytes.

CHANGELOG:
- 2026-10-16: Render float32 as the shortest decimal that round-trips
- 2026-10-09: Add registers_to_bytes helper for pymodbus word lists
- 2026-10-06: Initial creation (STORY-002)

TODO:
- None
"""

from __future__ import annotations

import base64
import math
import struct
from dataclasses import dataclass

# ---------------------------------------------------------------------------
# Data definitions
# ---------------------------------------------------------------------------

RAW = "raw"
"""Kind used when the input could not be decoded as the declared type."""

_FIXED_WIDTH_FORMATS: dict[str, str] = {
    "uint8": ">B",
    "int8": ">b",
    "uint16": ">H",
    "int16": ">h",
    "uint32": ">I",
    "int32": ">i",
    "uint64": ">Q",
    "int64": ">q",
    "float32": ">f",
    "float64": ">d",
}
"""Big-endian :mod:`struct` formats for every fixed-width type tag."""

SUPPORTED_TYPES: frozenset[str] = frozenset(
    {*_FIXED_WIDTH_FORMATS, "bool", "string", "hex", "bcd"}
)
"""Every data type tag the decoder understands."""


@dataclass(frozen=True, slots=True)
class DecodedValue:
    """A decoded register value tagged with its kind.

    Attributes:
        kind: One of the tags in :data:`SUPPORTED_TYPES`, or ``"raw"`` when
            decoding fell back to the untouched bytes.
        value: The Python value: ``int`` for integer and ``bcd`` kinds,
            ``float`` for float kinds, ``bool``, ``str`` for ``string`` and
            ``hex``, ``bytes`` for ``raw``.
    """

    kind: str
    value: int | float | bool | str | bytes

    @property
    def is_raw(self) -> bool:
        """True when the decoder fell back to raw passthrough."""
        return self.kind == RAW

    def to_json(self) -> int | float | bool | str:
        """Render the value as its canonical JSON-compatible Python value.

        Raw bytes have no JSON type of their own and are rendered as a
        base64 string.  Non-finite floats are returned unchanged; JSON
        cannot carry them and the envelope serializer rejects them.
        """
        if self.kind == RAW:
            return base64.b64encode(self.value).decode("ascii")  # type: ignore[arg-type]
        return self.value  # type: ignore[return-value]


# ---------------------------------------------------------------------------
# Conversion helpers
# ---------------------------------------------------------------------------


def _bcd_to_int(data: bytes) -> int:
    """Accumulate packed BCD digits, most significant byte first."""
    value = 0
    for byte in data:
        hi = (byte >> 4) & 0x0F
        lo = byte & 0x0F
        value = value * 100 + hi * 10 + lo
    return value


def _shortest_float32(value: float) -> float:
    """Return the shortest decimal that packs to the same float32 bits as *value*.

    A float32 widened to a double carries spurious digits (0.1f becomes
    0.10000000149011612); the shortest round-tripping form is 0.1.
    """
    if not math.isfinite(value):
        return value
    packed = struct.pack(">f", value)
    for precision in range(1, 10):
        candidate = float(f"{value:.{precision}g}")
        if struct.pack(">f", candidate) == packed:
            return candidate
    return value


def registers_to_bytes(words: list[int]) -> bytes:
    """Flatten 16-bit register words into a big-endian byte string.

    Args:
        words: Register values as returned by pymodbus (``response.registers``).

    Returns:
        Two bytes per word, high byte first.
    """
    return b"".join((word & 0xFFFF).to_bytes(2, "big") for word in words)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def decode_register(data: bytes, data_type: str) -> DecodedValue:
    """Decode raw register bytes according to a data type tag.

    Fixed-width numeric types read the first N bytes big-endian and ignore
    any trailing bytes.

    Args:
        data: Raw bytes read from the device.
        data_type: Declared type tag of the sensor (e.g. ``"uint16"``).

    Returns:
        The decoded value, or a ``"raw"`` :class:`DecodedValue` holding
        *data* unchanged when the tag is unknown or *data* is too short.
    """
    data = bytes(data)

    fmt = _FIXED_WIDTH_FORMATS.get(data_type)
    if fmt is not None:
        width = struct.calcsize(fmt)
        if len(data) < width:
            return DecodedValue(RAW, data)
        (value,) = struct.unpack_from(fmt, data)
        if data_type == "float32":
            value = _shortest_float32(value)
        return DecodedValue(data_type, value)

    if data_type == "bool":
        if not data:
            return DecodedValue(RAW, data)
        return DecodedValue("bool", data[0] != 0)
    if data_type == "string":
        return DecodedValue("string", data.decode("utf-8", errors="replace"))
    if data_type == "hex":
        return DecodedValue("hex", data.hex().upper())
    if data_type == "bcd":
        return DecodedValue("bcd", _bcd_to_int(data))

    return DecodedValue(RAW, data)
