"""
Decoding of raw bucket entries into revisions and logical records.

Key layout (17 bytes, 18 for deletions):

    [ main: int64 BE (8) | '_' (1) | sub: int64 BE (8) | 't' (optional) ]

Value layout: a protocol-buffer encoded KeyValue message

    1: key             bytes
    2: create_revision int64
    3: mod_revision    int64
    4: version         int64
    5: value           bytes
    6: lease           int64

The value decoder is strict. Truncation, bad length prefixes, oversized
varints, unknown field numbers and mismatched wire types all raise
DecodeError; a corrupt record makes the rest of the walk meaningless, so
the scanner lets it propagate.
"""

from __future__ import annotations

import struct

from .exceptions import DecodeError
from .models import LogicalRecord, Revision

# ─── Key Layout ─────────────────────────────────────────────────────

REVISION_KEY_LEN = 17
_MAIN_OFFSET = 0
# Byte 8 is the separator; sub starts after it.
_SUB_OFFSET = 9
_TOMBSTONE_MARKER = ord("t")

# ─── Wire Format ────────────────────────────────────────────────────

WIRE_VARINT = 0
WIRE_LENGTH_DELIMITED = 2

# field number -> (attribute, wire type)
_KEY_VALUE_FIELDS: dict[int, tuple[str, int]] = {
    1: ("key", WIRE_LENGTH_DELIMITED),
    2: ("create_revision", WIRE_VARINT),
    3: ("mod_revision", WIRE_VARINT),
    4: ("version", WIRE_VARINT),
    5: ("value", WIRE_LENGTH_DELIMITED),
    6: ("lease", WIRE_VARINT),
}

_INT64_SIGN = 1 << 63
_UINT64_RANGE = 1 << 64


def decode_revision(raw_key: bytes) -> Revision:
    """Decode a raw bucket key into a Revision.

    Precondition: ``len(raw_key) >= 17``. Shorter keys are not part of the
    format; this function does not guess at them and ``struct.error``
    propagates.
    """
    main, = struct.unpack_from(">q", raw_key, _MAIN_OFFSET)
    sub, = struct.unpack_from(">q", raw_key, _SUB_OFFSET)
    tombstone = len(raw_key) == REVISION_KEY_LEN + 1 and raw_key[-1] == _TOMBSTONE_MARKER
    return Revision(main=main, sub=sub, tombstone=tombstone)


def decode_key_value(raw_value: bytes) -> LogicalRecord:
    """Decode a stored value into a LogicalRecord.

    Raises:
        DecodeError: if the bytes are not a well-formed KeyValue message.
    """
    fields: dict[str, int | bytes] = {
        "key": b"",
        "value": b"",
        "create_revision": 0,
        "mod_revision": 0,
        "version": 0,
        "lease": 0,
    }
    data = bytes(raw_value)
    end = len(data)
    pos = 0

    while pos < end:
        tag_offset = pos
        tag, pos = _read_varint(data, pos)
        field_number = tag >> 3
        wire_type = tag & 0x7

        if field_number <= 0:
            raise DecodeError(
                f"illegal field number {field_number} (tag {tag})",
                details={"offset": tag_offset},
            )
        known = _KEY_VALUE_FIELDS.get(field_number)
        if known is None:
            raise DecodeError(
                f"unknown field number {field_number}",
                details={"offset": tag_offset, "wire_type": wire_type},
            )
        name, expected_wire_type = known
        if wire_type != expected_wire_type:
            raise DecodeError(
                f"wrong wire type {wire_type} for field {name}",
                details={"offset": tag_offset, "expected": expected_wire_type},
            )

        if wire_type == WIRE_VARINT:
            raw, pos = _read_varint(data, pos)
            fields[name] = _to_int64(raw)
            continue

        length, pos = _read_varint(data, pos)
        if length >= _INT64_SIGN:
            raise DecodeError(
                f"invalid length prefix for field {name}",
                details={"offset": tag_offset, "length": length},
            )
        if pos + length > end:
            raise DecodeError(
                f"truncated field {name}: need {length} bytes, have {end - pos}",
                details={"offset": tag_offset},
            )
        fields[name] = data[pos:pos + length]
        pos += length

    return LogicalRecord(**fields)  # type: ignore[arg-type]


# ─── Helpers ─────────────────────────────────────────────────────────


def _read_varint(data: bytes, pos: int) -> tuple[int, int]:
    """Read a base-128 varint, returning (value, next position)."""
    result = 0
    shift = 0
    while True:
        if shift >= 64:
            raise DecodeError("varint overflows 64 bits", details={"offset": pos})
        if pos >= len(data):
            raise DecodeError("unexpected end of record", details={"offset": pos})
        b = data[pos]
        pos += 1
        result |= (b & 0x7F) << shift
        if b < 0x80:
            return result & (_UINT64_RANGE - 1), pos
        shift += 7


def _to_int64(value: int) -> int:
    return value - _UINT64_RANGE if value & _INT64_SIGN else value
