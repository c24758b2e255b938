"""Reader for the binary property list (``bplist00``) object graph.

The buffer layout is::

    header "bplist00" | objects ... | offset table | 32-byte trailer

The trailer names the width of offset-table entries and object references,
the object count, the root ("top") object and where the offset table starts.
Objects are decoded lazily from the root, cached by object index for the
lifetime of one parse.

Trailer and offset-table problems raise :class:`StructuralParseError`. Problems
inside a single object (truncated payloads, bad references, unsupported
markers) degrade that object to ``None`` and leave the rest of the graph
intact.
"""

from __future__ import annotations

from dataclasses import dataclass
import struct
from typing import Any

from mathtag.errors import StructuralParseError

BPLIST_MAGIC = b"bplist00"
TRAILER_SIZE = 32
MIN_BPLIST_SIZE = len(BPLIST_MAGIC) + TRAILER_SIZE
DEFAULT_MAX_DEPTH = 128

# Marker high nibbles
_SIMPLE = 0x0
_INT = 0x1
_REAL = 0x2
_DATE = 0x3
_DATA = 0x4
_ASCII_STRING = 0x5
_UTF16_STRING = 0x6
_ARRAY = 0xA
_DICT = 0xD

_FALSE = 0x08
_TRUE = 0x09
_EXTENDED_LENGTH = 0x0F


@dataclass(frozen=True, slots=True)
class PlistTrailer:
    """Fixed-size footer describing how to index the object table."""

    offset_int_size: int
    object_ref_size: int
    object_count: int
    top_object: int
    offset_table_offset: int


class _ObjectOutOfBounds(Exception):
    """Internal signal: an object read ran past its valid region."""


class _UnsupportedObject(Exception):
    """Internal signal: the object uses an encoding this reader skips."""


def read_trailer(data: bytes) -> PlistTrailer:
    """Validate the header and return the parsed trailer."""

    if len(data) < MIN_BPLIST_SIZE:
        raise StructuralParseError(f"Buffer too short for a binary plist: {len(data)} bytes")
    if data[: len(BPLIST_MAGIC)] != BPLIST_MAGIC:
        raise StructuralParseError("Missing bplist00 magic header", offset=0)

    trailer_offset = len(data) - TRAILER_SIZE
    trailer = data[trailer_offset:]
    offset_int_size = trailer[6]
    object_ref_size = trailer[7]
    object_count = int.from_bytes(trailer[8:16], "big")
    top_object = int.from_bytes(trailer[16:24], "big")
    offset_table_offset = int.from_bytes(trailer[24:32], "big")

    if not 1 <= offset_int_size <= 8:
        raise StructuralParseError(f"Invalid offset entry size: {offset_int_size}", offset=trailer_offset + 6)
    if not 1 <= object_ref_size <= 8:
        raise StructuralParseError(f"Invalid object reference size: {object_ref_size}", offset=trailer_offset + 7)
    if object_count == 0:
        raise StructuralParseError("Binary plist declares no objects", offset=trailer_offset + 8)
    if top_object >= object_count:
        raise StructuralParseError(f"Top object {top_object} outside object count {object_count}", offset=trailer_offset + 16)
    if not len(BPLIST_MAGIC) <= offset_table_offset < trailer_offset:
        raise StructuralParseError(f"Offset table offset {offset_table_offset} out of bounds", offset=trailer_offset + 24)

    table_end = offset_table_offset + object_count * offset_int_size
    if table_end > trailer_offset:
        raise StructuralParseError(
            f"Offset table needs {object_count * offset_int_size} bytes but only "
            f"{trailer_offset - offset_table_offset} are available",
            offset=offset_table_offset,
        )

    return PlistTrailer(
        offset_int_size=offset_int_size,
        object_ref_size=object_ref_size,
        object_count=object_count,
        top_object=top_object,
        offset_table_offset=offset_table_offset,
    )


def read_offset_table(data: bytes, trailer: PlistTrailer) -> tuple[int, ...]:
    """Return the byte offset of every object, failing closed on any bad entry."""

    size = trailer.offset_int_size
    limit = trailer.offset_table_offset
    offsets: list[int] = []
    for index in range(trailer.object_count):
        start = trailer.offset_table_offset + index * size
        offset = int.from_bytes(data[start : start + size], "big")
        if not len(BPLIST_MAGIC) <= offset < limit:
            raise StructuralParseError(f"Object {index} offset {offset} out of bounds", offset=start)
        offsets.append(offset)
    return tuple(offsets)


class _ObjectDecoder:
    """Decode objects by index with memoization and a re-entrancy guard."""

    def __init__(self, data: bytes, trailer: PlistTrailer, offsets: tuple[int, ...], *, max_depth: int) -> None:
        self._data = data
        self._ref_size = trailer.object_ref_size
        self._offsets = offsets
        # Objects occupy the region between the header and the offset table.
        self._limit = trailer.offset_table_offset
        self._max_depth = max_depth
        self._cache: dict[int, Any] = {}
        self._in_progress: set[int] = set()

    def decode(self, index: int, depth: int = 0) -> Any:
        if index in self._cache:
            return self._cache[index]
        if index in self._in_progress:
            return None
        if index >= len(self._offsets) or depth > self._max_depth:
            return None

        self._in_progress.add(index)
        try:
            value = self._decode_at(self._offsets[index], depth)
        except (_ObjectOutOfBounds, _UnsupportedObject):
            value = None
        finally:
            self._in_progress.discard(index)

        self._cache[index] = value
        return value

    def _read(self, offset: int, size: int) -> bytes:
        if offset < 0 or size < 0 or offset + size > self._limit:
            raise _ObjectOutOfBounds
        return self._data[offset : offset + size]

    def _read_uint(self, offset: int, size: int) -> int:
        return int.from_bytes(self._read(offset, size), "big")

    def _read_length(self, marker: int, offset: int) -> tuple[int, int]:
        """Return (length, extra bytes consumed after the marker)."""

        low = marker & 0x0F
        if low != _EXTENDED_LENGTH:
            return low, 0

        int_marker = self._read_uint(offset + 1, 1)
        if int_marker >> 4 != _INT:
            raise _UnsupportedObject
        width = 1 << (int_marker & 0x0F)
        return self._read_uint(offset + 2, width), 1 + width

    def _decode_at(self, offset: int, depth: int) -> Any:
        marker = self._read_uint(offset, 1)
        kind = marker >> 4
        low = marker & 0x0F

        if kind == _SIMPLE:
            if marker == _FALSE:
                return False
            if marker == _TRUE:
                return True
            return None

        if kind == _INT:
            return self._read_uint(offset + 1, 1 << low)

        if kind == _REAL:
            width = 1 << low
            if width == 4:
                return struct.unpack(">f", self._read(offset + 1, 4))[0]
            if width == 8:
                return struct.unpack(">d", self._read(offset + 1, 8))[0]
            raise _UnsupportedObject

        if kind == _DATE:
            return struct.unpack(">d", self._read(offset + 1, 8))[0]

        if kind in (_DATA, _ASCII_STRING, _UTF16_STRING, _ARRAY, _DICT):
            length, extra = self._read_length(marker, offset)
            start = offset + 1 + extra

            if kind == _DATA:
                return bytes(self._read(start, length))
            if kind == _ASCII_STRING:
                return self._read(start, length).decode("latin-1")
            if kind == _UTF16_STRING:
                return self._read(start, length * 2).decode("utf-16-be", errors="surrogatepass")
            if kind == _ARRAY:
                refs = self._read_refs(start, length)
                return [self.decode(ref, depth + 1) for ref in refs]
            return self._decode_dict(start, length, depth)

        raise _UnsupportedObject

    def _read_refs(self, start: int, count: int) -> list[int]:
        size = self._ref_size
        raw = self._read(start, count * size)
        return [int.from_bytes(raw[i * size : (i + 1) * size], "big") for i in range(count)]

    def _decode_dict(self, start: int, count: int, depth: int) -> dict[str, Any]:
        key_refs = self._read_refs(start, count)
        value_refs = self._read_refs(start + count * self._ref_size, count)

        result: dict[str, Any] = {}
        for key_ref, value_ref in zip(key_refs, value_refs):
            key = self.decode(key_ref, depth + 1)
            if not isinstance(key, str):
                continue
            result[key] = self.decode(value_ref, depth + 1)
        return result


def parse_bplist(data: bytes, *, max_depth: int = DEFAULT_MAX_DEPTH) -> Any:
    """Parse a ``bplist00`` buffer and return its root object.

    Raises:
        StructuralParseError: the header, trailer or offset table is unusable.
    """

    trailer = read_trailer(data)
    offsets = read_offset_table(data, trailer)
    decoder = _ObjectDecoder(data, trailer, offsets, max_depth=max_depth)
    return decoder.decode(trailer.top_object)
