"""Raw-deflate candidate generation for decoded payload buffers."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from mathtag.decoding.bplist import BPLIST_MAGIC
from mathtag.errors import DecompressionError, DecompressionFailed, DecompressionUnavailable

logger = logging.getLogger(__name__)

try:
    import zlib
except ImportError:
    zlib = None
    logger.warning("Raw-deflate support unavailable: interpreter built without zlib")

DEFAULT_MAX_INFLATED_BYTES = 16 * 1024 * 1024
_LENGTH_PREFIX_SIZE = 4
_RAW_DEFLATE_WBITS = -15

Inflater = Callable[[bytes], Awaitable[bytes]]


def inflate_raw_sync(data: bytes, *, max_output: int = DEFAULT_MAX_INFLATED_BYTES) -> bytes:
    """Inflate a raw-deflate stream, rejecting truncated or oversized output."""

    if zlib is None:
        raise DecompressionUnavailable("zlib is not available")

    decompressor = zlib.decompressobj(_RAW_DEFLATE_WBITS)
    try:
        inflated = decompressor.decompress(data, max_output)
    except zlib.error as exc:
        raise DecompressionFailed(f"Raw-deflate stream rejected: {exc}") from exc

    if not decompressor.eof:
        if decompressor.unconsumed_tail or len(inflated) >= max_output:
            raise DecompressionFailed(f"Inflated size exceeds {max_output} bytes")
        raise DecompressionFailed("Raw-deflate stream is truncated")
    if decompressor.unused_data:
        raise DecompressionFailed("Unexpected data after end of raw-deflate stream")
    return inflated


def make_inflater(*, max_output: int = DEFAULT_MAX_INFLATED_BYTES) -> Inflater:
    """Build the default async inflater that runs zlib off the event loop."""

    async def _inflate(data: bytes) -> bytes:
        return await asyncio.to_thread(inflate_raw_sync, data, max_output=max_output)

    return _inflate


def length_prefixed_body(buffer: bytes) -> bytes | None:
    """Return bytes[4:] when the first four bytes declare the remaining length."""

    if len(buffer) <= _LENGTH_PREFIX_SIZE:
        return None
    declared = int.from_bytes(buffer[:_LENGTH_PREFIX_SIZE], "big")
    if declared != len(buffer) - _LENGTH_PREFIX_SIZE:
        return None
    return buffer[_LENGTH_PREFIX_SIZE:]


async def decompression_candidates(buffer: bytes, *, inflate: Inflater | None = None) -> list[bytes]:
    """Return buffers worth handing to the plist parser, best guess first.

    Order: the length-prefixed body inflated, the whole buffer inflated, and
    finally the buffer itself when it is already an uncompressed binary plist.
    Failed attempts are dropped.
    """

    inflater = inflate or make_inflater()
    attempts: list[tuple[str, bytes]] = []

    body = length_prefixed_body(buffer)
    if body is not None:
        attempts.append(("length-prefixed", body))
    attempts.append(("whole-buffer", buffer))

    candidates: list[bytes] = []
    for label, chunk in attempts:
        try:
            inflated = await inflater(chunk)
        except DecompressionError as exc:
            logger.debug("Dropped %s decompression candidate: %s", label, exc)
            continue
        except Exception as exc:
            logger.debug("Dropped %s decompression candidate after inflater error: %r", label, exc)
            continue
        if inflated:
            candidates.append(inflated)

    if buffer.startswith(BPLIST_MAGIC):
        candidates.append(buffer)
    return candidates
