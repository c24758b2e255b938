"""Base64 payload decoding for embedded-metadata tags."""

from __future__ import annotations

import base64
import binascii
import re

from mathtag.errors import DecodeError

_WHITESPACE_RE = re.compile(r"\s+")


def strip_payload_whitespace(payload: str) -> str:
    """Remove line wrapping and indentation from a base64 payload."""

    return _WHITESPACE_RE.sub("", payload)


def decode_payload(payload: str) -> bytes:
    """Decode a whitespace-tolerant base64 payload into raw bytes."""

    compact = strip_payload_whitespace(payload)
    if not compact:
        raise DecodeError("Payload is empty")

    # Unpadded payloads are accepted; a single dangling character never is.
    if "=" not in compact and len(compact) % 4 in (2, 3):
        compact += "=" * (-len(compact) % 4)

    try:
        raw = base64.b64decode(compact.encode("ascii"), validate=True)
    except UnicodeEncodeError as exc:
        raise DecodeError(f"Payload contains non-ASCII characters: {exc.reason}") from exc
    except binascii.Error as exc:
        raise DecodeError(f"Payload is not valid base64: {exc}") from exc

    if not raw:
        raise DecodeError("Payload decoded to an empty buffer")
    return raw
